"""Tests for phenosim.rng — seeded per-component RNG hierarchy."""

import numpy as np
import pytest

from phenosim.rng import STREAM_NAMES, create_rng_hierarchy, get_stream


class TestCreateRngHierarchy:
    def test_returns_all_streams(self):
        rngs = create_rng_hierarchy(42)
        assert set(rngs) == set(STREAM_NAMES)

    def test_generators_are_independent(self):
        """Different streams produce different sequences."""
        rngs = create_rng_hierarchy(42)
        vals = {name: rng.random() for name, rng in rngs.items()}
        assert len(set(vals.values())) == len(vals)

    def test_reproducibility(self):
        """Same seed produces identical sequences."""
        rngs1 = create_rng_hierarchy(42)
        rngs2 = create_rng_hierarchy(42)
        for name in rngs1:
            np.testing.assert_array_equal(rngs1[name].random(100),
                                          rngs2[name].random(100))

    def test_different_seeds_differ(self):
        rngs1 = create_rng_hierarchy(42)
        rngs2 = create_rng_hierarchy(43)
        assert not np.array_equal(rngs1['genotypes'].random(10),
                                  rngs2['genotypes'].random(10))

    def test_stream_position_fixed(self):
        """A stream's draws depend only on its position, not on later names."""
        short = create_rng_hierarchy(7, streams=STREAM_NAMES[:3])
        full = create_rng_hierarchy(7)
        for name in STREAM_NAMES[:3]:
            np.testing.assert_array_equal(short[name].random(20),
                                          full[name].random(20))

    def test_consuming_one_stream_leaves_others(self):
        a = create_rng_hierarchy(11)
        b = create_rng_hierarchy(11)
        a['genotypes'].random(10_000)
        np.testing.assert_array_equal(a['noise_background'].random(5),
                                      b['noise_background'].random(5))


class TestGetStream:
    def test_valid_stream(self):
        rngs = create_rng_hierarchy(42)
        assert get_stream(rngs, 'correlated') is rngs['correlated']

    def test_unknown_stream_raises(self):
        rngs = create_rng_hierarchy(42)
        with pytest.raises(KeyError, match="no_such"):
            get_stream(rngs, 'no_such')
