"""Tests for phenosim.rescale — pooled variance and rescaling."""

import logging

import numpy as np
import pytest

from phenosim.errors import ConfigurationError
from phenosim.rescale import (
    pooled_variance,
    rescale_variance,
    standardise_columns,
)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


class TestPooledVariance:
    def test_matches_flattened_var(self, rng):
        m = rng.normal(3.0, 2.0, size=(50, 7))
        assert pooled_variance(m) == pytest.approx(np.var(m.ravel(), ddof=1))

    def test_constant_is_zero(self):
        assert pooled_variance(np.full((5, 5), 3.0)) == 0.0

    def test_single_entry_is_zero(self):
        assert pooled_variance(np.array([[1.0]])) == 0.0


class TestRescaleVariance:
    @pytest.mark.parametrize("target", [0.0, 0.024, 0.5, 1.0])
    def test_reaches_target(self, rng, target):
        m = rng.normal(0, 5.0, size=(100, 10))
        out = rescale_variance(m, target)
        assert out.var_after == pytest.approx(target, abs=1e-12)
        assert pooled_variance(out.component) == pytest.approx(target, abs=1e-12)
        assert out.attainable

    def test_records_before(self, rng):
        m = rng.normal(0, 2.0, size=(100, 10))
        out = rescale_variance(m, 0.3)
        assert out.var_before == pytest.approx(pooled_variance(m))
        assert out.target == 0.3

    def test_preserves_shape_and_correlation(self, rng):
        m = rng.normal(size=(80, 4))
        out = rescale_variance(m, 0.1).component
        assert out.shape == m.shape
        np.testing.assert_allclose(np.corrcoef(out.T), np.corrcoef(m.T))

    def test_input_not_modified(self, rng):
        m = rng.normal(size=(20, 3))
        before = m.copy()
        rescale_variance(m, 0.2)
        np.testing.assert_array_equal(m, before)

    def test_zero_variance_flagged(self, caplog):
        m = np.ones((10, 3))
        with caplog.at_level(logging.WARNING, logger='phenosim.rescale'):
            out = rescale_variance(m, 0.4, 'noise_fixed_shared')
        assert not out.attainable
        assert out.var_after == 0.0
        np.testing.assert_array_equal(out.component, m)
        assert 'noise_fixed_shared' in caplog.text

    def test_zero_variance_zero_target_ok(self):
        out = rescale_variance(np.zeros((10, 3)), 0.0)
        assert out.attainable

    @pytest.mark.parametrize("target", [-0.1, np.nan, np.inf])
    def test_invalid_target(self, target):
        with pytest.raises(ConfigurationError):
            rescale_variance(np.eye(3), target)


class TestStandardiseColumns:
    def test_zero_mean_unit_variance(self, rng):
        m = rng.normal(5.0, 3.0, size=(60, 4))
        out = standardise_columns(m)
        np.testing.assert_allclose(out.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(out.std(axis=0, ddof=1), 1.0)

    def test_constant_column_zero(self, rng):
        m = rng.normal(size=(30, 3))
        m[:, 1] = 7.0
        out = standardise_columns(m)
        np.testing.assert_array_equal(out[:, 1], 0.0)
        assert np.all(np.isfinite(out))
