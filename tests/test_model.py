"""Tests for phenosim.model — variance completion, validation, composition.

Covers:
  - Derivation of unset proportions and group-sum errors
  - Genetic / noise model classification (4 + 8 variants)
  - Pre-sampling validation: causal counts, kinship and genotype dimensions
  - Each active component rescaled to its target, summed into the phenotype
  - Determinism and per-component RNG isolation
  - Optional standardisation and nonlinear transform
"""

import dataclasses
from pathlib import Path

import numpy as np
import pytest

from phenosim.config import (
    CorrelatedSection,
    GeneticFixedSection,
    GenotypeSection,
    NonlinearSection,
    SimulationConfig,
    SimulationSection,
    VarianceSection,
    load_config,
)
from phenosim.errors import (
    ConfigurationError,
    DimensionError,
    NumericalError,
    SamplingError,
)
from phenosim.genotypes import ChromosomeGenotypes, InMemoryGenotypes, GenotypeSource
from phenosim.model import (
    classify_genetic_model,
    classify_noise_model,
    complete_variance,
    component_targets,
    resolve_model,
    simulate_phenotype,
)
from phenosim.rescale import pooled_variance
from phenosim.types import COMPONENT_ORDER, GeneticModel, NoiseModel


# ═══════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════


def make_config(n_samples=100, n_traits=15, n_snps=500, seed=1, **variance):
    return SimulationConfig(
        simulation=SimulationSection(n_samples=n_samples, n_traits=n_traits,
                                     seed=seed),
        genotypes=GenotypeSection(n_snps=n_snps),
        variance=VarianceSection(**variance),
    )


@pytest.fixture
def full_config():
    """Every one of the nine components active."""
    return make_config(gen_var=0.4, h2s=0.1, delta=0.3, rho=0.1)


class ExplodingSource(GenotypeSource):
    """Fails on any read; proves validation happens before sampling."""

    def __init__(self, n_samples, n_variants):
        self.n_samples = n_samples
        self.n_variants = n_variants

    def read_columns(self, indices):
        raise AssertionError("genotypes read during validation")


# ═══════════════════════════════════════════════════════════════════════
# VARIANCE COMPLETION
# ═══════════════════════════════════════════════════════════════════════


class TestCompleteVariance:
    def test_derives_single_missing(self):
        p = complete_variance(VarianceSection(gen_var=0.4, h2s=0.25, delta=0.3,
                                              rho=0.1))
        assert p.noise_var == pytest.approx(0.6)
        assert p.h2bg == pytest.approx(0.75)
        assert p.phi == pytest.approx(0.6)

    def test_several_missing_become_zero(self):
        p = complete_variance(VarianceSection(gen_var=0.4, h2s=0.0, phi=1.0))
        assert p.delta == 0.0
        assert p.rho == 0.0
        assert p.h2bg == pytest.approx(1.0)

    def test_several_missing_ambiguous(self):
        with pytest.raises(ConfigurationError, match="noise variance"):
            complete_variance(VarianceSection(gen_var=0.4, h2s=0.5, phi=0.5))

    def test_totals_do_not_sum_to_one(self):
        with pytest.raises(ConfigurationError) as excinfo:
            complete_variance(VarianceSection(gen_var=0.7, noise_var=0.5))
        message = str(excinfo.value)
        assert 'gen_var' in message
        assert 'noise_var' in message
        assert 'total variance' in message

    def test_no_totals_supplied(self):
        with pytest.raises(ConfigurationError, match="total variance"):
            complete_variance(VarianceSection())

    def test_genetic_group_exceeds_one(self):
        with pytest.raises(ConfigurationError, match="genetic variance"):
            complete_variance(VarianceSection(gen_var=0.5, h2s=0.6, h2bg=0.6,
                                              phi=1.0))

    def test_no_genetic_variance_skips_genetic_group(self):
        p = complete_variance(VarianceSection(gen_var=0.0, phi=1.0))
        assert p.noise_var == 1.0
        assert p.h2s == 0.0
        assert p.h2bg == 0.0

    def test_sum_within_tolerance(self):
        p = complete_variance(VarianceSection(gen_var=0.1, noise_var=0.9,
                                              h2s=1.0, delta=0.1, rho=0.2,
                                              phi=0.7))
        assert p.gen_var + p.noise_var == pytest.approx(1.0)

    def test_null_shared_share(self):
        with pytest.raises(ConfigurationError, match="variance.theta"):
            complete_variance(VarianceSection(gen_var=0.5, h2s=1.0, phi=1.0,
                                              theta=None))

    def test_out_of_range(self):
        with pytest.raises(ConfigurationError, match="theta"):
            complete_variance(VarianceSection(gen_var=0.5, h2s=1.0, phi=1.0,
                                              theta=1.2))


class TestTargets:
    @pytest.mark.parametrize("variance", [
        dict(gen_var=0.4, h2s=0.1, delta=0.3, rho=0.1),
        dict(gen_var=0.0, phi=1.0),
        dict(gen_var=1.0, h2s=0.3),
        dict(gen_var=0.25, h2s=0.0, delta=0.5, rho=0.5, theta=1.0, alpha=0.0),
    ])
    def test_targets_sum_to_one(self, variance):
        targets = component_targets(complete_variance(VarianceSection(**variance)))
        assert list(targets) == list(COMPONENT_ORDER)
        assert sum(targets.values()) == pytest.approx(1.0)
        assert all(v >= 0 for v in targets.values())


# ═══════════════════════════════════════════════════════════════════════
# CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════


class TestClassification:
    @pytest.mark.parametrize("variance, expected", [
        (dict(gen_var=0.0, phi=1.0), GeneticModel.NONE),
        (dict(gen_var=0.5, h2s=0.0, phi=1.0), GeneticModel.BACKGROUND_ONLY),
        (dict(gen_var=0.5, h2s=1.0, phi=1.0), GeneticModel.FIXED_ONLY),
        (dict(gen_var=0.5, h2s=0.5, phi=1.0), GeneticModel.FIXED_AND_BACKGROUND),
    ])
    def test_genetic(self, variance, expected):
        params = complete_variance(VarianceSection(**variance))
        assert classify_genetic_model(params) is expected

    @pytest.mark.parametrize("delta, rho, phi, expected", [
        (1.0, 0.0, 0.0, NoiseModel.FIXED_ONLY),
        (0.0, 0.0, 1.0, NoiseModel.BACKGROUND_ONLY),
        (0.0, 1.0, 0.0, NoiseModel.CORRELATED_ONLY),
        (0.5, 0.0, 0.5, NoiseModel.FIXED_AND_BACKGROUND),
        (0.5, 0.5, 0.0, NoiseModel.FIXED_AND_CORRELATED),
        (0.0, 0.5, 0.5, NoiseModel.BACKGROUND_AND_CORRELATED),
        (0.2, 0.3, 0.5, NoiseModel.FIXED_BACKGROUND_AND_CORRELATED),
    ])
    def test_noise(self, delta, rho, phi, expected):
        params = complete_variance(VarianceSection(
            gen_var=0.5, h2s=1.0, delta=delta, rho=rho, phi=phi))
        assert classify_noise_model(params) is expected

    def test_noise_none(self):
        params = complete_variance(VarianceSection(gen_var=1.0, h2s=1.0))
        assert classify_noise_model(params) is NoiseModel.NONE

    def test_active_components_follow_order(self, full_config):
        spec = resolve_model(full_config)
        assert spec.active_components() == list(COMPONENT_ORDER)

    def test_inactive_families_dropped(self):
        spec = resolve_model(make_config(gen_var=0.5, h2s=0.0, phi=1.0))
        assert spec.active_components() == [
            'genetic_background_shared',
            'genetic_background_independent',
            'noise_background_shared',
            'noise_background_independent',
        ]


# ═══════════════════════════════════════════════════════════════════════
# PRE-SAMPLING VALIDATION
# ═══════════════════════════════════════════════════════════════════════


class TestResolveModel:
    def test_too_many_causal_variants(self):
        config = make_config(gen_var=0.5, h2s=1.0, phi=1.0)
        config = dataclasses.replace(
            config, genotypes=GenotypeSection(n_snps=10, n_causal=50))
        with pytest.raises(SamplingError):
            resolve_model(config)

    def test_too_many_causal_from_source(self):
        config = make_config(gen_var=0.5, h2s=1.0, phi=1.0)
        with pytest.raises(SamplingError):
            simulate_phenotype(config, genotype_source=ExplodingSource(100, 10))

    def test_kinship_wrong_size(self):
        config = make_config(gen_var=0.5, h2s=0.0, phi=1.0)
        with pytest.raises(DimensionError):
            simulate_phenotype(config, kinship=np.eye(40))

    def test_genotype_source_wrong_rows(self):
        config = make_config(gen_var=0.5, h2s=1.0, phi=1.0)
        with pytest.raises(DimensionError):
            simulate_phenotype(config, genotype_source=ExplodingSource(40, 500))

    def test_asymmetric_kinship(self):
        kinship = np.eye(100)
        kinship[0, 5] = 50.0
        config = make_config(gen_var=0.5, h2s=0.0, phi=1.0)
        with pytest.raises(NumericalError, match="symmetric"):
            simulate_phenotype(config, kinship=kinship)

    def test_asymmetric_correlation_fails_before_reading(self):
        corr = np.eye(15)
        corr[0, 1] = 0.3
        config = dataclasses.replace(
            make_config(gen_var=0.5, h2s=1.0, rho=1.0),
            correlated=CorrelatedSection(corr_matrix=corr),
        )
        with pytest.raises(NumericalError, match="symmetric"):
            simulate_phenotype(config, genotype_source=ExplodingSource(100, 500))

    def test_negative_seed_override(self):
        config = make_config(gen_var=0.0, phi=1.0)
        with pytest.raises(ConfigurationError, match="seed"):
            simulate_phenotype(config, seed=-1)

    def test_null_shared_share(self):
        config = make_config(gen_var=0.0, phi=1.0, alpha=None)
        with pytest.raises(ConfigurationError, match="variance.alpha"):
            simulate_phenotype(config)

    def test_invalid_config_fails_before_reading(self):
        config = make_config(gen_var=0.7, noise_var=0.5)
        with pytest.raises(ConfigurationError):
            simulate_phenotype(config, genotype_source=ExplodingSource(100, 500))

    def test_independent_share_without_independent_variants(self):
        config = dataclasses.replace(
            make_config(gen_var=0.5, h2s=1.0, phi=1.0, theta=0.8),
            genetic_fixed=GeneticFixedSection(p_independent=0.0),
        )
        with pytest.raises(ConfigurationError, match="theta"):
            resolve_model(config)

    def test_all_shared_variants_with_theta_one(self):
        config = dataclasses.replace(
            make_config(gen_var=0.5, h2s=1.0, phi=1.0, theta=1.0),
            genetic_fixed=GeneticFixedSection(p_independent=0.0),
        )
        resolve_model(config)

    def test_shared_share_without_shared_variants(self):
        config = dataclasses.replace(
            make_config(gen_var=0.5, h2s=1.0, phi=1.0, theta=0.8),
            genetic_fixed=GeneticFixedSection(p_independent=1.0),
        )
        with pytest.raises(ConfigurationError, match="shared"):
            resolve_model(config)


# ═══════════════════════════════════════════════════════════════════════
# COMPOSITION
# ═══════════════════════════════════════════════════════════════════════


class TestSimulatePhenotype:
    def test_background_scenario(self):
        """N=100, P=15, 40% genetic (all background), 60% observational noise."""
        config = make_config(gen_var=0.4, h2s=0.0, phi=1.0, eta=0.6, alpha=0.6)
        result = simulate_phenotype(config)
        assert result.phenotype.shape == (100, 15)
        assert result.genetic_model is GeneticModel.BACKGROUND_ONLY
        assert result.noise_model is NoiseModel.BACKGROUND_ONLY
        comps = result.components
        assert comps['genetic_background_shared'].var_after == pytest.approx(0.24)
        assert comps['genetic_background_independent'].var_after == pytest.approx(0.16)
        assert comps['noise_background_shared'].var_after == pytest.approx(0.36)
        assert comps['noise_background_independent'].var_after == pytest.approx(0.24)
        assert result.causal is None
        assert result.kinship.shape == (100, 100)

    def test_every_component_hits_target(self, full_config):
        result = simulate_phenotype(full_config)
        assert list(result.components) == list(COMPONENT_ORDER)
        for name, rec in result.components.items():
            assert rec.attainable, name
            assert rec.var_after == pytest.approx(rec.target, rel=1e-9), name
            assert pooled_variance(rec.rescaled) == pytest.approx(rec.target)

    def test_phenotype_is_sum_of_components(self, full_config):
        result = simulate_phenotype(full_config)
        total = sum(rec.rescaled for rec in result.components.values())
        np.testing.assert_allclose(result.phenotype, total, atol=1e-12)

    def test_deterministic(self, full_config):
        r1 = simulate_phenotype(full_config)
        r2 = simulate_phenotype(full_config)
        np.testing.assert_array_equal(r1.phenotype, r2.phenotype)

    def test_seed_override(self, full_config):
        r1 = simulate_phenotype(full_config, seed=5)
        r2 = simulate_phenotype(full_config, seed=6)
        assert r1.seed == 5
        assert not np.allclose(r1.phenotype, r2.phenotype)

    def test_component_streams_isolated(self):
        """Switching the correlated component on leaves other draws unchanged."""
        without = simulate_phenotype(make_config(gen_var=0.0, phi=1.0))
        with_corr = simulate_phenotype(make_config(gen_var=0.0, rho=0.2, phi=0.8))
        for name in ('noise_background_shared', 'noise_background_independent'):
            np.testing.assert_array_equal(without.components[name].raw,
                                          with_corr.components[name].raw)
        assert 'correlated' in with_corr.components
        assert 'correlated' not in without.components

    def test_no_genetics(self):
        result = simulate_phenotype(make_config(gen_var=0.0, phi=1.0))
        assert result.genetic_model is GeneticModel.NONE
        assert result.causal is None
        assert result.kinship is None

    def test_supplied_kinship_used_as_is(self):
        rng = np.random.default_rng(0)
        a = rng.normal(size=(100, 100))
        kinship = a @ a.T / 100 + np.eye(100)
        result = simulate_phenotype(make_config(gen_var=0.5, h2s=0.0, phi=1.0),
                                    kinship=kinship)
        np.testing.assert_array_equal(result.kinship, kinship)

    def test_in_memory_genotypes(self):
        g = np.random.default_rng(4).binomial(2, 0.3, size=(100, 200))
        config = make_config(gen_var=0.5, h2s=1.0, phi=1.0)
        result = simulate_phenotype(config, genotype_source=InMemoryGenotypes(g))
        assert result.causal.indices.max() < 200
        assert len(result.causal.labels) == 20

    def test_chromosome_source(self):
        rng = np.random.default_rng(4)
        source = ChromosomeGenotypes.from_arrays({
            'chr1': rng.binomial(2, 0.3, size=(100, 150)),
            'chr2': rng.binomial(2, 0.2, size=(100, 50)),
        })
        config = make_config(gen_var=0.5, h2s=0.5, phi=1.0)
        result = simulate_phenotype(config, genotype_source=source)
        assert result.genetic_model is GeneticModel.FIXED_AND_BACKGROUND
        assert all(label.startswith('chr') for label in result.causal.labels)
        assert result.kinship.shape == (100, 100)

    def test_standardise(self, full_config):
        config = dataclasses.replace(
            full_config,
            simulation=dataclasses.replace(full_config.simulation, standardise=True),
        )
        y = simulate_phenotype(config).phenotype
        np.testing.assert_allclose(y.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(y.std(axis=0, ddof=1), 1.0)

    def test_nonlinear(self, full_config):
        config = dataclasses.replace(
            full_config,
            nonlinear=NonlinearSection(function='tanh', proportion=0.5),
        )
        linear = simulate_phenotype(full_config).phenotype
        y = simulate_phenotype(config).phenotype
        np.testing.assert_allclose(y, 0.5 * linear + 0.5 * np.tanh(linear))

    def test_parameters_and_ids(self, full_config):
        result = simulate_phenotype(full_config)
        assert result.parameters['phi'] == pytest.approx(0.6)
        assert result.parameters['genetic_model'] == 'fixed-and-background'
        assert result.parameters['noise_model'] == 'fixed-background-and-correlated'
        assert result.sample_ids[0] == 'ID_1'
        assert result.trait_ids[-1] == 'Trait_15'
        summary = result.variance_summary()
        assert set(summary) == set(COMPONENT_ORDER)

    def test_project_default_config(self):
        path = Path(__file__).parent.parent / "configs" / "default.yaml"
        result = simulate_phenotype(load_config(path))
        assert result.phenotype.shape == (100, 15)
        assert np.all(np.isfinite(result.phenotype))
        assert len(result.components) == 9
