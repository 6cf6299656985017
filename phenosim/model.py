"""Model validation and phenotype composition for PhenoSim.

Two stages:

  1. resolve_model() — no random numbers drawn:
       - completes the variance proportions (derives implied values)
       - checks every group sums to 1 within PROPORTION_TOL
       - classifies the genetic and noise model (closed enumerations)
       - checks counts and dimensions against the genotype/kinship inputs

  2. simulate_phenotype() — for every active component, in COMPONENT_ORDER:
       generate → rescale to its target variance → add to the running sum;
       then optional per-trait standardisation and nonlinear transform.

Target variance of each component (total phenotypic variance = 1):

  genetic_fixed_{shared, independent}        gen_var · h2s  · {theta, 1-theta}
  genetic_background_{shared, independent}   gen_var · h2bg · {eta,   1-eta}
  noise_fixed_{shared, independent}          noise_var · delta · {gamma, 1-gamma}
  correlated                                 noise_var · rho
  noise_background_{shared, independent}     noise_var · phi · {alpha, 1-alpha}
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from phenosim.config import (
    SHARED_SHARES,
    SimulationConfig,
    VarianceSection,
    validate_config,
)
from phenosim.effects import (
    check_correlation_matrix,
    correlated_background_effects,
    genetic_background_effects,
    genetic_fixed_effects,
    noise_background_effects,
    noise_fixed_effects,
    split_counts,
    traits_per_independent,
)
from phenosim.errors import ConfigurationError, DimensionError
from phenosim.genotypes import (
    CausalVariants,
    GenotypeSource,
    InMemoryGenotypes,
    check_causal_count,
    sample_causal_variants,
    simulate_genotypes,
    standardise_genotypes,
)
from phenosim.kinship import check_kinship, estimate_kinship
from phenosim.nonlinear import apply_nonlinear
from phenosim.rescale import rescale_variance, standardise_columns
from phenosim.rng import create_rng_hierarchy, get_stream
from phenosim.types import (
    COMPONENT_ORDER,
    PROPORTION_TOL,
    ComponentPair,
    GeneticModel,
    NoiseModel,
    check_shape,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# VARIANCE PARAMETERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VarianceParameters:
    """Completed variance proportions; every value is set."""
    gen_var: float
    noise_var: float
    h2s: float
    h2bg: float
    theta: float
    eta: float
    delta: float
    rho: float
    phi: float
    gamma: float
    alpha: float

    def as_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)


def _complete_group(
    group: str,
    values: Dict[str, Optional[float]],
) -> Dict[str, float]:
    """Complete one group of proportions that must sum to 1.

    - all supplied: must sum to 1
    - one missing: derived as 1 - sum(supplied)
    - several missing: zero if the supplied ones already sum to 1
    - none supplied: error
    """
    supplied = {k: float(v) for k, v in values.items() if v is not None}
    missing = [k for k, v in values.items() if v is None]
    names = ', '.join(values)

    if not supplied:
        raise ConfigurationError(
            f"{group}: none of {names} supplied; at least one is required"
        )
    total = sum(supplied.values())
    terms = ' + '.join(f"{k} ({v:g})" for k, v in supplied.items())

    if not missing:
        if abs(total - 1.0) > PROPORTION_TOL:
            raise ConfigurationError(
                f"{group}: {terms} must sum to 1, got {total:.10g}"
            )
        return supplied
    if total > 1.0 + PROPORTION_TOL:
        raise ConfigurationError(
            f"{group}: {terms} exceeds 1 ({total:.10g}); "
            f"cannot derive {', '.join(missing)}"
        )

    completed = dict(supplied)
    if len(missing) == 1:
        completed[missing[0]] = max(0.0, 1.0 - total)
    elif abs(total - 1.0) <= PROPORTION_TOL:
        for k in missing:
            completed[k] = 0.0
    else:
        raise ConfigurationError(
            f"{group}: {terms} sum to {total:.10g}; cannot derive "
            f"{', '.join(missing)} (more than one unset)"
        )
    # Keep the declared order
    return {k: completed[k] for k in values}


def complete_variance(section: VarianceSection) -> VarianceParameters:
    """Validate the variance proportions and derive the unset ones.

    Raises:
        ConfigurationError: Naming the offending group when a group does not
            sum to 1, a required value is missing, or a value is outside [0, 1].
    """
    for name in ('gen_var', 'noise_var', 'h2s', 'h2bg', 'theta', 'eta',
                 'delta', 'rho', 'phi', 'gamma', 'alpha'):
        value = getattr(section, name)
        if value is not None and not (0.0 <= value <= 1.0):
            raise ConfigurationError(f"variance.{name} must be in [0, 1], got {value}")
    for name in SHARED_SHARES:
        if getattr(section, name) is None:
            raise ConfigurationError(
                f"variance.{name} must be a number in [0, 1], got None; "
                f"shared shares are never derived"
            )

    total = _complete_group(
        'total variance',
        {'gen_var': section.gen_var, 'noise_var': section.noise_var},
    )

    if total['gen_var'] > 0:
        genetic = _complete_group(
            'genetic variance', {'h2s': section.h2s, 'h2bg': section.h2bg},
        )
    else:
        genetic = {'h2s': 0.0, 'h2bg': 0.0}

    if total['noise_var'] > 0:
        noise = _complete_group(
            'noise variance',
            {'delta': section.delta, 'rho': section.rho, 'phi': section.phi},
        )
    else:
        noise = {'delta': 0.0, 'rho': 0.0, 'phi': 0.0}

    return VarianceParameters(
        gen_var=total['gen_var'],
        noise_var=total['noise_var'],
        h2s=genetic['h2s'],
        h2bg=genetic['h2bg'],
        theta=section.theta,
        eta=section.eta,
        delta=noise['delta'],
        rho=noise['rho'],
        phi=noise['phi'],
        gamma=section.gamma,
        alpha=section.alpha,
    )


def classify_genetic_model(params: VarianceParameters) -> GeneticModel:
    """Map completed proportions to one genetic model variant."""
    if params.gen_var == 0:
        return GeneticModel.NONE
    fixed, background = params.h2s > 0, params.h2bg > 0
    if fixed and background:
        return GeneticModel.FIXED_AND_BACKGROUND
    if fixed:
        return GeneticModel.FIXED_ONLY
    return GeneticModel.BACKGROUND_ONLY


def classify_noise_model(params: VarianceParameters) -> NoiseModel:
    """Map completed proportions to one of the eight noise model variants."""
    if params.noise_var == 0:
        return NoiseModel.NONE
    return NoiseModel.from_flags(
        fixed=params.delta > 0,
        background=params.phi > 0,
        correlated=params.rho > 0,
    )


def component_targets(params: VarianceParameters) -> Dict[str, float]:
    """Target variance of every component, in COMPONENT_ORDER."""
    g, n = params.gen_var, params.noise_var
    return {
        'genetic_fixed_shared': g * params.h2s * params.theta,
        'genetic_fixed_independent': g * params.h2s * (1.0 - params.theta),
        'genetic_background_shared': g * params.h2bg * params.eta,
        'genetic_background_independent': g * params.h2bg * (1.0 - params.eta),
        'noise_fixed_shared': n * params.delta * params.gamma,
        'noise_fixed_independent': n * params.delta * (1.0 - params.gamma),
        'correlated': n * params.rho,
        'noise_background_shared': n * params.phi * params.alpha,
        'noise_background_independent': n * params.phi * (1.0 - params.alpha),
    }


# ═══════════════════════════════════════════════════════════════════════
# MODEL RESOLUTION
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ModelSpec:
    """Validated model: completed parameters, model variants, targets."""
    params: VarianceParameters
    genetic_model: GeneticModel
    noise_model: NoiseModel
    targets: Dict[str, float]

    def active_components(self) -> List[str]:
        """Component names that will be generated, in summation order."""
        families = []
        if self.genetic_model.has_fixed:
            families.append('genetic_fixed')
        if self.genetic_model.has_background:
            families.append('genetic_background')
        if self.noise_model.has_fixed:
            families.append('noise_fixed')
        if self.noise_model.has_correlated:
            families.append('correlated')
        if self.noise_model.has_background:
            families.append('noise_background')
        return [name for name in COMPONENT_ORDER
                if any(name.startswith(f) for f in families)]


def _check_split(
    label: str,
    n_independent: int,
    n_shared: int,
    n_traits_affected: int,
    target_shared: float,
    target_independent: float,
    shared_param: str,
) -> None:
    if target_independent > 0 and (n_independent == 0 or n_traits_affected == 0):
        raise ConfigurationError(
            f"{label}: {shared_param} < 1 assigns variance to independent "
            f"effects, but p_independent/p_trait_independent yield "
            f"{n_independent} independent sources affecting "
            f"{n_traits_affected} traits"
        )
    if target_shared > 0 and n_shared == 0:
        raise ConfigurationError(
            f"{label}: {shared_param} > 0 assigns variance to shared effects, "
            f"but p_independent leaves no shared sources"
        )


def resolve_model(
    config: SimulationConfig,
    genotype_source: Optional[GenotypeSource] = None,
    kinship: Optional[np.ndarray] = None,
) -> ModelSpec:
    """Validate everything needed for a run without drawing any numbers.

    Args:
        config: Simulation configuration.
        genotype_source: Optional external genotypes (else simulated).
        kinship: Optional external kinship (else estimated).

    Returns:
        ModelSpec.

    Raises:
        ConfigurationError: Inconsistent proportions or fractions.
        DimensionError: Genotype source or kinship does not match N.
        SamplingError: More causal variants requested than available.
    """
    validate_config(config)
    params = complete_variance(config.variance)
    genetic_model = classify_genetic_model(params)
    noise_model = classify_noise_model(params)
    targets = component_targets(params)

    n_samples = config.simulation.n_samples
    n_traits = config.simulation.n_traits

    if kinship is not None:
        check_kinship(kinship, n_samples)
    if genotype_source is not None and genotype_source.n_samples != n_samples:
        raise DimensionError(
            f"genotype source has {genotype_source.n_samples} samples "
            f"but n_samples is {n_samples}"
        )

    if genetic_model.has_fixed:
        n_available = (genotype_source.n_variants if genotype_source is not None
                       else config.genotypes.n_snps)
        n_causal = config.genotypes.n_causal
        check_causal_count(n_available, n_causal)
        gf = config.genetic_fixed
        n_indep, n_shared = split_counts(n_causal, gf.p_independent)
        _check_split(
            'genetic fixed effects', n_indep, n_shared,
            traits_per_independent(n_traits, gf.p_trait_independent),
            targets['genetic_fixed_shared'],
            targets['genetic_fixed_independent'], 'theta',
        )

    if noise_model.has_fixed:
        sets = config.noise_fixed.sets
        if len(sets) == 0:
            raise ConfigurationError(
                "noise fixed effects: delta > 0 but noise_fixed.sets is empty"
            )
        n_indep = n_shared = 0
        n_affected = 0
        for s in sets:
            i, sh = split_counts(s.n_confounders, s.p_independent)
            n_indep += i
            n_shared += sh
            if i > 0:
                n_affected = max(n_affected,
                                 traits_per_independent(n_traits, s.p_trait_independent))
        _check_split(
            'noise fixed effects', n_indep, n_shared, n_affected,
            targets['noise_fixed_shared'],
            targets['noise_fixed_independent'], 'gamma',
        )

    if noise_model.has_correlated and config.correlated.corr_matrix is not None:
        check_correlation_matrix(config.correlated.corr_matrix, n_traits)

    logger.info("genetic model: %s; noise model: %s",
                genetic_model.value, noise_model.value)
    return ModelSpec(params=params, genetic_model=genetic_model,
                     noise_model=noise_model, targets=targets)


# ═══════════════════════════════════════════════════════════════════════
# COMPOSITION
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ComponentRecord:
    """One component before and after rescaling."""
    raw: np.ndarray
    rescaled: np.ndarray
    var_before: float
    var_after: float
    target: float
    attainable: bool


@dataclass
class PhenotypeResult:
    """Final phenotype plus everything needed to audit it."""
    phenotype: np.ndarray                      # (N, P)
    components: Dict[str, ComponentRecord]     # in summation order
    parameters: Dict[str, Any]                 # completed proportions
    genetic_model: GeneticModel
    noise_model: NoiseModel
    seed: int
    sample_ids: List[str] = field(default_factory=list)
    trait_ids: List[str] = field(default_factory=list)
    causal: Optional[CausalVariants] = None
    kinship: Optional[np.ndarray] = None

    def variance_summary(self) -> Dict[str, float]:
        """Pooled variance of each rescaled component."""
        return {name: rec.var_after for name, rec in self.components.items()}


def simulate_phenotype(
    config: SimulationConfig,
    genotype_source: Optional[GenotypeSource] = None,
    kinship: Optional[np.ndarray] = None,
    seed: Optional[int] = None,
) -> PhenotypeResult:
    """Simulate a multi-trait phenotype.

    Validation runs first (see ``resolve_model``); if it fails nothing is
    sampled. Genotypes are simulated when the genetic model needs them and
    no source is given; kinship is estimated from the genotypes when the
    background model needs it and none is given.

    Args:
        config: Simulation configuration.
        genotype_source: Optional external genotypes (N rows).
        kinship: Optional external (N, N) kinship, used as-is.
        seed: Overrides ``config.simulation.seed``.

    Returns:
        PhenotypeResult.
    """
    seed = config.simulation.seed if seed is None else seed
    if seed < 0:
        raise ConfigurationError(f"seed must be non-negative, got {seed}")
    spec = resolve_model(config, genotype_source, kinship)
    rngs = create_rng_hierarchy(seed)
    n_samples = config.simulation.n_samples
    n_traits = config.simulation.n_traits
    genetic, noise = spec.genetic_model, spec.noise_model

    # ── Genotypes, causal variants, kinship ──
    source = genotype_source
    needs_genotypes = genetic.has_fixed or (genetic.has_background and kinship is None)
    if needs_genotypes and source is None:
        g, _ = simulate_genotypes(
            n_samples, config.genotypes.n_snps, config.genotypes.frequencies,
            get_stream(rngs, 'genotypes'),
        )
        source = InMemoryGenotypes(g)

    causal = None
    if genetic.has_fixed:
        causal = sample_causal_variants(
            source, config.genotypes.n_causal, get_stream(rngs, 'causal'),
            standardise=config.genotypes.standardise_causal,
        )

    kin = None
    if genetic.has_background:
        kin = (np.asarray(kinship, dtype=np.float64) if kinship is not None
               else estimate_kinship(standardise_genotypes(source.read_all())))

    # ── Generate ──
    pairs: Dict[str, ComponentPair] = {}
    if genetic.has_fixed:
        pairs['genetic_fixed'] = genetic_fixed_effects(
            causal.genotypes, n_traits, config.genetic_fixed,
            get_stream(rngs, 'genetic_fixed'))
    if genetic.has_background:
        pairs['genetic_background'] = genetic_background_effects(
            kin, n_traits, get_stream(rngs, 'genetic_background'))
    if noise.has_fixed:
        pairs['noise_fixed'] = noise_fixed_effects(
            n_samples, n_traits, config.noise_fixed, get_stream(rngs, 'noise_fixed'))
    if noise.has_correlated:
        pairs['correlated'] = correlated_background_effects(
            n_samples, n_traits, config.correlated, get_stream(rngs, 'correlated'))
    if noise.has_background:
        pairs['noise_background'] = noise_background_effects(
            n_samples, n_traits, config.noise_background,
            get_stream(rngs, 'noise_background'))

    raw: Dict[str, np.ndarray] = {}
    for family, pair in pairs.items():
        check_shape(pair.shared, (n_samples, n_traits), family)
        if family == 'correlated':
            raw['correlated'] = pair.shared
        else:
            raw[f'{family}_shared'] = pair.shared
            raw[f'{family}_independent'] = pair.independent

    # ── Rescale and sum in fixed order ──
    phenotype = np.zeros((n_samples, n_traits), dtype=np.float64)
    records: Dict[str, ComponentRecord] = {}
    for name in spec.active_components():
        rescaled = rescale_variance(raw[name], spec.targets[name], name)
        phenotype += rescaled.component
        records[name] = ComponentRecord(
            raw=raw[name],
            rescaled=rescaled.component,
            var_before=rescaled.var_before,
            var_after=rescaled.var_after,
            target=rescaled.target,
            attainable=rescaled.attainable,
        )

    if config.simulation.standardise:
        phenotype = standardise_columns(phenotype)
    phenotype = apply_nonlinear(phenotype, config.nonlinear, get_stream(rngs, 'nonlinear'))

    parameters: Dict[str, Any] = spec.params.as_dict()
    parameters['genetic_model'] = genetic.value
    parameters['noise_model'] = noise.value

    sim = config.simulation
    return PhenotypeResult(
        phenotype=phenotype,
        components=records,
        parameters=parameters,
        genetic_model=genetic,
        noise_model=noise,
        seed=seed,
        sample_ids=[f"{sim.sample_prefix}{i + 1}" for i in range(n_samples)],
        trait_ids=[f"{sim.trait_prefix}{j + 1}" for j in range(n_traits)],
        causal=causal,
        kinship=kin,
    )
