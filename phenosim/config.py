"""Configuration system for PhenoSim.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → dict overrides

Every optional parameter has its named default here, on its section.
Generators receive their section by value and never read defaults from
anywhere else. Sections are frozen: a configuration is built once per run
and never mutated.

Variance proportions (``VarianceSection``) may be left as ``None``; the
model validator (``phenosim.model.complete_variance``) derives the ones
implied by the others.
"""

from __future__ import annotations

import copy
import dataclasses
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
import yaml

from phenosim.errors import ConfigurationError


VALID_BETA_DISTRIBUTIONS = ('norm', 'unif')
VALID_CONFOUNDER_DISTRIBUTIONS = ('bin', 'cat', 'unif', 'norm')
VALID_NONLINEAR_FUNCTIONS = ('exp', 'log', 'sqrt', 'pow', 'sinh', 'tanh')
VALID_BLEND_STRATEGIES = ('mixture', 'variance', 'substitute')
VALID_NEGATIVE_TRANSFORMS = ('abs', 'set0')

# Shared share within a component; never derived, so never None
SHARED_SHARES = ('theta', 'eta', 'gamma', 'alpha')


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SimulationSection:
    """Dimensions and run control."""
    n_samples: int = 100
    n_traits: int = 10
    seed: int = 42
    standardise: bool = False        # per-trait z-score of the summed phenotype
    sample_prefix: str = 'ID_'
    trait_prefix: str = 'Trait_'


@dataclass(frozen=True)
class GenotypeSection:
    """Simulated genotypes and causal-variant selection."""
    n_snps: int = 5000
    frequencies: Tuple[float, ...] = (0.1, 0.2, 0.4)
    n_causal: int = 20
    standardise_causal: bool = True  # z-score causal dosages before effects


@dataclass(frozen=True)
class GeneticFixedSection:
    """Effect sizes of causal variants.

    p_independent: fraction of causal variants with trait-specific effects.
    p_trait_independent: fraction of traits each independent variant affects.
    Effect sizes: 'norm' → Normal(mean, sd); 'unif' → Uniform(mean ± sd).
    """
    p_independent: float = 0.4
    p_trait_independent: float = 0.2
    distribution: str = 'norm'
    mean: float = 0.0
    sd: float = 1.0


@dataclass(frozen=True)
class ConfounderSetSection:
    """One set of non-genetic covariates.

    distribution:
      'bin'  — Bernoulli(prob)
      'cat'  — category code drawn uniformly from 0 .. n_categories-1
      'unif' — Uniform(mean - sd, mean + sd)
      'norm' — Normal(mean, sd)
    """
    n_confounders: int = 10
    distribution: str = 'norm'
    mean: float = 0.0
    sd: float = 1.0
    n_categories: int = 3
    prob: float = 0.5
    p_independent: float = 0.4
    p_trait_independent: float = 0.2
    beta_distribution: str = 'norm'
    beta_mean: float = 0.0
    beta_sd: float = 1.0


@dataclass(frozen=True)
class NoiseFixedSection:
    """Covariate (noise fixed) effects: one or more confounder sets."""
    sets: Tuple[ConfounderSetSection, ...] = field(
        default_factory=lambda: (ConfounderSetSection(),)
    )


@dataclass(frozen=True)
class CorrelatedSection:
    """Correlated background: C[i, j] = pcorr^|i-j| unless corr_matrix given."""
    pcorr: float = 0.6
    corr_matrix: Optional[np.ndarray] = None


@dataclass(frozen=True)
class NoiseBackgroundSection:
    """Observational noise; mean/sd apply to the independent part."""
    mean: float = 0.0
    sd: float = 1.0


@dataclass(frozen=True)
class NonlinearSection:
    """Optional nonlinear transform of the summed phenotype.

    function: None (off), 'exp', 'log', 'sqrt', 'pow', 'sinh', 'tanh'.
    proportion: share of the phenotype produced nonlinearly.
    strategy: 'mixture' | 'variance' | 'substitute' (see phenosim.nonlinear).
    """
    function: Optional[str] = None
    proportion: float = 0.0
    strategy: str = 'mixture'
    expbase: float = math.e
    logbase: float = 10.0
    power: float = 2.0
    transform_negative: str = 'abs'


@dataclass(frozen=True)
class VarianceSection:
    """Variance proportions of the unit total phenotypic variance.

    gen_var + noise_var = 1
    genetic:  h2s (variants) + h2bg (background) = 1
    noise:    delta (covariates) + rho (correlated) + phi (observational) = 1
    Shared share within a component (independent share = 1 - shared):
      theta (variants), eta (background), gamma (covariates),
      alpha (observational noise).
    ``None`` means "derive from the others".
    """
    gen_var: Optional[float] = None
    noise_var: Optional[float] = None
    h2s: Optional[float] = None
    h2bg: Optional[float] = None
    theta: float = 0.8
    eta: float = 0.8
    delta: Optional[float] = None
    rho: Optional[float] = None
    phi: Optional[float] = None
    gamma: float = 0.8
    alpha: float = 0.8


@dataclass(frozen=True)
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    genotypes: GenotypeSection = field(default_factory=GenotypeSection)
    genetic_fixed: GeneticFixedSection = field(default_factory=GeneticFixedSection)
    noise_fixed: NoiseFixedSection = field(default_factory=NoiseFixedSection)
    correlated: CorrelatedSection = field(default_factory=CorrelatedSection)
    noise_background: NoiseBackgroundSection = field(
        default_factory=NoiseBackgroundSection
    )
    nonlinear: NonlinearSection = field(default_factory=NonlinearSection)
    variance: VarianceSection = field(default_factory=VarianceSection)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'genotypes': GenotypeSection,
    'genetic_fixed': GeneticFixedSection,
    'correlated': CorrelatedSection,
    'noise_background': NoiseBackgroundSection,
    'nonlinear': NonlinearSection,
    'variance': VarianceSection,
}


def config_from_dict(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        raw = data.get(key)
        if not isinstance(raw, dict):
            sections[key] = cls()
            continue
        raw = dict(raw)  # don't mutate caller's dict
        if key == 'genotypes' and 'frequencies' in raw:
            raw['frequencies'] = tuple(float(f) for f in raw['frequencies'])
        if key == 'correlated' and raw.get('corr_matrix') is not None:
            raw['corr_matrix'] = np.asarray(raw['corr_matrix'], dtype=np.float64)
        sections[key] = _dict_to_section(cls, raw)

    # Confounder sets: list of dicts under noise_fixed.sets
    noise_fixed = data.get('noise_fixed')
    if isinstance(noise_fixed, dict) and isinstance(noise_fixed.get('sets'), list):
        sets = tuple(
            _dict_to_section(ConfounderSetSection, s)
            for s in noise_fixed['sets'] if isinstance(s, dict)
        )
        sections['noise_fixed'] = NoiseFixedSection(sets=sets)
    else:
        sections['noise_fixed'] = NoiseFixedSection()

    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict[str, Any]:
    """Plain-Python (YAML-serialisable) view of a configuration."""
    def _plain(value):
        if isinstance(value, np.ndarray):
            return value.tolist()
        if isinstance(value, dict):
            return {k: _plain(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_plain(v) for v in value]
        return value

    return _plain(dataclasses.asdict(config))


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _check_fraction(value: Optional[float], name: str) -> None:
    if value is None:
        return
    if not (0.0 <= value <= 1.0):
        raise ConfigurationError(f"{name} must be in [0, 1], got {value}")


def _check_choice(value: str, valid, name: str) -> None:
    if value not in valid:
        raise ConfigurationError(
            f"{name} must be one of {set(valid)}, got '{value}'"
        )


def validate_config(config: SimulationConfig) -> None:
    """Validate per-section ranges. Raises ConfigurationError on failure.

    Checks:
      - Dimensions and counts are positive
      - Allele frequencies lie in (0, 1)
      - Every fraction lies in [0, 1]
      - Distribution, function and strategy names are known

    Cross-parameter consistency of the variance proportions is checked by
    ``phenosim.model.complete_variance``.
    """
    sim = config.simulation
    if sim.n_samples < 2:
        raise ConfigurationError(
            f"simulation.n_samples must be >= 2, got {sim.n_samples}"
        )
    if sim.n_traits < 1:
        raise ConfigurationError(
            f"simulation.n_traits must be >= 1, got {sim.n_traits}"
        )
    if sim.seed < 0:
        raise ConfigurationError("simulation.seed must be non-negative")

    g = config.genotypes
    if g.n_snps < 1:
        raise ConfigurationError(f"genotypes.n_snps must be >= 1, got {g.n_snps}")
    if g.n_causal < 0:
        raise ConfigurationError(
            f"genotypes.n_causal must be >= 0, got {g.n_causal}"
        )
    if len(g.frequencies) == 0:
        raise ConfigurationError("genotypes.frequencies must not be empty")
    for f in g.frequencies:
        if not (0.0 < f < 1.0):
            raise ConfigurationError(
                f"genotypes.frequencies must lie in (0, 1), got {f}"
            )

    gf = config.genetic_fixed
    _check_fraction(gf.p_independent, 'genetic_fixed.p_independent')
    _check_fraction(gf.p_trait_independent, 'genetic_fixed.p_trait_independent')
    _check_choice(gf.distribution, VALID_BETA_DISTRIBUTIONS,
                  'genetic_fixed.distribution')
    if gf.sd < 0:
        raise ConfigurationError("genetic_fixed.sd must be >= 0")

    for i, s in enumerate(config.noise_fixed.sets):
        label = f"noise_fixed.sets[{i}]"
        if s.n_confounders < 1:
            raise ConfigurationError(
                f"{label}.n_confounders must be >= 1, got {s.n_confounders}"
            )
        _check_choice(s.distribution, VALID_CONFOUNDER_DISTRIBUTIONS,
                      f"{label}.distribution")
        _check_choice(s.beta_distribution, VALID_BETA_DISTRIBUTIONS,
                      f"{label}.beta_distribution")
        _check_fraction(s.prob, f"{label}.prob")
        _check_fraction(s.p_independent, f"{label}.p_independent")
        _check_fraction(s.p_trait_independent, f"{label}.p_trait_independent")
        if s.distribution == 'cat' and s.n_categories < 2:
            raise ConfigurationError(
                f"{label}.n_categories must be >= 2, got {s.n_categories}"
            )
        if s.sd < 0 or s.beta_sd < 0:
            raise ConfigurationError(f"{label} standard deviations must be >= 0")

    c = config.correlated
    if not (0.0 <= c.pcorr < 1.0):
        raise ConfigurationError(
            f"correlated.pcorr must be in [0, 1), got {c.pcorr}"
        )

    if config.noise_background.sd < 0:
        raise ConfigurationError("noise_background.sd must be >= 0")

    nl = config.nonlinear
    if nl.function is not None:
        _check_choice(nl.function, VALID_NONLINEAR_FUNCTIONS, 'nonlinear.function')
    _check_choice(nl.strategy, VALID_BLEND_STRATEGIES, 'nonlinear.strategy')
    _check_choice(nl.transform_negative, VALID_NEGATIVE_TRANSFORMS,
                  'nonlinear.transform_negative')
    _check_fraction(nl.proportion, 'nonlinear.proportion')
    if nl.expbase <= 0 or nl.logbase <= 0 or nl.logbase == 1:
        raise ConfigurationError(
            "nonlinear.expbase must be > 0 and nonlinear.logbase > 0, != 1"
        )

    v = config.variance
    for name in ('gen_var', 'noise_var', 'h2s', 'h2bg', 'theta', 'eta',
                 'delta', 'rho', 'phi', 'gamma', 'alpha'):
        _check_fraction(getattr(v, name), f"variance.{name}")
    for name in SHARED_SHARES:
        if getattr(v, name) is None:
            raise ConfigurationError(
                f"variance.{name} must be a number in [0, 1], got None; "
                f"shared shares are never derived"
            )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        overrides: Optional dict of parameter overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ConfigurationError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            scenario = yaml.safe_load(f) or {}
        deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, copy.deepcopy(overrides))

    config = config_from_dict(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
