"""Effect-component generators.

Five generators, one per phenotype component. Each returns a
``ComponentPair`` of (n_samples, n_traits) matrices:

  - genetic_fixed_effects:         causal genotypes × effect sizes
  - genetic_background_effects:    L · B · A with L = chol(kinship)
  - noise_fixed_effects:           confounders × effect sizes
  - correlated_background_effects: rows ~ MVN(0, C), C[i, j] = pcorr^|i-j|
  - noise_background_effects:      i.i.d. noise + rank-1 shared noise

"Shared" parts act identically (or rank-1 correlated) on every trait;
"independent" parts act on a trait-specific subset. Generators work on
their native scale; ``phenosim.rescale`` brings them to target variance.

Generators are independent of each other. Each receives only its section
of the configuration and its own RNG stream.
"""

from __future__ import annotations

import logging
import math
from typing import List, Tuple

import numpy as np
from scipy import linalg

from phenosim.config import (
    ConfounderSetSection,
    CorrelatedSection,
    GeneticFixedSection,
    NoiseBackgroundSection,
    NoiseFixedSection,
)
from phenosim.errors import ConfigurationError, DimensionError, NumericalError
from phenosim.kinship import kinship_cholesky
from phenosim.types import ComponentPair, check_shape

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# SHARED HELPERS
# ═══════════════════════════════════════════════════════════════════════

def draw_effect_sizes(
    n: int,
    distribution: str,
    mean: float,
    sd: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw ``n`` effect sizes: 'norm' → N(mean, sd), 'unif' → U(mean ± sd)."""
    if distribution == 'norm':
        return rng.normal(mean, sd, size=n)
    if distribution == 'unif':
        return rng.uniform(mean - sd, mean + sd, size=n)
    raise ConfigurationError(
        f"effect size distribution must be 'norm' or 'unif', got '{distribution}'"
    )


def split_counts(n_sources: int, p_independent: float) -> Tuple[int, int]:
    """(n_independent, n_shared) for ``n_sources`` effect sources."""
    n_independent = int(round(p_independent * n_sources))
    return n_independent, n_sources - n_independent


def traits_per_independent(n_traits: int, p_trait_independent: float) -> int:
    """Number of traits each independent source affects."""
    return min(n_traits, int(math.ceil(p_trait_independent * n_traits)))


def fixed_effect_design(
    n_sources: int,
    n_traits: int,
    p_independent: float,
    p_trait_independent: float,
    distribution: str,
    mean: float,
    sd: float,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray]:
    """Assign sources to independent/shared and draw their effect sizes.

    Independent sources get a fresh effect per trait, zeroed outside a
    trait subset that is resampled for every source. Shared sources get
    one effect broadcast across all traits.

    Returns:
        (is_independent, betas): (n_sources,) bool and (n_sources, n_traits).
    """
    n_independent, _ = split_counts(n_sources, p_independent)
    is_independent = np.zeros(n_sources, dtype=bool)
    if n_independent > 0:
        is_independent[rng.choice(n_sources, size=n_independent, replace=False)] = True

    n_affected = traits_per_independent(n_traits, p_trait_independent)
    betas = np.zeros((n_sources, n_traits), dtype=np.float64)
    for s in range(n_sources):
        if is_independent[s]:
            effects = draw_effect_sizes(n_traits, distribution, mean, sd, rng)
            affected = rng.choice(n_traits, size=n_affected, replace=False)
            betas[s, affected] = effects[affected]
        else:
            betas[s, :] = draw_effect_sizes(1, distribution, mean, sd, rng)[0]
    return is_independent, betas


def _fixed_pair(
    x: np.ndarray,
    is_independent: np.ndarray,
    betas: np.ndarray,
) -> ComponentPair:
    shared = x[:, ~is_independent] @ betas[~is_independent]
    independent = x[:, is_independent] @ betas[is_independent]
    return ComponentPair(shared=shared, independent=independent)


def _cholesky_lower(matrix: np.ndarray, name: str) -> np.ndarray:
    try:
        return linalg.cholesky(matrix, lower=True)
    except linalg.LinAlgError as exc:
        raise NumericalError(f"{name} is not positive definite: {exc}") from exc


# ═══════════════════════════════════════════════════════════════════════
# GENETIC FIXED EFFECTS
# ═══════════════════════════════════════════════════════════════════════

def genetic_fixed_effects(
    causal: np.ndarray,
    n_traits: int,
    section: GeneticFixedSection,
    rng: np.random.Generator,
) -> ComponentPair:
    """Effects of causal variants on every trait.

    ``round(p_independent · k)`` of the k variants are independent (drawn at
    random); each affects ``ceil(p_trait_independent · P)`` traits. The rest
    are shared and act with one effect size on all traits.

    Args:
        causal: (N, k) causal genotypes (usually standardised).
        n_traits: Number of traits P.
        section: Effect-size parameters.
        rng: RNG stream for this component.

    Returns:
        ComponentPair of (N, P) matrices.
    """
    causal = np.asarray(causal, dtype=np.float64)
    if causal.ndim != 2 or causal.shape[1] == 0:
        raise DimensionError(
            f"causal genotypes must be (N, k) with k > 0, got {causal.shape}"
        )
    n_samples, n_causal = causal.shape
    is_independent, betas = fixed_effect_design(
        n_causal, n_traits,
        section.p_independent, section.p_trait_independent,
        section.distribution, section.mean, section.sd, rng,
    )
    pair = _fixed_pair(causal, is_independent, betas)
    check_shape(pair.shared, (n_samples, n_traits), "genetic fixed effects")
    logger.debug("genetic fixed: %d shared, %d independent variants",
                 int((~is_independent).sum()), int(is_independent.sum()))
    return pair


# ═══════════════════════════════════════════════════════════════════════
# GENETIC BACKGROUND (INFINITESIMAL) EFFECTS
# ═══════════════════════════════════════════════════════════════════════

def trait_design_matrix(
    n_traits: int,
    kind: str,
    rng: np.random.Generator,
) -> np.ndarray:
    """P × P trait-design matrix.

    'shared':      rank 1 — first row N(0, 1), all other rows zero.
    'independent': diagonal with N(0, 1) entries.
    """
    if kind == 'shared':
        a = np.zeros((n_traits, n_traits))
        a[0, :] = rng.standard_normal(n_traits)
        return a
    if kind == 'independent':
        return np.diag(rng.standard_normal(n_traits))
    raise ConfigurationError(
        f"trait design kind must be 'shared' or 'independent', got '{kind}'"
    )


def genetic_background_effects(
    kinship: np.ndarray,
    n_traits: int,
    rng: np.random.Generator,
) -> ComponentPair:
    """Kinship-structured genetic background.

    One N × P standard normal matrix B is shared by both parts:
    shared = L · B · A_shared, independent = L · B · A_independent,
    where L is the lower Cholesky factor of the kinship matrix.

    Raises:
        DimensionError: If kinship is not square.
        NumericalError: If kinship is not positive definite.
    """
    kinship = np.asarray(kinship, dtype=np.float64)
    n_samples = kinship.shape[0]
    check_shape(kinship, (n_samples, n_samples), "kinship")

    chol = kinship_cholesky(kinship)
    b = rng.standard_normal((n_samples, n_traits))
    a_shared = trait_design_matrix(n_traits, 'shared', rng)
    a_independent = trait_design_matrix(n_traits, 'independent', rng)
    lb = chol @ b
    return ComponentPair(shared=lb @ a_shared, independent=lb @ a_independent)


# ═══════════════════════════════════════════════════════════════════════
# NOISE FIXED (COVARIATE) EFFECTS
# ═══════════════════════════════════════════════════════════════════════

def simulate_confounders(
    n_samples: int,
    spec: ConfounderSetSection,
    rng: np.random.Generator,
) -> np.ndarray:
    """(N, n_confounders) covariate values for one confounder set."""
    shape = (n_samples, spec.n_confounders)
    if spec.distribution == 'bin':
        return rng.binomial(1, spec.prob, size=shape).astype(np.float64)
    if spec.distribution == 'cat':
        return rng.integers(0, spec.n_categories, size=shape).astype(np.float64)
    if spec.distribution == 'unif':
        return rng.uniform(spec.mean - spec.sd, spec.mean + spec.sd, size=shape)
    if spec.distribution == 'norm':
        return rng.normal(spec.mean, spec.sd, size=shape)
    raise ConfigurationError(
        f"confounder distribution must be one of bin/cat/unif/norm, "
        f"got '{spec.distribution}'"
    )


def noise_fixed_effects(
    n_samples: int,
    n_traits: int,
    section: NoiseFixedSection,
    rng: np.random.Generator,
) -> ComponentPair:
    """Non-genetic covariate effects from one or more confounder sets.

    Each set has its own size, distribution and independence fractions.
    Confounders and effect sizes of all sets are concatenated before the
    shared and independent products are formed.
    """
    if len(section.sets) == 0:
        raise ConfigurationError("noise_fixed.sets must contain at least one set")

    xs: List[np.ndarray] = []
    flags: List[np.ndarray] = []
    betas: List[np.ndarray] = []
    for spec in section.sets:
        x = simulate_confounders(n_samples, spec, rng)
        is_independent, b = fixed_effect_design(
            spec.n_confounders, n_traits,
            spec.p_independent, spec.p_trait_independent,
            spec.beta_distribution, spec.beta_mean, spec.beta_sd, rng,
        )
        xs.append(x)
        flags.append(is_independent)
        betas.append(b)

    pair = _fixed_pair(np.hstack(xs), np.concatenate(flags), np.vstack(betas))
    check_shape(pair.shared, (n_samples, n_traits), "noise fixed effects")
    return pair


# ═══════════════════════════════════════════════════════════════════════
# CORRELATED BACKGROUND
# ═══════════════════════════════════════════════════════════════════════

def autocorrelation_matrix(n_traits: int, pcorr: float) -> np.ndarray:
    """C[i, j] = pcorr^|i-j|: correlation decaying with trait distance."""
    idx = np.arange(n_traits)
    return np.power(float(pcorr), np.abs(idx[:, None] - idx[None, :]))


def check_correlation_matrix(corr_matrix: np.ndarray, n_traits: int) -> np.ndarray:
    """Return a supplied correlation matrix as float64 after checking it.

    Raises:
        DimensionError: If it is not P × P.
        NumericalError: If it is not symmetric.
    """
    corr = np.asarray(corr_matrix, dtype=np.float64)
    check_shape(corr, (n_traits, n_traits), "correlation matrix")
    if not np.allclose(corr, corr.T):
        raise NumericalError("correlation matrix is not symmetric")
    return corr


def correlated_background_effects(
    n_samples: int,
    n_traits: int,
    section: CorrelatedSection,
    rng: np.random.Generator,
) -> ComponentPair:
    """N independent draws of MVN(0, C), stacked to (N, P).

    No shared/independent split: the matrix is returned as ``shared`` and
    ``independent`` is all-zero.

    Raises:
        DimensionError: If a supplied correlation matrix is not P × P.
        NumericalError: If C is not positive definite.
    """
    if section.corr_matrix is not None:
        corr = check_correlation_matrix(section.corr_matrix, n_traits)
    else:
        corr = autocorrelation_matrix(n_traits, section.pcorr)

    chol = _cholesky_lower(corr, "correlation matrix")
    z = rng.standard_normal((n_samples, n_traits))
    correlated = z @ chol.T
    return ComponentPair(shared=correlated, independent=np.zeros_like(correlated))


# ═══════════════════════════════════════════════════════════════════════
# OBSERVATIONAL NOISE
# ═══════════════════════════════════════════════════════════════════════

def noise_background_effects(
    n_samples: int,
    n_traits: int,
    section: NoiseBackgroundSection,
    rng: np.random.Generator,
) -> ComponentPair:
    """Observational noise.

    independent: i.i.d. N(mean, sd) per entry.
    shared: outer product of an N-vector and a P-vector of N(0, 1) draws.
    """
    independent = rng.normal(section.mean, section.sd, size=(n_samples, n_traits))
    shared = np.outer(rng.standard_normal(n_samples), rng.standard_normal(n_traits))
    return ComponentPair(shared=shared, independent=independent)
