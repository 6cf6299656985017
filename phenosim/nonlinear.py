"""Nonlinear transform of the summed phenotype.

A share ``p`` of the phenotype is produced by a nonlinear function f of the
linear phenotype Y. How the two are combined is a pluggable strategy:

  mixture    (default) elementwise (1 - p)·Y + p·f(Y)
  variance   Y and f(Y) rescaled to pooled variance shares (1 - p) and p
             of Y's own pooled variance, then summed
  substitute round(p·P) randomly chosen traits replaced by f(Y)

Functions: exp (expbase^x), log (log_logbase x), sqrt, pow (x^power),
sinh, tanh. log and sqrt need non-negative input; negative entries are
first mapped by ``transform_negative`` ('abs' or 'set0').
"""

from __future__ import annotations

import logging
from typing import Callable, Dict

import numpy as np

from phenosim.config import NonlinearSection
from phenosim.errors import ConfigurationError, NumericalError
from phenosim.rescale import pooled_variance, rescale_variance

logger = logging.getLogger(__name__)


def _non_negative(y: np.ndarray, mode: str) -> np.ndarray:
    if mode == 'abs':
        return np.abs(y)
    if mode == 'set0':
        return np.where(y < 0, 0.0, y)
    raise ConfigurationError(
        f"transform_negative must be 'abs' or 'set0', got '{mode}'"
    )


def nonlinear_function(section: NonlinearSection) -> Callable[[np.ndarray], np.ndarray]:
    """Build f from the section's function name and parameters."""
    name = section.function
    if name == 'exp':
        return lambda y: np.power(section.expbase, y)
    if name == 'log':
        def _log(y):
            y = _non_negative(y, section.transform_negative)
            if np.any(y == 0):
                raise NumericalError(
                    "log transform undefined for zero entries; "
                    "use transform_negative='abs' or another function"
                )
            return np.log(y) / np.log(section.logbase)
        return _log
    if name == 'sqrt':
        return lambda y: np.sqrt(_non_negative(y, section.transform_negative))
    if name == 'pow':
        return lambda y: np.power(y, section.power)
    if name == 'sinh':
        return np.sinh
    if name == 'tanh':
        return np.tanh
    raise ConfigurationError(f"unknown nonlinear function '{name}'")


# ── Blending strategies ──────────────────────────────────────────────

def blend_mixture(y, f, proportion, rng):
    return (1.0 - proportion) * y + proportion * f(y)


def blend_variance(y, f, proportion, rng):
    total = pooled_variance(y)
    linear = rescale_variance(y, (1.0 - proportion) * total, 'linear part')
    transformed = rescale_variance(f(y), proportion * total, 'nonlinear part')
    return linear.component + transformed.component


def blend_substitute(y, f, proportion, rng):
    n_traits = y.shape[1]
    n_nonlinear = int(round(proportion * n_traits))
    out = y.copy()
    if n_nonlinear > 0:
        traits = rng.choice(n_traits, size=n_nonlinear, replace=False)
        out[:, traits] = f(y[:, traits])
    return out


BLEND_STRATEGIES: Dict[str, Callable] = {
    'mixture': blend_mixture,
    'variance': blend_variance,
    'substitute': blend_substitute,
}


def apply_nonlinear(
    phenotype: np.ndarray,
    section: NonlinearSection,
    rng: np.random.Generator,
) -> np.ndarray:
    """Apply the configured nonlinear transform.

    Returns the input unchanged (as a copy) when no function is set or the
    proportion is zero.

    Raises:
        ConfigurationError: Unknown function or strategy.
        NumericalError: Transform produced non-finite values.
    """
    y = np.asarray(phenotype, dtype=np.float64)
    if section.function is None or section.proportion == 0.0:
        return y.copy()
    if section.strategy not in BLEND_STRATEGIES:
        raise ConfigurationError(
            f"nonlinear.strategy must be one of {set(BLEND_STRATEGIES)}, "
            f"got '{section.strategy}'"
        )
    f = nonlinear_function(section)
    out = BLEND_STRATEGIES[section.strategy](y, f, section.proportion, rng)
    if not np.all(np.isfinite(out)):
        raise NumericalError(
            f"nonlinear transform '{section.function}' produced non-finite values"
        )
    logger.debug("applied %s transform (%s, p=%.3g)",
                 section.function, section.strategy, section.proportion)
    return out
