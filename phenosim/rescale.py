"""Variance-rescaling operator.

Generators produce components on arbitrary native scales. Before summation
each component is multiplied by ``sqrt(v / var)`` so that its pooled
empirical variance equals its target share ``v`` of the (unit) total
phenotypic variance.

"Pooled" variance treats every entry of an (N, P) matrix as one sample,
which keeps scales comparable across components with different
shared/independent structure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from phenosim.errors import ConfigurationError

logger = logging.getLogger(__name__)


def pooled_variance(matrix: np.ndarray) -> float:
    """Variance of all entries treated as one sample (ddof=1)."""
    values = np.asarray(matrix, dtype=np.float64).ravel()
    if values.size < 2:
        return 0.0
    return float(np.var(values, ddof=1))


@dataclass(frozen=True)
class RescaledComponent:
    """Result of rescaling one component.

    Attributes:
        component: Rescaled (N, P) matrix (a new array).
        var_before: Pooled variance of the input.
        var_after: Pooled variance of ``component``.
        target: Requested variance share.
        attainable: False when the input was constant and ``target > 0``.
    """
    component: np.ndarray
    var_before: float
    var_after: float
    target: float
    attainable: bool


def rescale_variance(
    component: np.ndarray,
    target: float,
    name: str = "component",
) -> RescaledComponent:
    """Scale ``component`` so its pooled variance equals ``target``.

    Args:
        component: (N, P) matrix on any scale.
        target: Target variance share, >= 0.
        name: Label used in log messages.

    Returns:
        RescaledComponent. A constant input is returned unchanged (as a
        copy); it is flagged unattainable unless ``target`` is 0.

    Raises:
        ConfigurationError: If ``target`` is negative or not finite.
    """
    if not np.isfinite(target) or target < 0:
        raise ConfigurationError(
            f"target variance for {name} must be >= 0, got {target}"
        )
    matrix = np.asarray(component, dtype=np.float64)
    var_before = pooled_variance(matrix)

    if var_before == 0.0:
        attainable = target == 0.0
        if not attainable:
            logger.warning(
                "%s has zero variance; target variance %.4g cannot be reached",
                name, target,
            )
        return RescaledComponent(
            component=matrix.copy(),
            var_before=0.0,
            var_after=0.0,
            target=float(target),
            attainable=attainable,
        )

    scaled = matrix * np.sqrt(target / var_before)
    var_after = pooled_variance(scaled)
    logger.debug("%s rescaled: var %.4g -> %.4g", name, var_before, var_after)
    return RescaledComponent(
        component=scaled,
        var_before=var_before,
        var_after=var_after,
        target=float(target),
        attainable=True,
    )


def standardise_columns(matrix: np.ndarray) -> np.ndarray:
    """Zero mean, unit variance (ddof=1) per column; constant columns -> 0."""
    matrix = np.asarray(matrix, dtype=np.float64)
    centred = matrix - matrix.mean(axis=0)
    if matrix.shape[0] < 2:
        return np.zeros_like(centred)
    sd = matrix.std(axis=0, ddof=1)
    out = np.zeros_like(centred)
    nonzero = sd > 0
    out[:, nonzero] = centred[:, nonzero] / sd[nonzero]
    return out
