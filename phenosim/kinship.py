"""Kinship estimation.

K = X Xᵗ for standardised genotypes X, divided by the mean of its diagonal
and stabilised with a small ridge on the diagonal so that the Cholesky
factorisation needed by the genetic background generator always exists.

Kinship matrices supplied by the caller are checked for size and symmetry;
otherwise they are used as given.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import linalg

from phenosim.errors import DimensionError, NumericalError
from phenosim.types import KINSHIP_RIDGE

logger = logging.getLogger(__name__)


def estimate_kinship(
    standardised: np.ndarray,
    ridge: float = KINSHIP_RIDGE,
) -> np.ndarray:
    """Estimate a sample × sample kinship matrix.

    Args:
        standardised: (N, M) genotypes with zero mean, unit variance columns.
        ridge: Value added to every diagonal entry after normalisation.

    Returns:
        (N, N) symmetric kinship matrix; mean diagonal = 1 + ridge.

    Raises:
        DimensionError: If the input is not 2-D.
        NumericalError: If X Xᵗ has a zero diagonal (no informative variants).
    """
    x = np.asarray(standardised, dtype=np.float64)
    if x.ndim != 2:
        raise DimensionError(f"genotype matrix must be 2-D, got shape {x.shape}")

    kinship = x @ x.T
    mean_diag = float(np.mean(np.diag(kinship)))
    if mean_diag <= 0.0:
        raise NumericalError(
            "cannot normalise kinship: all genotype columns are monomorphic"
        )
    kinship /= mean_diag
    # Exact symmetry; the matrix product can differ in the last bit
    kinship = 0.5 * (kinship + kinship.T)
    kinship[np.diag_indices_from(kinship)] += ridge
    logger.debug("estimated %d x %d kinship from %d variants",
                 x.shape[0], x.shape[0], x.shape[1])
    return kinship


def check_kinship(kinship: np.ndarray, n_samples: int) -> None:
    """Check a supplied kinship matrix before it is used.

    Raises:
        DimensionError: If it is not square with size ``n_samples``.
        NumericalError: If it is not symmetric.
    """
    shape = np.shape(kinship)
    if len(shape) != 2 or shape[0] != shape[1]:
        raise DimensionError(f"kinship matrix must be square, got shape {shape}")
    if shape[0] != n_samples:
        raise DimensionError(
            f"kinship matrix is {shape[0]}x{shape[1]} but n_samples is {n_samples}"
        )
    k = np.asarray(kinship, dtype=np.float64)
    if not np.allclose(k, k.T):
        raise NumericalError("kinship matrix is not symmetric")


def kinship_cholesky(kinship: np.ndarray) -> np.ndarray:
    """Lower Cholesky factor L with L Lᵗ = kinship.

    Raises:
        NumericalError: If the matrix is not positive definite.
    """
    try:
        return linalg.cholesky(np.asarray(kinship, dtype=np.float64), lower=True)
    except linalg.LinAlgError as exc:
        raise NumericalError(
            f"kinship matrix is not positive definite: {exc}"
        ) from exc
