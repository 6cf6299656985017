"""Core data types for PhenoSim.

This module is the single home of:
  - GeneticModel / NoiseModel enumerations (closed set of model variants)
  - ComponentPair: the {shared, independent} output of every generator
  - Numerical constants shared across modules (ridge, tolerance)
  - Shape assertions used at component boundaries
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

import numpy as np

from phenosim.errors import DimensionError
from phenosim.rescale import pooled_variance


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

KINSHIP_RIDGE: float = 1e-4        # added to the kinship diagonal
PROPORTION_TOL: float = 1e-9       # tolerance for "sums to one" checks

# Fixed summation order of the rescaled components
COMPONENT_ORDER: Tuple[str, ...] = (
    'genetic_fixed_shared',
    'genetic_fixed_independent',
    'genetic_background_shared',
    'genetic_background_independent',
    'noise_fixed_shared',
    'noise_fixed_independent',
    'correlated',
    'noise_background_shared',
    'noise_background_independent',
)


# ═══════════════════════════════════════════════════════════════════════
# MODEL ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class GeneticModel(Enum):
    """Which genetic components contribute to the phenotype."""
    NONE = 'none'
    BACKGROUND_ONLY = 'background-only'
    FIXED_ONLY = 'fixed-only'
    FIXED_AND_BACKGROUND = 'fixed-and-background'

    @property
    def has_fixed(self) -> bool:
        return self in (GeneticModel.FIXED_ONLY, GeneticModel.FIXED_AND_BACKGROUND)

    @property
    def has_background(self) -> bool:
        return self in (GeneticModel.BACKGROUND_ONLY,
                        GeneticModel.FIXED_AND_BACKGROUND)


class NoiseModel(Enum):
    """Which noise components contribute to the phenotype.

    One member per combination of covariate (fixed), observational
    (background) and correlated background presence.
    """
    NONE = 'none'
    FIXED_ONLY = 'fixed-only'
    BACKGROUND_ONLY = 'background-only'
    CORRELATED_ONLY = 'correlated-only'
    FIXED_AND_BACKGROUND = 'fixed-and-background'
    FIXED_AND_CORRELATED = 'fixed-and-correlated'
    BACKGROUND_AND_CORRELATED = 'background-and-correlated'
    FIXED_BACKGROUND_AND_CORRELATED = 'fixed-background-and-correlated'

    @classmethod
    def from_flags(cls, fixed: bool, background: bool,
                   correlated: bool) -> 'NoiseModel':
        return _NOISE_BY_FLAGS[(fixed, background, correlated)]

    @property
    def has_fixed(self) -> bool:
        return _FLAGS_BY_NOISE[self][0]

    @property
    def has_background(self) -> bool:
        return _FLAGS_BY_NOISE[self][1]

    @property
    def has_correlated(self) -> bool:
        return _FLAGS_BY_NOISE[self][2]


_NOISE_BY_FLAGS = {
    (False, False, False): NoiseModel.NONE,
    (True, False, False): NoiseModel.FIXED_ONLY,
    (False, True, False): NoiseModel.BACKGROUND_ONLY,
    (False, False, True): NoiseModel.CORRELATED_ONLY,
    (True, True, False): NoiseModel.FIXED_AND_BACKGROUND,
    (True, False, True): NoiseModel.FIXED_AND_CORRELATED,
    (False, True, True): NoiseModel.BACKGROUND_AND_CORRELATED,
    (True, True, True): NoiseModel.FIXED_BACKGROUND_AND_CORRELATED,
}
_FLAGS_BY_NOISE = {model: flags for flags, model in _NOISE_BY_FLAGS.items()}


# ═══════════════════════════════════════════════════════════════════════
# EFFECT COMPONENTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ComponentPair:
    """Shared and independent parts of one effect component.

    Both matrices are (n_samples, n_traits). A side that does not apply is
    an all-zero matrix. Variances are pooled over all entries and computed
    before any rescaling.
    """
    shared: np.ndarray
    independent: np.ndarray
    var_shared: float = field(init=False)
    var_independent: float = field(init=False)

    def __post_init__(self):
        if self.shared.shape != self.independent.shape:
            raise DimensionError(
                f"shared {self.shared.shape} and independent "
                f"{self.independent.shape} parts differ in shape"
            )
        self.var_shared = pooled_variance(self.shared)
        self.var_independent = pooled_variance(self.independent)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.shared.shape


# ═══════════════════════════════════════════════════════════════════════
# SHAPE ASSERTIONS
# ═══════════════════════════════════════════════════════════════════════

def check_shape(matrix: np.ndarray, expected: Tuple[int, ...],
                name: str) -> None:
    """Raise DimensionError unless ``matrix.shape == expected``."""
    if np.ndim(matrix) != len(expected) or tuple(matrix.shape) != tuple(expected):
        raise DimensionError(
            f"{name} must have shape {tuple(expected)}, "
            f"got {tuple(np.shape(matrix))}"
        )
