"""Exception hierarchy for PhenoSim.

All errors derive from ``ValueError`` so callers catching the builtin still
see them. Messages name the offending parameter group or matrix shapes.
"""


class PhenoSimError(ValueError):
    """Base class for every error raised by PhenoSim."""


class ConfigurationError(PhenoSimError):
    """Inconsistent, missing or out-of-range parameters."""


class DimensionError(PhenoSimError):
    """Matrix shape does not match the simulation dimensions."""


class SamplingError(PhenoSimError):
    """A sample larger than the available population was requested."""


class NumericalError(PhenoSimError):
    """A matrix that must be positive definite could not be factorised."""
