"""
Exception hierarchy for pylisa.

All custom exceptions inherit from LisaError so callers can catch every
inference failure at once while still matching the standard Python
exception they specialise.
"""


class LisaError(Exception):
    """Base exception for all pylisa errors."""

    pass


class DimensionMismatchError(LisaError, ValueError):
    """Raised when a permutation volume disagrees with the observed volume
    in voxel count or pixel type."""

    pass


class InsufficientDataError(LisaError, ValueError):
    """Raised when there is not enough data to estimate the null scale."""

    pass


class DegenerateVarianceError(LisaError, ArithmeticError):
    """Raised when a standard deviation is zero or not finite."""

    pass
