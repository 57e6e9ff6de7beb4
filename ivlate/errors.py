"""
Exception hierarchy for the estimators.

Every error raised on purpose by the package derives from IVLateError, so
the bootstrap can tell a failed replicate apart from a programming error.
"""


class IVLateError(Exception):
    """Base class for estimation errors."""


class DataError(IVLateError, ValueError):
    """Dataset is empty, lacks a required field, or has an invalid instrument."""


class FitError(IVLateError, RuntimeError):
    """Propensity model did not converge or produced a score of 0 or 1."""


class EstimationError(IVLateError, ArithmeticError):
    """A ratio estimate is undefined (zero weight total or zero first stage)."""


class ReplicateFailure(IVLateError):
    """
    A single bootstrap replicate failed.

    Parameters
    ----------
    replicate : int
        Zero-based replicate index.
    cause : IVLateError
        The error raised while estimating on the resample.
    """

    def __init__(self, replicate, cause):
        self.replicate = replicate
        self.cause = cause
        super().__init__(
            f"replicate {replicate}: {type(cause).__name__}: {cause}"
        )
