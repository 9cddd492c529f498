"""
Collection of the exceptions raised by the MLPCA models.

Every exception carries a ``kind`` label identifying the failure condition. All of them are terminal, a failed
model run never produces a partial result.
"""


class MLPCAError(Exception):
    """
    Base class for all MLPCA failure conditions.
    """
    kind = "MLPCAError"

    def __init__(self, message: str = None):
        self.message = message if message is not None else self.kind
        super().__init__(self.message)


class InvalidRankError(MLPCAError, ValueError):
    kind = "InvalidRank"


class DimensionMismatchError(MLPCAError, ValueError):
    kind = "DimensionMismatch"


class NonPositiveStdDevError(MLPCAError, ValueError):
    kind = "NonPositiveStdDev"


class ZeroStdDevError(MLPCAError, ValueError):
    kind = "ZeroStdDev"


class InvalidDataError(MLPCAError, ValueError):
    kind = "InvalidData"


class MaxIterationsExceededError(MLPCAError, RuntimeError):
    """
    Raised when the ALS iterations pass the configured ceiling without meeting the convergence limit.
    """
    kind = "MaxIterationsExceeded"

    def __init__(self, message: str = None, iterations: int = None):
        self.iterations = iterations
        super().__init__(message)
