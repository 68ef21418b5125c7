class VecchiaError(Exception):
    """Base class of the errors raised by :mod:`vecchiagp`.
    """


class InvalidParameter(VecchiaError, ValueError):
    """A covariance parameter is non-positive, non-finite or of the wrong length.
    """


class DimensionMismatch(VecchiaError, ValueError):
    """Input arrays have inconsistent sizes (or are empty).
    """


class ConvergenceFailure(VecchiaError, RuntimeError):
    """The minimizer did not report success.

    Args:
        message (str): the message shown to the caller.
        result (OptimizeResult, optional): the result returned by :func:`scipy.optimize.minimize`. Defaults to `None`.
    """

    def __init__(self, message, result=None):
        super().__init__(message)
        self.result = result


class NumericalInstability(VecchiaError, ArithmeticError):
    """A per-point Cholesky factorization failed or returned non-finite values.
    """
