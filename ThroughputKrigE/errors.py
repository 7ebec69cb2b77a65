"""
Error taxonomy shared by the distance, variogram, kriging and
cross-validation modules.

InputError and NumericalError are raised immediately. FitNonConvergence is a
warning category: the fitter still returns its last iterate.
"""


class KrigeError(Exception):
    """Base class for every error raised by ThroughputKrigE."""


class InputError(KrigeError, ValueError):
    """Empty, mismatched or malformed inputs, rejected before any computation."""


class NumericalError(KrigeError, ArithmeticError):
    """
    A prediction could not be computed for one query point.

    Raised for a singular ordinary-kriging system or for a zero-distance
    neighbor under inverse-distance weighting.

    Attributes
    ----------
    query_index : int or None
        Row of the query point in the target set (None if unknown).
    neighbors : tuple of int
        Sample indices of the neighborhood that produced the failure.
    """

    def __init__(self, message, query_index=None, neighbors=()):
        self.query_index = query_index
        self.neighbors = tuple(int(i) for i in neighbors)
        detail = f" (query_index={query_index}, neighbors={list(self.neighbors)})"
        super().__init__(message + detail)


class FitNonConvergence(UserWarning):
    """Gradient descent reached its iteration cap before meeting the stop threshold."""
