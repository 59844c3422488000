"""Exceptions for quadrature integration."""

from typing import Tuple

from torchhof.functional import TorchHOFError


class QuadratureConvergenceError(TorchHOFError):
    """Error when the level refinement fails to meet the tolerance.

    Attributes
    ----------
    interval : tuple[float, float]
        Integration bounds.
    error : float
        Final error estimate.
    l1_norm : float
        Estimate of the integral of ``|f|``.
    """

    def __init__(
        self, message: str, interval: Tuple[float, float], error: float, l1_norm: float
    ):
        super().__init__(message)
        self.interval = interval
        self.error = error
        self.l1_norm = l1_norm
