"""Exception classes for the root finding module."""

from torchhof.functional import TorchHOFError


class RootFindingError(TorchHOFError):
    """Base exception for root finding errors."""

    pass


class NonConvergenceError(RootFindingError):
    """Raised when the iteration budget is exhausted before convergence."""

    pass
