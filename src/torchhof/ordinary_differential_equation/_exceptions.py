"""Exceptions for the ODE integrators."""

from torchhof.functional import TorchHOFError


class IntegrationError(TorchHOFError):
    """Base exception for all integration solver errors."""

    pass


class ODESolverError(IntegrationError):
    """Base exception for ODE solver errors."""

    pass


class MaxStepsExceeded(ODESolverError):
    """Raised when the solver exceeds max_steps."""

    pass


class StepSizeError(ODESolverError):
    """Raised when the step size underflows or too many steps are rejected."""

    pass


class ConvergenceError(ODESolverError):
    """Raised when the implicit solver's Newton iteration keeps failing."""

    pass
