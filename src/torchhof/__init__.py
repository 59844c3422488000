"""torchhof: differentiable higher-order numerical operators for PyTorch."""

from . import (
    functional,
    map_reduce,
    ordinary_differential_equation,
    quadrature,
    root_finding,
    sensitivity,
)
from .functional import (
    DimensionMismatchError,
    EvaluationError,
    TorchHOFError,
)
from .map_reduce import ShardError, map_rect
from .ordinary_differential_equation import (
    IntegrationError,
    integrate_ode_nonstiff,
    integrate_ode_stiff,
)
from .quadrature import QuadratureConvergenceError, integrate_1d
from .root_finding import NonConvergenceError, solve_algebraic

__all__ = [
    "functional",
    "map_reduce",
    "ordinary_differential_equation",
    "quadrature",
    "root_finding",
    "sensitivity",
    # Operations
    "integrate_1d",
    "integrate_ode_nonstiff",
    "integrate_ode_stiff",
    "map_rect",
    "solve_algebraic",
    # Exceptions
    "DimensionMismatchError",
    "EvaluationError",
    "IntegrationError",
    "NonConvergenceError",
    "QuadratureConvergenceError",
    "ShardError",
    "TorchHOFError",
]

__version__ = "0.1.0"
