from ._convergence import check_convergence
from ._exceptions import NonConvergenceError, RootFindingError
from ._powell_hybrid import dogleg_step, powell_hybrid
from ._solve_algebraic import solve_algebraic

__all__ = [
    "check_convergence",
    "dogleg_step",
    "powell_hybrid",
    "solve_algebraic",
    "NonConvergenceError",
    "RootFindingError",
]
