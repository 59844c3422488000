"""
Initial value problem solvers for ODEs ``dy/dt = f(t, y, theta, x_r, x_i)``.

Solvers
-------
integrate_ode_nonstiff
    Dormand-Prince 5(4) with a PI step size controller.
integrate_ode_stiff
    Variable-order (1-5), variable-step BDF with a cached Newton matrix.

Both return the states at the requested output times and support gradients
w.r.t. the initial state, the parameters and the output times through
forward sensitivity analysis.

Exceptions
----------
IntegrationError
    Base class; ``ODESolverError`` and its subclasses ``MaxStepsExceeded``,
    ``StepSizeError`` and ``ConvergenceError``.
"""

from torchhof.ordinary_differential_equation._bdf import bdf
from torchhof.ordinary_differential_equation._dormand_prince_5 import (
    dormand_prince_5,
)
from torchhof.ordinary_differential_equation._exceptions import (
    ConvergenceError,
    IntegrationError,
    MaxStepsExceeded,
    ODESolverError,
    StepSizeError,
)
from torchhof.ordinary_differential_equation._integrate_ode import (
    integrate_ode_nonstiff,
    integrate_ode_stiff,
)
from torchhof.ordinary_differential_equation._tensordict_utils import (
    flatten_state,
)

__all__ = [
    "bdf",
    "dormand_prince_5",
    "flatten_state",
    "integrate_ode_nonstiff",
    "integrate_ode_stiff",
    "ConvergenceError",
    "IntegrationError",
    "MaxStepsExceeded",
    "ODESolverError",
    "StepSizeError",
]
