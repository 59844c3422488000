"""
Function adapters and value types shared by all operations.

Values
------
as_parameter
    Convert to a 1-D parameter tensor (may require grad).
as_data, as_integer_data
    Convert to 1-D data tensors (never require grad).
DataBlock
    Real and integer data bound into a user function.

Adapters
--------
FunctionContract
    The four user-function roles and their signatures.
FunctionAdapter
    A user callable bound to a contract and a data block.

Configuration
-------------
Tolerances
    Tolerance knobs with per-operation defaults.

Exceptions
----------
TorchHOFError, DimensionMismatchError, EvaluationError
"""

from torchhof.functional._adapter import FunctionAdapter, FunctionContract
from torchhof.functional._differentiation import (
    compute_jacobian,
    compute_vjp,
)
from torchhof.functional._exceptions import (
    DimensionMismatchError,
    EvaluationError,
    TorchHOFError,
)
from torchhof.functional._tolerances import (
    ALGEBRAIC_FTOL,
    ALGEBRAIC_RTOL,
    ODE_ATOL,
    ODE_MAX_STEPS,
    ODE_RTOL,
    QUADRATURE_RTOL,
    Tolerances,
    default_max_steps,
)
from torchhof.functional._validation import (
    check_finite,
    check_nondecreasing,
    check_nonempty,
    check_rectangular,
    check_size_match,
)
from torchhof.functional._values import (
    DataBlock,
    as_data,
    as_integer_data,
    as_parameter,
    is_dual,
)

__all__ = [
    # Values
    "DataBlock",
    "as_data",
    "as_integer_data",
    "as_parameter",
    "is_dual",
    # Adapters
    "FunctionAdapter",
    "FunctionContract",
    "compute_jacobian",
    "compute_vjp",
    # Configuration
    "ALGEBRAIC_FTOL",
    "ALGEBRAIC_RTOL",
    "ODE_ATOL",
    "ODE_MAX_STEPS",
    "ODE_RTOL",
    "QUADRATURE_RTOL",
    "Tolerances",
    "default_max_steps",
    # Validation
    "check_finite",
    "check_nondecreasing",
    "check_nonempty",
    "check_rectangular",
    "check_size_match",
    # Exceptions
    "DimensionMismatchError",
    "EvaluationError",
    "TorchHOFError",
]
