"""
Definite integrals with double-exponential quadrature.

Functions
---------
integrate_1d
    Integral of ``f(x, xc, theta, x_r, x_i)`` over a finite, half-infinite or
    infinite interval, differentiable w.r.t. ``theta`` and finite limits.
integrate_1d_info
    Same, returning the error estimate and convergence diagnostics.

Rules
-----
split_at_zero, double_exponential
    Interval selection and the tanh-sinh / exp-sinh / sinh-sinh level
    refinement.

Exceptions
----------
QuadratureConvergenceError
"""

from torchhof.quadrature._double_exponential import (
    Interval,
    Transform,
    double_exponential,
    split_at_zero,
)
from torchhof.quadrature._exceptions import QuadratureConvergenceError
from torchhof.quadrature._integrate_1d import integrate_1d, integrate_1d_info

__all__ = [
    "Interval",
    "Transform",
    "double_exponential",
    "integrate_1d",
    "integrate_1d_info",
    "split_at_zero",
    "QuadratureConvergenceError",
]
