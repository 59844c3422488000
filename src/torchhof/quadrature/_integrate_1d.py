"""Differentiable 1-D quadrature with double-exponential rules."""

import math
from typing import Callable, Dict, List, Tuple, Union

import torch
from torch import Tensor

from torchhof.functional import (
    QUADRATURE_RTOL,
    DataBlock,
    FunctionAdapter,
    FunctionContract,
    Tolerances,
    as_parameter,
)
from torchhof.functional._values import ArrayLike
from torchhof.quadrature._double_exponential import (
    Interval,
    double_exponential,
    split_at_zero,
)
from torchhof.quadrature._exceptions import QuadratureConvergenceError
from torchhof.sensitivity import derivative_integrand, endpoint_terms

_OPERATION = "integrate_1d"

Bound = Union[float, int, Tensor]


def _bound_value(bound: Bound, name: str) -> float:
    if isinstance(bound, Tensor):
        if bound.numel() != 1:
            raise ValueError(
                f"{_OPERATION}: {name} must be a scalar, got shape "
                f"{tuple(bound.shape)}"
            )
        value = bound.detach().item()
    else:
        value = float(bound)
    if math.isnan(value):
        raise ValueError(f"{_OPERATION}: {name} must not be NaN")
    return value


class _Problem:
    """One integral: the integrand, its pieces and the refinement settings."""

    def __init__(
        self,
        integrand: FunctionAdapter,
        theta: Tensor,
        a: float,
        b: float,
        rtol: float,
        vectorize: bool,
    ):
        self.integrand = integrand
        self.theta = theta.detach()
        self.a = a
        self.b = b
        self.pieces: List[Interval] = split_at_zero(a, b)
        self.rtol = rtol
        self.vectorize = vectorize

    def _batched(self, fn: Callable[[Tensor, Tensor], Tensor]):
        if self.vectorize:
            return torch.vmap(fn)

        def loop(x: Tensor, xc: Tensor) -> Tensor:
            return torch.stack([fn(x[i], xc[i]) for i in range(x.shape[0])])

        return loop

    def _evaluate_values(self, x: Tensor, xc: Tensor) -> Tensor:
        theta = self.theta

        def scalar(x_i: Tensor, xc_i: Tensor) -> Tensor:
            return self.integrand.raw(x_i, xc_i, theta)

        values = self._batched(scalar)(x, xc)
        if values.numel() != x.shape[0]:
            # Delegate the error message to the contract check
            self.integrand.check_output(values[0])
        return values.reshape(x.shape[0])

    def _run(self, evaluate, value_shape) -> Tuple[Tensor, float, Dict]:
        dtype = self.theta.dtype
        total = torch.zeros(value_shape, dtype=dtype)
        error = 0.0
        info = {"levels": 0, "n_evaluations": 0, "l1_norm": 0.0, "converged": True}
        for piece in self.pieces:
            value, piece_error, piece_info = double_exponential(
                evaluate, piece, value_shape, rtol=self.rtol, dtype=dtype
            )
            total = total + value
            error += piece_error
            info["levels"] = max(info["levels"], piece_info["levels"])
            info["n_evaluations"] += piece_info["n_evaluations"]
            info["l1_norm"] += piece_info["l1_norm"]
            info["converged"] = info["converged"] and piece_info["converged"]
        return total, error, info

    def integrate(self) -> Tuple[Tensor, float, Dict]:
        with torch.no_grad():
            return self._run(self._evaluate_values, ())

    def theta_gradient(self) -> Tensor:
        """``dI/dtheta`` by integrating ``df/dtheta`` with the same rule."""
        d_f = self._batched(derivative_integrand(self.integrand, self.theta))
        value, error, info = self._run(d_f, tuple(self.theta.shape))
        if not info["converged"]:
            raise QuadratureConvergenceError(
                f"{_OPERATION}: gradient integral on [{self.a}, {self.b}] did "
                f"not converge after {info['levels']} levels (error estimate "
                f"{error:.3e}, L1 norm {info['l1_norm']:.3e}, rtol {self.rtol:.1e})",
                (self.a, self.b),
                error,
                info["l1_norm"],
            )
        return value


class _Integrate1dLeibniz(torch.autograd.Function):
    """Autograd for a definite integral via the Leibniz integral rule.

    d/dtheta int_a^b f(x, theta) dx = int_a^b df/dtheta dx
    dI/db = f(b, theta),  dI/da = -f(a, theta)
    """

    @staticmethod
    def forward(ctx, value: Tensor, problem: _Problem, theta, a, b):
        ctx.problem = problem
        ctx.bound_shapes = (a.shape, b.shape)
        return value.clone()

    @staticmethod
    def backward(ctx, grad_output: Tensor):
        problem = ctx.problem
        grad_theta = grad_a = grad_b = None
        if ctx.needs_input_grad[2]:
            grad_theta = grad_output * problem.theta_gradient()
        if ctx.needs_input_grad[3] or ctx.needs_input_grad[4]:
            with torch.no_grad():
                d_a, d_b = endpoint_terms(
                    problem.integrand, problem.theta, problem.a, problem.b
                )
            if ctx.needs_input_grad[3] and d_a is not None:
                grad_a = (grad_output * d_a).reshape(ctx.bound_shapes[0])
            if ctx.needs_input_grad[4] and d_b is not None:
                grad_b = (grad_output * d_b).reshape(ctx.bound_shapes[1])
        return None, None, grad_theta, grad_a, grad_b


def integrate_1d_info(
    f: Callable[..., Tensor],
    a: Bound,
    b: Bound,
    theta: ArrayLike,
    x_r: ArrayLike = (),
    x_i: ArrayLike = (),
    *,
    rtol: float = QUADRATURE_RTOL,
    vectorize: bool = True,
) -> Tuple[Tensor, Tensor, Dict]:
    """
    Like integrate_1d, but returns error estimate and info dict.

    Never raises on non-convergence; check ``info["converged"]``.

    Returns
    -------
    result : Tensor
        Integral approximation, differentiable like :func:`integrate_1d`.
    error : Tensor
        Estimated absolute error (sum over the pieces of a split interval).
    info : dict
        Information dict with keys:
        - "levels": Number of refinement levels used (max over pieces)
        - "n_evaluations": Number of integrand evaluations
        - "l1_norm": Estimate of the integral of ``|f|``
        - "converged": Whether ``error <= rtol * l1_norm`` on every piece
    """
    theta = as_parameter(theta, "theta")
    dtype = theta.dtype
    for bound in (a, b):
        if isinstance(bound, Tensor) and bound.dtype.is_floating_point:
            dtype = torch.promote_types(dtype, bound.dtype)
    theta = theta.to(dtype)

    a_value = _bound_value(a, "lower limit")
    b_value = _bound_value(b, "upper limit")
    if a_value > b_value:
        raise ValueError(
            f"{_OPERATION}: lower limit ({a_value}) must not exceed upper "
            f"limit ({b_value})"
        )
    tolerances = Tolerances.quadrature(rtol=rtol).validate(_OPERATION)
    data = DataBlock.from_arrays(x_r, x_i, dtype=dtype)
    integrand = FunctionAdapter(f, FunctionContract.INTEGRAND, data)

    problem = _Problem(
        integrand, theta, a_value, b_value, tolerances.rtol, vectorize
    )
    value, error, info = problem.integrate()

    bounds = [
        x if isinstance(x, Tensor) else torch.tensor(float(x), dtype=dtype)
        for x in (a, b)
    ]
    if torch.is_grad_enabled() and (
        theta.requires_grad or any(x.requires_grad for x in bounds)
    ):
        value = _Integrate1dLeibniz.apply(value, problem, theta, *bounds)
    return value, torch.tensor(error, dtype=dtype), info


def integrate_1d(
    f: Callable[..., Tensor],
    a: Bound,
    b: Bound,
    theta: ArrayLike,
    x_r: ArrayLike = (),
    x_i: ArrayLike = (),
    *,
    rtol: float = QUADRATURE_RTOL,
    vectorize: bool = True,
) -> Tensor:
    """
    Compute a definite integral with double-exponential quadrature.

    Parameters
    ----------
    f : callable
        Integrand ``f(x, xc, theta, x_r, x_i) -> scalar``. On a finite
        interval ``xc`` is the signed distance to the nearest endpoint,
        ``a - x`` in the left half and ``b - x`` in the right half, accurate
        even where ``x`` itself rounds to the endpoint. It is NaN when
        either limit is infinite.
    a, b : float or Tensor
        Integration limits, ``a <= b``, possibly infinite. A finite limit
        given as a tensor may require grad.
    theta : Tensor or sequence of float
        Parameters, shape ``(p,)``. May require grad.
    x_r : Tensor or sequence of float
        Real data. Must not require grad.
    x_i : Tensor or sequence of int
        Integer data.
    rtol : float, default=1e-8
        Relative tolerance; convergence requires the difference of two
        successive levels to be at most ``rtol * int |f|``.
    vectorize : bool, default=True
        Evaluate all nodes of a level in one ``torch.vmap`` call. Set to
        False for integrands with data-dependent Python control flow.

    Returns
    -------
    Tensor
        Integral approximation, a 0-d tensor.

    Raises
    ------
    QuadratureConvergenceError
        If 15 levels pass without meeting the tolerance.
    EvaluationError
        If ``f`` does not return a finite scalar.
    ValueError
        If ``a > b``, a limit is NaN, or data requires grad.

    Notes
    -----
    The rule is tanh-sinh on a finite interval, exp-sinh on a half-infinite
    one and sinh-sinh on the real line. An interval with zero strictly
    inside (other than the real line) is split at zero and the pieces are
    integrated separately, each to the full ``rtol``; ``xc`` then refers to
    the endpoints of each piece.

    Gradients use the Leibniz integral rule: ``dI/dtheta`` integrates
    ``df/dtheta`` with the same rule during the backward pass, and finite
    limits contribute ``f(b)`` and ``-f(a)``.

    Examples
    --------
    >>> import torch
    >>> from torchhof.quadrature import integrate_1d
    >>> def gaussian(x, xc, theta, x_r, x_i):
    ...     return torch.exp(-theta[0] * x**2)
    >>> theta = torch.tensor([1.0], dtype=torch.float64, requires_grad=True)
    >>> integrate_1d(gaussian, -float("inf"), float("inf"), theta)  # sqrt(pi)
    """
    value, error, info = integrate_1d_info(
        f, a, b, theta, x_r, x_i, rtol=rtol, vectorize=vectorize
    )
    if not info["converged"]:
        raise QuadratureConvergenceError(
            f"{_OPERATION}: integral on [{a}, {b}] did not converge after "
            f"{info['levels']} levels (error estimate {error.item():.3e}, "
            f"L1 norm {info['l1_norm']:.3e}, rtol {rtol:.1e})",
            (_bound_value(a, "lower limit"), _bound_value(b, "upper limit")),
            error.item(),
            info["l1_norm"],
        )
    return value
