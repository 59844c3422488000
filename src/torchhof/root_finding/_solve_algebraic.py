"""Differentiable algebraic equation solver."""

from typing import Callable, Optional

import torch
from torch import Tensor

from torchhof.functional import (
    ALGEBRAIC_FTOL,
    ALGEBRAIC_RTOL,
    DataBlock,
    FunctionAdapter,
    FunctionContract,
    Tolerances,
    as_parameter,
    check_nonempty,
    check_size_match,
)
from torchhof.functional._values import ArrayLike
from torchhof.root_finding._powell_hybrid import powell_hybrid
from torchhof.sensitivity import implicit_vjp

_OPERATION = "solve_algebraic"


class _AlgebraicImplicitGrad(torch.autograd.Function):
    """Custom autograd for implicit differentiation through the solver.

    For systems of equations, the implicit function theorem gives:
        dy*/dtheta = -J^{-1} @ dg/dtheta
    where J = dg/dy is the Jacobian matrix at the root.
    """

    @staticmethod
    def forward(ctx, root: Tensor, theta: Tensor, system) -> Tensor:
        ctx.system = system
        ctx.save_for_backward(root, theta)
        return root.clone()

    @staticmethod
    def backward(ctx, grad_output: Tensor):
        root, theta = ctx.saved_tensors
        grad_theta = None
        if ctx.needs_input_grad[1]:
            grad_theta = implicit_vjp(ctx.system, root, theta, grad_output)
        return None, grad_theta, None


def solve_algebraic(
    f: Callable[..., Tensor],
    y0: ArrayLike,
    theta: ArrayLike,
    x_r: ArrayLike = (),
    x_i: ArrayLike = (),
    *,
    rtol: float = ALGEBRAIC_RTOL,
    ftol: float = ALGEBRAIC_FTOL,
    max_steps: Optional[int] = None,
) -> Tensor:
    """
    Solve ``f(y, theta, x_r, x_i) = 0`` for ``y``.

    Uses Powell's hybrid (dogleg trust-region) method with exact Jacobians.
    Gradients w.r.t. ``theta`` are obtained from the implicit function
    theorem at the root; the solver iterations are never differentiated.

    Parameters
    ----------
    f : callable
        Algebraic system ``f(y, theta, x_r, x_i) -> residual`` with
        ``len(residual) == len(y)``. Must be built from differentiable torch
        operations.
    y0 : Tensor or sequence of float
        Initial guess, shape ``(n,)``. Its gradient, if any, is ignored.
    theta : Tensor or sequence of float
        Parameters, shape ``(p,)``. May require grad.
    x_r : Tensor or sequence of float
        Real data. Must not require grad.
    x_i : Tensor or sequence of int
        Integer data.
    rtol : float, default=1e-6
        Relative tolerance on the step. Convergence requires
        ``||step|| <= rtol * (||y|| + rtol)``.
    ftol : float, default=1e-6
        Tolerance on the residual norm. Convergence requires
        ``||f(y)|| <= ftol``.
    max_steps : int, optional
        Maximum iterations. Default: ``100 * (n + 1)``.

    Returns
    -------
    Tensor
        The root, shape ``(n,)``.

    Raises
    ------
    DimensionMismatchError
        If ``y0`` is empty or ``f(y0)`` does not have ``n`` entries.
    EvaluationError
        If ``f`` returns non-finite values.
    NonConvergenceError
        If ``max_steps`` iterations pass without convergence.
    ValueError
        If an argument is non-finite, data requires grad, or a tolerance is
        not positive.

    Examples
    --------
    Solve x^2 + y^2 = r^2, x = y:

    >>> import torch
    >>> from torchhof.root_finding import solve_algebraic
    >>> def circle(y, theta, x_r, x_i):
    ...     return torch.stack([y[0] ** 2 + y[1] ** 2 - theta[0] ** 2, y[0] - y[1]])
    >>> theta = torch.tensor([2.0], dtype=torch.float64, requires_grad=True)
    >>> root = solve_algebraic(circle, torch.tensor([1.0, 1.0], dtype=torch.float64), theta)
    >>> root  # doctest: +SKIP
    tensor([1.4142, 1.4142], dtype=torch.float64, grad_fn=<...>)
    >>> root.sum().backward()
    >>> theta.grad  # d(2 * theta / sqrt(2)) / dtheta  # doctest: +SKIP
    tensor([1.4142], dtype=torch.float64)
    """
    y0 = as_parameter(y0, "y0").detach()
    check_nonempty(_OPERATION, "initial guess", y0)
    theta = as_parameter(theta, "theta", y0.dtype).to(y0.dtype)
    data = DataBlock.from_arrays(x_r, x_i, dtype=y0.dtype)

    n = y0.shape[0]
    tolerances = Tolerances.algebraic(
        n, rtol=rtol, ftol=ftol, max_steps=max_steps
    ).validate(_OPERATION)

    system = FunctionAdapter(f, FunctionContract.ALGEBRAIC_SYSTEM, data)
    with torch.no_grad():
        residual = system.evaluate(y0, theta.detach())
    check_size_match(
        _OPERATION, "initial guess", n, "algebraic system's output",
        residual.shape[0],
    )
    system.output_size = n

    with torch.no_grad():
        root, _ = powell_hybrid(
            system,
            y0,
            theta,
            rtol=tolerances.rtol,
            ftol=tolerances.ftol,
            max_steps=tolerances.max_steps,
        )

    if torch.is_grad_enabled() and theta.requires_grad:
        return _AlgebraicImplicitGrad.apply(root, theta, system)
    return root
