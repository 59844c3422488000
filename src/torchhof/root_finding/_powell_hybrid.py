"""Powell hybrid (dogleg trust-region) method for systems of equations."""

import math
from typing import Optional, Tuple

import torch
from torch import Tensor

from torchhof._logger import torchhof_logger
from torchhof.functional import FunctionAdapter
from torchhof.root_finding._convergence import check_convergence
from torchhof.root_finding._exceptions import NonConvergenceError

# Constants for trust region adaptation
_ETA = 1e-4  # Minimum ratio for accepting step
_RHO_GOOD = 0.75  # Threshold to increase radius
_RHO_BAD = 0.25  # Threshold to decrease radius
_MIN_RADIUS = 1e-10


def _newton_step(J: Tensor, fx: Tensor) -> Tensor:
    try:
        p = torch.linalg.solve(J, -fx)
        if torch.isfinite(p).all():
            return p
    except RuntimeError:
        pass
    # Singular Jacobian; minimum-norm least-squares step
    return -(torch.linalg.pinv(J) @ fx)


def dogleg_step(J: Tensor, fx: Tensor, delta: float) -> Tensor:
    """Compute the dogleg step within trust region.

    The dogleg method finds a step that:
    1. Uses the full Newton step if it's within the trust region
    2. Uses a scaled Cauchy (steepest descent) step if the Cauchy point is outside
    3. Interpolates between Cauchy and Newton points otherwise

    Parameters
    ----------
    J : Tensor
        Jacobian matrix. Shape (n, n).
    fx : Tensor
        Function values. Shape (n,).
    delta : float
        Trust region radius.

    Returns
    -------
    Tensor
        The step to take. Shape (n,).
    """
    p_newton = _newton_step(J, fx)
    if torch.linalg.vector_norm(p_newton).item() <= delta:
        return p_newton

    # The Cauchy point minimizes the linear model along the gradient direction
    # p_C = -alpha * g where g = J^T f and alpha = ||g||^2 / ||J g||^2
    g = J.transpose(0, 1) @ fx
    g_norm_sq = torch.dot(g, g)
    Jg = J @ g
    Jg_norm_sq = torch.dot(Jg, Jg)
    if g_norm_sq.item() == 0.0 or Jg_norm_sq.item() < 1e-300:
        # Stationary point of ||f||^2; clip the Newton step to the boundary
        return p_newton * (delta / torch.linalg.vector_norm(p_newton))

    p_cauchy = -(g_norm_sq / Jg_norm_sq) * g
    p_cauchy_norm = torch.linalg.vector_norm(p_cauchy)

    # Cauchy point outside: scaled steepest descent onto the boundary
    if p_cauchy_norm.item() >= delta:
        return (delta / p_cauchy_norm) * p_cauchy

    # Find s in [0, 1] such that ||p_C + s * (p_N - p_C)|| = delta:
    # ||d||^2 * s^2 + 2*<p_C, d>*s + (||p_C||^2 - delta^2) = 0
    d = p_newton - p_cauchy
    a = torch.dot(d, d)
    b = 2 * torch.dot(p_cauchy, d)
    c = p_cauchy_norm**2 - delta**2
    discriminant = torch.clamp(b**2 - 4 * a * c, min=0)
    s = (-b + torch.sqrt(discriminant)) / (2 * a)
    s = torch.clamp(s, min=0, max=1)
    return p_cauchy + s * d


def powell_hybrid(
    system: FunctionAdapter,
    y0: Tensor,
    theta: Tensor,
    *,
    rtol: float,
    ftol: float,
    max_steps: int,
    initial_radius: Optional[float] = None,
    max_radius: float = math.inf,
) -> Tuple[Tensor, int]:
    """
    Find a root of ``g(y, theta) = 0`` with Powell's hybrid method.

    The step is the dogleg combination of the Newton and steepest-descent
    steps bounded by a trust region. The Jacobian ``dg/dy`` is exact at every
    iterate (reverse-mode autodiff), not a secant update.

    Parameters
    ----------
    system : FunctionAdapter
        Algebraic system adapter; ``system.evaluate(y, theta)`` returns the
        residual.
    y0 : Tensor
        Initial guess, shape ``(n,)``.
    theta : Tensor
        Parameters, shape ``(p,)``. Treated as constants here.
    rtol : float
        Relative tolerance on the step.
    ftol : float
        Tolerance on the residual norm.
    max_steps : int
        Maximum number of iterations.
    initial_radius : float, optional
        Initial trust region radius. Default: ``100 * ||y0||``, or ``100``
        when ``y0`` is zero.
    max_radius : float
        Upper bound on the trust region radius.

    Returns
    -------
    tuple[Tensor, int]
        - **root** -- converged iterate, shape ``(n,)``.
        - **n_steps** -- number of iterations used.

    Raises
    ------
    NonConvergenceError
        If ``max_steps`` iterations pass without convergence.

    Notes
    -----
    **Radius Adaptation**: The trust region radius is adjusted based on the
    ratio of actual to predicted reduction of ``||g||^2``:

    - If :math:`\\rho > 0.75` and step is at boundary: double the radius
    - If :math:`\\rho < 0.25`: quarter the radius
    - Accept step if :math:`\\rho > 10^{-4}`
    """
    y = y0.detach().clone()
    theta = theta.detach()

    fx = system.evaluate(y, theta)
    f_norm = torch.linalg.vector_norm(fx).item()

    if initial_radius is None:
        y0_norm = torch.linalg.vector_norm(y).item()
        initial_radius = 100.0 * y0_norm if y0_norm > 0 else 100.0
    delta = min(initial_radius, max_radius)

    for step in range(1, max_steps + 1):
        _, (J,) = system.evaluate_with_jacobian(y, theta, argnums=0)
        p = dogleg_step(J, fx, delta)
        p_norm = torch.linalg.vector_norm(p).item()
        y_norm = torch.linalg.vector_norm(y).item()

        if check_convergence(f_norm, p_norm, y_norm, rtol, ftol):
            torchhof_logger.debug(
                "powell_hybrid converged after %d steps (residual norm %.3e)",
                step,
                f_norm,
            )
            return y, step

        # predicted = ||f||^2 - ||f + J @ p||^2
        predicted = f_norm**2 - torch.linalg.vector_norm(fx + J @ p).item() ** 2

        y_new = y + p
        fx_new = system.evaluate(y_new, theta)
        f_new_norm = torch.linalg.vector_norm(fx_new).item()
        actual = f_norm**2 - f_new_norm**2

        rho = actual / predicted if predicted > 0 else 0.0

        if rho > _ETA:
            y, fx, f_norm = y_new, fx_new, f_new_norm

        if rho < _RHO_BAD:
            delta = max(0.25 * delta, _MIN_RADIUS)
        elif rho > _RHO_GOOD and p_norm >= 0.99 * delta:
            delta = min(2.0 * delta, max_radius)

    raise NonConvergenceError(
        f"solve_algebraic: maximum number of iterations ({max_steps}) "
        f"exceeded; last residual norm {f_norm:.3e} (ftol {ftol:.1e})"
    )
