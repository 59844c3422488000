"""BDF (Backward Differentiation Formula) adaptive ODE solver.

Variable-order, variable-step BDF methods for stiff ODEs in the
quasi-constant step size form (Shampine & Reichelt, "The MATLAB ODE Suite").
The solution history is held as a backward difference array ``D`` on an
equally spaced mesh; a step size change rescales ``D`` instead of
interpolating past solution values.
"""

import math
from typing import Callable, Sequence

import torch
from torch import Tensor

from torchhof._logger import torchhof_logger
from torchhof.ordinary_differential_equation._exceptions import (
    ConvergenceError,
    MaxStepsExceeded,
    StepSizeError,
)
from torchhof.ordinary_differential_equation._interpolation import (
    bdf_dense_output,
)
from torchhof.ordinary_differential_equation._newton_cached import (
    NEWTON_MAXITER,
    JacobianCache,
    newton_solve_cached,
)
from torchhof.ordinary_differential_equation._step_size import (
    min_step,
    rms_norm,
    select_initial_step,
)

MAX_ORDER = 5
_MIN_FACTOR = 0.2
_MAX_FACTOR = 10.0
_MAX_CONSECUTIVE_FAILURES = 50

# gamma[k] = sum_{i=1}^k 1/i; for BDF alpha[k] = gamma[k]
_GAMMA = [0.0] + [sum(1.0 / i for i in range(1, k + 1)) for k in range(1, MAX_ORDER + 1)]
# Leading error coefficient of BDF-k relative to the k+1 difference
_ERROR_CONST = [1.0 / (k + 1) for k in range(MAX_ORDER + 2)]


def _compute_R(order: int, factor: float, D: Tensor) -> Tensor:
    """Matrix mapping differences on step h to differences on step factor*h."""
    idx = torch.arange(1, order + 1, dtype=D.dtype, device=D.device)
    M = torch.zeros(order + 1, order + 1, dtype=D.dtype, device=D.device)
    M[1:, 1:] = (idx[:, None] - 1 - factor * idx[None, :]) / idx[:, None]
    M[0] = 1
    return torch.cumprod(M, dim=0)


def change_D(D: Tensor, order: int, factor: float) -> None:
    """Rescale the difference array in place for a step size change."""
    R = _compute_R(order, factor, D)
    U = _compute_R(order, 1.0, D)
    RU = R @ U
    D[: order + 1] = RU.transpose(0, 1) @ D[: order + 1]


def _order_factor(error_norm: float, exponent: int) -> float:
    if error_norm == 0:
        return math.inf
    return error_norm ** (-1.0 / exponent)


def bdf(
    f: Callable[[float, Tensor], Tensor],
    jacobian: Callable[[float, Tensor], Tensor],
    y0: Tensor,
    t0: float,
    ts: Sequence[float],
    *,
    rtol: float,
    atol: float,
    max_steps: int,
    max_order: int = MAX_ORDER,
) -> Tensor:
    """
    Solve a stiff ODE with the variable-order BDF method.

    Parameters
    ----------
    f : callable
        Dynamics function ``f(t, y) -> dy/dt`` with ``t`` a Python float.
    jacobian : callable
        ``jacobian(t, y) -> df/dy``, shape (n, n).
    y0 : Tensor
        Initial state, shape (n,).
    t0 : float
        Initial time.
    ts : sequence of float
        Output times, non-decreasing, all greater than ``t0``.
    rtol, atol : float
        Relative and absolute tolerances.
    max_steps : int
        Maximum number of attempted steps over the whole call.
    max_order : int
        Maximum BDF order (1-5).

    Returns
    -------
    Tensor
        States at ``ts``, shape (len(ts), n).

    Raises
    ------
    MaxStepsExceeded
        If ``max_steps`` steps are attempted before reaching ``ts[-1]``.
    StepSizeError
        If the step size underflows or the error test keeps failing.
    ConvergenceError
        If the Newton iteration keeps failing with a fresh Jacobian.

    Notes
    -----
    Each step predicts ``y_predict = sum(D[:k+1])`` and corrects it with a
    simplified Newton iteration on ``I - (h/alpha_k) J``. The Jacobian is
    reused across steps until Newton fails to converge. The local error is
    ``error_const[k] * d`` where ``d`` is the total Newton correction.
    After ``k + 1`` steps at constant size the order may move by one, chosen
    by comparing the error estimates of orders ``k - 1``, ``k`` and ``k + 1``.
    The solver starts at order 1 (backward Euler).
    """
    if max_order < 1 or max_order > MAX_ORDER:
        raise ValueError(f"max_order must be in [1, {MAX_ORDER}], got {max_order}")

    dtype, device = y0.dtype, y0.device
    n = y0.shape[0]
    t_end = ts[-1]
    gamma = torch.tensor(_GAMMA, dtype=dtype, device=device)
    alpha = _GAMMA

    f0 = f(t0, y0)
    h_abs = select_initial_step(f, t0, y0, f0, t_end - t0, 1, rtol, atol)
    newton_tol = max(10 * torch.finfo(dtype).eps / rtol, min(0.03, rtol**0.5))

    D = torch.zeros(MAX_ORDER + 3, n, dtype=dtype, device=device)
    D[0] = y0
    D[1] = f0 * h_abs
    order = 1
    n_equal_steps = 0

    cache = JacobianCache()
    cache.update_jacobian(jacobian, t0, y0)

    t = t0
    outputs = []
    next_out = 0
    n_attempted = 0
    n_accepted = 0

    while next_out < len(ts):
        h_min = min_step(t)
        n_failures = 0
        step_accepted = False
        while not step_accepted:
            if n_attempted >= max_steps:
                raise MaxStepsExceeded(
                    f"integrate_ode_stiff: maximum number of steps ({max_steps}) "
                    f"exceeded at t={t}"
                )
            n_attempted += 1
            if h_abs < h_min:
                raise StepSizeError(
                    f"integrate_ode_stiff: step size {h_abs:.3e} underflowed at t={t}"
                )

            t_new = t + h_abs
            if t_new > t_end:
                t_new = t_end
                change_D(D, order, (t_new - t) / h_abs)
                n_equal_steps = 0
                cache.clear_lu()
            h_abs = t_new - t

            y_predict = D[: order + 1].sum(dim=0)
            scale = atol + rtol * torch.abs(y_predict)
            psi = (gamma[1 : order + 1] @ D[1 : order + 1]) / alpha[order]
            c = h_abs / alpha[order]

            converged = False
            while not converged:
                try:
                    cache.factor(c)
                except RuntimeError:
                    break
                converged, n_iter, y_new, d = newton_solve_cached(
                    f, t_new, y_predict, c, psi, cache, scale, newton_tol
                )
                if not converged:
                    if cache.current:
                        break
                    cache.update_jacobian(jacobian, t_new, y_predict)

            if not converged:
                n_failures += 1
                if n_failures > _MAX_CONSECUTIVE_FAILURES:
                    raise ConvergenceError(
                        f"integrate_ode_stiff: Newton iteration failed "
                        f"{n_failures} times in a row at t={t}"
                    )
                h_abs *= 0.5
                change_D(D, order, 0.5)
                n_equal_steps = 0
                cache.clear_lu()
                continue

            safety = 0.9 * (2 * NEWTON_MAXITER + 1) / (2 * NEWTON_MAXITER + n_iter)
            scale = atol + rtol * torch.abs(y_new)
            error_norm = rms_norm(_ERROR_CONST[order] * d / scale)

            if error_norm > 1:
                n_failures += 1
                if n_failures > _MAX_CONSECUTIVE_FAILURES:
                    raise StepSizeError(
                        f"integrate_ode_stiff: {n_failures} consecutive step "
                        f"rejections at t={t}"
                    )
                factor = max(_MIN_FACTOR, safety * error_norm ** (-1.0 / (order + 1)))
                h_abs *= factor
                change_D(D, order, factor)
                n_equal_steps = 0
                cache.clear_lu()
            else:
                step_accepted = True

        n_accepted += 1
        n_equal_steps += 1
        t = t_new
        cache.current = False

        D[order + 2] = d - D[order + 1]
        D[order + 1] = d
        for i in reversed(range(order + 1)):
            D[i] += D[i + 1]

        if n_equal_steps >= order + 1:
            if order > 1:
                error_m = _ERROR_CONST[order - 1] * D[order]
                error_m_norm = rms_norm(error_m / scale)
            else:
                error_m_norm = math.inf
            if order < max_order:
                error_p = _ERROR_CONST[order + 1] * D[order + 2]
                error_p_norm = rms_norm(error_p / scale)
            else:
                error_p_norm = math.inf

            factors = [
                _order_factor(error_m_norm, order),
                _order_factor(error_norm, order + 1),
                _order_factor(error_p_norm, order + 2),
            ]
            best = max(range(3), key=lambda j: factors[j])
            order += best - 1

            factor = min(_MAX_FACTOR, safety * factors[best])
            h_abs *= factor
            change_D(D, order, factor)
            n_equal_steps = 0
            cache.clear_lu()

        while next_out < len(ts) and ts[next_out] <= t:
            if ts[next_out] == t:
                outputs.append(D[0].clone())
            else:
                outputs.append(bdf_dense_output(D, order, t, h_abs, ts[next_out]))
            next_out += 1

    torchhof_logger.debug(
        "bdf: %d accepted steps, %d attempted, %d Jacobians, %d LU factorizations",
        n_accepted,
        n_attempted,
        cache.n_jacobian_evals,
        cache.n_factorizations,
    )
    return torch.stack(outputs)
