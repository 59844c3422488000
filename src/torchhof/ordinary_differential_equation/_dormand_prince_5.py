"""Dormand-Prince 5(4) adaptive ODE solver."""

import math
from functools import lru_cache
from typing import Callable, Sequence

import torch
from torch import Tensor

from torchhof._logger import torchhof_logger
from torchhof.ordinary_differential_equation._exceptions import (
    MaxStepsExceeded,
    StepSizeError,
)
from torchhof.ordinary_differential_equation._interpolation import (
    dp5_dense_output,
)
from torchhof.ordinary_differential_equation._step_size import (
    min_step,
    rms_norm,
    select_initial_step,
)

# Dormand-Prince 5(4) Butcher tableau coefficients (raw values)
# fmt: off
_C_RAW = [0.0, 1/5, 3/10, 4/5, 8/9, 1.0, 1.0]
_A_RAW = [
    [],
    [1/5],
    [3/40, 9/40],
    [44/45, -56/15, 32/9],
    [19372/6561, -25360/2187, 64448/6561, -212/729],
    [9017/3168, -355/33, 46732/5247, 49/176, -5103/18656],
    [35/384, 0, 500/1113, 125/192, -2187/6784, 11/84],
]
_B5_RAW = [35/384, 0, 500/1113, 125/192, -2187/6784, 11/84, 0]
_B4_RAW = [5179/57600, 0, 7571/16695, 393/640, -92097/339200, 187/2100, 1/40]
# fmt: on

# PI step size controller (Hairer & Wanner, DOPRI5)
_SAFETY = 0.9
_BETA = 0.04
_EXPO1 = 0.2 - _BETA * 0.75
_MIN_FACTOR = 0.2
_MAX_FACTOR = 10.0
_MAX_CONSECUTIVE_REJECTIONS = 50


@lru_cache(maxsize=8)
def _get_tableau(dtype_str: str, device_str: str):
    """Get Butcher tableau tensors for the given dtype and device.

    Uses string keys for proper LRU cache hashing.
    """
    dtype = getattr(torch, dtype_str)
    device = torch.device(device_str)

    A = [torch.tensor(row, dtype=dtype, device=device) for row in _A_RAW]
    E = torch.tensor(
        [b5 - b4 for b5, b4 in zip(_B5_RAW, _B4_RAW)], dtype=dtype, device=device
    )
    return A, E


def dormand_prince_5(
    f: Callable[[float, Tensor], Tensor],
    y0: Tensor,
    t0: float,
    ts: Sequence[float],
    *,
    rtol: float,
    atol: float,
    max_steps: int,
) -> Tensor:
    """
    Solve an ODE with the Dormand-Prince 5(4) adaptive method.

    Parameters
    ----------
    f : callable
        Dynamics function ``f(t, y) -> dy/dt`` with ``t`` a Python float and
        ``y`` of shape (n,).
    y0 : Tensor
        Initial state, shape (n,).
    t0 : float
        Initial time.
    ts : sequence of float
        Output times, non-decreasing, all greater than ``t0``.
    rtol, atol : float
        Relative and absolute tolerances for the local error estimate,
        applied to every component of the state.
    max_steps : int
        Maximum number of attempted steps (accepted and rejected) over the
        whole call.

    Returns
    -------
    Tensor
        States at ``ts``, shape (len(ts), n).

    Raises
    ------
    MaxStepsExceeded
        If ``max_steps`` steps are attempted before reaching ``ts[-1]``.
    StepSizeError
        If the step size underflows or too many consecutive steps are
        rejected.

    Notes
    -----
    The stepper uses the FSAL property (the last stage of an accepted step
    is the first stage of the next) and a PI step size controller. Output
    times are not mesh points: states there come from the 4th-order
    continuous extension of the step containing them.
    """
    A, E = _get_tableau(str(y0.dtype).split(".")[-1], str(y0.device))
    t_end = ts[-1]

    t = t0
    y = y0
    k1 = f(t, y)
    h = select_initial_step(f, t, y, k1, t_end - t, 4, rtol, atol)

    outputs = []
    next_out = 0
    n_attempted = 0
    n_accepted = 0
    n_rejected_in_row = 0
    err_old = 1e-4

    while next_out < len(ts):
        if n_attempted >= max_steps:
            raise MaxStepsExceeded(
                f"integrate_ode_nonstiff: maximum number of steps ({max_steps}) "
                f"exceeded at t={t}"
            )
        n_attempted += 1

        h_min = min_step(t)
        if h < h_min:
            raise StepSizeError(
                f"integrate_ode_nonstiff: step size {h:.3e} underflowed at t={t}"
            )
        h = min(h, t_end - t)

        k = [k1]
        for i in range(1, 7):
            a = A[i]
            y_stage = y + h * (a @ torch.stack(k))
            k.append(f(t + _C_RAW[i] * h, y_stage))
        K = torch.stack(k)
        y_new = y + h * (A[6] @ K[:6])

        scale = atol + rtol * torch.maximum(torch.abs(y), torch.abs(y_new))
        err = rms_norm(h * (E @ K) / scale)

        if err <= 1.0:
            # PI control
            fac11 = max(err, 1e-10) ** _EXPO1
            fac = fac11 / err_old**_BETA
            factor = min(_MAX_FACTOR, max(_MIN_FACTOR, _SAFETY / fac))
            if n_rejected_in_row:
                factor = min(factor, 1.0)
            err_old = max(err, 1e-4)

            t_new = t + h if t + h < t_end else t_end
            while next_out < len(ts) and ts[next_out] <= t_new:
                if ts[next_out] == t_new:
                    outputs.append(y_new)
                else:
                    theta = (ts[next_out] - t) / h
                    outputs.append(dp5_dense_output(y, K, h, theta))
                next_out += 1

            t, y, k1 = t_new, y_new, K[6]
            h = h * factor
            n_accepted += 1
            n_rejected_in_row = 0
        else:
            if math.isfinite(err):
                factor = max(_MIN_FACTOR, _SAFETY * err**-_EXPO1)
            else:
                factor = _MIN_FACTOR
            h = h * factor
            n_rejected_in_row += 1
            if n_rejected_in_row > _MAX_CONSECUTIVE_REJECTIONS:
                raise StepSizeError(
                    f"integrate_ode_nonstiff: {n_rejected_in_row} consecutive "
                    f"step rejections at t={t}"
                )

    torchhof_logger.debug(
        "dormand_prince_5: %d accepted steps, %d rejected",
        n_accepted,
        n_attempted - n_accepted,
    )
    return torch.stack(outputs)
