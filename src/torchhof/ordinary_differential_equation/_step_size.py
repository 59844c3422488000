"""Shared step size helpers for the adaptive integrators."""

import math
from typing import Callable

import torch
from torch import Tensor


def rms_norm(x: Tensor) -> float:
    """Root-mean-square norm used for all error tests."""
    return (torch.linalg.vector_norm(x) / math.sqrt(max(x.numel(), 1))).item()


def select_initial_step(
    f: Callable[[float, Tensor], Tensor],
    t0: float,
    y0: Tensor,
    f0: Tensor,
    interval: float,
    order: int,
    rtol: float,
    atol: float,
) -> float:
    """Estimate a first step size (Hairer, Norsett & Wanner, II.4).

    Parameters
    ----------
    f : callable
        Right-hand side ``f(t, y)``.
    t0 : float
        Initial time.
    y0, f0 : Tensor
        Initial state and ``f(t0, y0)``.
    interval : float
        Length of the integration interval; the step never exceeds it.
    order : int
        Order of the error estimator.
    rtol, atol : float
        Tolerances.

    Returns
    -------
    float
        Positive initial step size.
    """
    scale = atol + rtol * torch.abs(y0)
    d0 = rms_norm(y0 / scale)
    d1 = rms_norm(f0 / scale)
    if d0 < 1e-5 or d1 < 1e-5:
        h0 = 1e-6
    else:
        h0 = 0.01 * d0 / d1
    h0 = min(h0, interval)

    # Perform one Euler step and estimate second derivative
    y1 = y0 + h0 * f0
    f1 = f(t0 + h0, y1)
    d2 = rms_norm((f1 - f0) / scale) / h0

    if max(d1, d2) <= 1e-15:
        h1 = max(1e-6, h0 * 1e-3)
    else:
        h1 = (0.01 / max(d1, d2)) ** (1.0 / (order + 1))

    return min(100 * h0, h1, interval)


def min_step(t: float) -> float:
    """Smallest step distinguishable from zero at time ``t``."""
    return 10 * abs(math.nextafter(t, math.inf) - t)
