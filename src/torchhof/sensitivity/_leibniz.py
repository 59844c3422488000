"""Leibniz integral rule for parametrised integrands."""

import math
from typing import Callable, Optional, Tuple

import torch
from torch import Tensor

from torchhof.functional import FunctionAdapter


def derivative_integrand(
    integrand: FunctionAdapter, theta: Tensor
) -> Callable[[Tensor, Tensor], Tensor]:
    """Return ``(x, xc) -> df/dtheta (x, xc, theta)``.

    Differentiating under the integral sign gives
    ``d/dtheta int f dx = int df/dtheta dx``, so the returned vector integrand
    can be handed to the same quadrature rule as ``f``.
    """
    theta = theta.detach()
    grad_f = torch.func.jacrev(integrand.raw, argnums=2)

    def d_integrand(x: Tensor, xc: Tensor) -> Tensor:
        return grad_f(x, xc, theta).reshape(theta.shape)

    return d_integrand


def endpoint_terms(
    integrand: FunctionAdapter, theta: Tensor, a: float, b: float
) -> Tuple[Optional[Tensor], Optional[Tensor]]:
    """Boundary terms ``(dI/da, dI/db) = (-f(a), f(b))`` of the Leibniz rule.

    An infinite endpoint has no term and gives ``None``. The complement
    ``xc`` is zero at an endpoint of a finite interval and NaN otherwise.
    """
    theta = theta.detach()
    dtype = theta.dtype
    xc = torch.tensor(
        0.0 if math.isfinite(a) and math.isfinite(b) else math.nan, dtype=dtype
    )
    d_a = d_b = None
    if math.isfinite(a):
        d_a = -integrand.evaluate(torch.tensor(a, dtype=dtype), xc, theta)
    if math.isfinite(b):
        d_b = integrand.evaluate(torch.tensor(b, dtype=dtype), xc, theta)
    return d_a, d_b
