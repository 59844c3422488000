"""Implicit function theorem for converged roots."""

import torch
from torch import Tensor

from torchhof.functional import FunctionAdapter


def implicit_vjp(
    system: FunctionAdapter,
    y_star: Tensor,
    theta: Tensor,
    cotangent: Tensor,
) -> Tensor:
    """Compute ``cotangent @ dy*/dtheta`` at a root of ``system``.

    If ``g(y*, theta) = 0`` then ``dy*/dtheta = -(dg/dy)^{-1} dg/dtheta``.
    The product is formed as ``v = -(dg/dy)^{-T} cotangent`` followed by a
    single vector-Jacobian product ``v @ dg/dtheta``, so the Jacobian w.r.t.
    ``theta`` is never materialised.

    Parameters
    ----------
    system : FunctionAdapter
        Algebraic system ``g(y, theta)``.
    y_star : Tensor
        Converged root, shape ``(n,)``.
    theta : Tensor
        Parameters, shape ``(p,)``.
    cotangent : Tensor
        Upstream gradient w.r.t. ``y*``, shape ``(n,)``.

    Returns
    -------
    Tensor
        Gradient w.r.t. ``theta``, shape ``(p,)``.
    """
    _, (jacobian,) = system.evaluate_with_jacobian(
        y_star.detach(), theta.detach(), argnums=0
    )
    neg_cot = -cotangent.to(jacobian.dtype).unsqueeze(-1)
    try:
        v = torch.linalg.solve(jacobian.transpose(-2, -1), neg_cot).squeeze(-1)
    except RuntimeError:
        # Singular Jacobian at the root; fall back to the pseudoinverse
        v = (torch.linalg.pinv(jacobian).transpose(-2, -1) @ neg_cot).squeeze(-1)
    (grad_theta,) = system.vjp(
        y_star.detach(), theta.detach(), cotangent=v, argnums=1
    )
    return grad_theta
