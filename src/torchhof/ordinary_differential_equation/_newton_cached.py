"""Simplified Newton iteration with a cached LU factorization for BDF."""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import torch
from torch import Tensor

from torchhof.ordinary_differential_equation._step_size import rms_norm

NEWTON_MAXITER = 4


@dataclass
class JacobianCache:
    """Cache for the Jacobian and the LU factorization of ``I - c*J``.

    The Jacobian is kept across steps until a Newton iteration fails to
    converge; the factorization is dropped whenever ``c`` changes (step size
    or order change) and recomputed lazily.

    Attributes
    ----------
    jacobian : Tensor, optional
        Last evaluated Jacobian ``df/dy``.
    current : bool
        Whether ``jacobian`` was evaluated at the current step.
    lu_factors : Tensor, optional
        LU factorization of ``I - c*J`` (L and U packed together).
    lu_pivots : Tensor, optional
        Pivot indices from the factorization.
    n_factorizations : int
        Number of LU factorizations performed.
    n_jacobian_evals : int
        Number of Jacobian evaluations.
    """

    jacobian: Optional[Tensor] = None
    current: bool = False
    lu_factors: Optional[Tensor] = None
    lu_pivots: Optional[Tensor] = None
    n_factorizations: int = 0
    n_jacobian_evals: int = 0

    def update_jacobian(self, jacobian: Callable[[float, Tensor], Tensor], t, y):
        self.jacobian = jacobian(t, y)
        self.current = True
        self.n_jacobian_evals += 1
        self.clear_lu()

    def clear_lu(self):
        """Drop the factorization; the Jacobian is kept."""
        self.lu_factors = None
        self.lu_pivots = None

    def factor(self, c: float):
        if self.lu_factors is None:
            n = self.jacobian.shape[0]
            eye = torch.eye(n, dtype=self.jacobian.dtype, device=self.jacobian.device)
            self.lu_factors, self.lu_pivots = torch.linalg.lu_factor(
                eye - c * self.jacobian
            )
            self.n_factorizations += 1

    def solve(self, rhs: Tensor) -> Tensor:
        return torch.linalg.lu_solve(
            self.lu_factors, self.lu_pivots, rhs.unsqueeze(-1)
        ).squeeze(-1)


def newton_solve_cached(
    f: Callable[[float, Tensor], Tensor],
    t_new: float,
    y_predict: Tensor,
    c: float,
    psi: Tensor,
    cache: JacobianCache,
    scale: Tensor,
    tol: float,
) -> Tuple[bool, int, Tensor, Tensor]:
    """
    Solve the BDF corrector equation with a simplified Newton iteration.

    Finds ``d`` with ``d - c*f(t_new, y_predict + d) + psi = 0`` using the
    cached factorization of ``I - c*J``. The iteration stops early when the
    observed contraction rate shows it cannot reach ``tol`` within
    ``NEWTON_MAXITER`` iterations.

    Parameters
    ----------
    f : callable
        Right-hand side ``f(t, y)``.
    t_new : float
        Time at the end of the step.
    y_predict : Tensor
        Predicted state, shape (n,).
    c : float
        ``h / alpha[order]``.
    psi : Tensor
        History term, shape (n,).
    cache : JacobianCache
        Cache holding a factorization of ``I - c*J``.
    scale : Tensor
        Error weights ``atol + rtol*|y|``.
    tol : float
        Tolerance on the weighted Newton increment.

    Returns
    -------
    converged : bool
        Whether the iteration converged.
    n_iter : int
        Number of iterations performed.
    y : Tensor
        Corrected state.
    d : Tensor
        Total correction ``y - y_predict``.
    """
    d = torch.zeros_like(y_predict)
    y = y_predict.clone()
    dy_norm_old = None
    converged = False
    k = 0
    for k in range(NEWTON_MAXITER):
        fy = f(t_new, y)
        dy = cache.solve(c * fy - psi - d)
        if not torch.isfinite(dy).all():
            break
        dy_norm = rms_norm(dy / scale)

        rate = None if dy_norm_old is None else dy_norm / dy_norm_old
        if rate is not None and (
            rate >= 1 or rate ** (NEWTON_MAXITER - k) / (1 - rate) * dy_norm > tol
        ):
            break

        y = y + dy
        d = d + dy

        if dy_norm == 0 or (rate is not None and rate / (1 - rate) * dy_norm < tol):
            converged = True
            break

        dy_norm_old = dy_norm

    return converged, k + 1, y, d
