"""Forward sensitivity equations for ODE initial value problems.

For ``dy/dt = f(t, y, theta)`` the sensitivities ``S_j = dy/dp_j`` obey

    dS_j/dt = (df/dy) S_j + df/dp_j,

with ``S_j(t0) = e_j`` for the initial state and ``0`` for parameters. The
state and the ``m`` sensitivity vectors are packed column by column:
``z = [y, S_1, ..., S_m]``, each of length ``n``.
"""

from typing import Callable, NamedTuple, Optional, Tuple

import torch
from torch import Tensor

from torchhof.functional import FunctionAdapter


class AugmentedSystem(NamedTuple):
    """Right-hand side of the state plus sensitivity system.

    Attributes
    ----------
    rhs : callable
        ``rhs(t, z) -> dz/dt``.
    jacobian : callable
        ``jacobian(t, z)`` giving the block-diagonal Newton matrix
        ``I_{1+m} (x) df/dy``. The coupling terms ``d(J S)/dy`` are dropped,
        which is the simultaneous-corrector approximation.
    n_states : int
        State dimension ``n``.
    n_initial : int
        Number of initial-state sensitivities (``n`` or ``0``).
    n_params : int
        Number of parameter sensitivities.
    """

    rhs: Callable[[Tensor, Tensor], Tensor]
    jacobian: Callable[[Tensor, Tensor], Tensor]
    n_states: int
    n_initial: int
    n_params: int

    @property
    def n_sensitivities(self) -> int:
        return self.n_initial + self.n_params


def augment_with_sensitivities(
    rhs: FunctionAdapter,
    theta: Tensor,
    n_states: int,
    *,
    with_initial: bool,
    with_params: bool,
) -> AugmentedSystem:
    """Build the forward sensitivity system for ``rhs``."""
    theta = theta.detach()
    n = n_states
    n_initial = n if with_initial else 0
    n_params = theta.shape[0] if with_params else 0
    m = n_initial + n_params

    def augmented_rhs(t: Tensor, z: Tensor) -> Tensor:
        y = z[:n]
        sens = z[n:].reshape(m, n)
        argnums = (1, 2) if n_params else (1,)
        f, jacobians = rhs.evaluate_with_jacobian(t, y, theta, argnums=argnums)
        jac_y = jacobians[0]
        d_sens = sens @ jac_y.transpose(0, 1)
        if n_params:
            jac_theta = jacobians[1]
            forcing = torch.cat(
                [
                    torch.zeros(n_initial, n, dtype=z.dtype, device=z.device),
                    jac_theta.transpose(0, 1).to(z.dtype),
                ]
            )
            d_sens = d_sens + forcing
        return torch.cat([f, d_sens.reshape(-1)])

    def augmented_jacobian(t: Tensor, z: Tensor) -> Tensor:
        _, (jac_y,) = rhs.evaluate_with_jacobian(t, z[:n], theta, argnums=1)
        return torch.block_diag(*([jac_y] * (1 + m)))

    return AugmentedSystem(augmented_rhs, augmented_jacobian, n, n_initial, n_params)


def initial_sensitivities(system: AugmentedSystem, y0: Tensor) -> Tensor:
    """Pack ``y0`` with ``S(t0) = [I | 0]`` into the augmented state."""
    n = system.n_states
    parts = [y0.detach()]
    if system.n_initial:
        parts.append(torch.eye(n, dtype=y0.dtype, device=y0.device).reshape(-1))
    if system.n_params:
        parts.append(
            torch.zeros(system.n_params * n, dtype=y0.dtype, device=y0.device)
        )
    return torch.cat(parts)


def split_sensitivities(
    system: AugmentedSystem, trajectory: Tensor
) -> Tuple[Tensor, Optional[Tensor], Optional[Tensor]]:
    """Unpack an augmented trajectory of shape ``(T, n * (1 + m))``.

    Returns
    -------
    tuple
        - **states** -- shape ``(T, n)``.
        - **d_y0** -- ``dY[t, i]/dy0[j]``, shape ``(T, n, n)``, or ``None``.
        - **d_theta** -- ``dY[t, i]/dtheta[k]``, shape ``(T, n, p)``, or
          ``None``.
    """
    n = system.n_states
    m = system.n_sensitivities
    states = trajectory[:, :n]
    sens = trajectory[:, n:].reshape(-1, m, n).transpose(1, 2)
    d_y0 = sens[:, :, : system.n_initial] if system.n_initial else None
    d_theta = sens[:, :, system.n_initial :] if system.n_params else None
    return states, d_y0, d_theta
