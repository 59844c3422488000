"""Dense output for the ODE integrators.

Both integrators step over their own adaptive mesh and report the state at
the requested output times by evaluating the interpolant of the step that
contains each time:

- dp5_dense_output(): 4th-order continuous extension of Dormand-Prince 5(4)
- bdf_dense_output(): interpolating polynomial held in the BDF difference array
"""

import torch
from torch import Tensor

# Dense output coefficients for Dormand-Prince (Shampine, 1986)
# P[i, j] is the coefficient of theta^(j+1) in b_i(theta)
# fmt: off
_DP5_P = [
    [1.0, -2.8535800730693277, 3.0717434625687095, -1.1270175686556618],
    [0.0, 0.0, 0.0, 0.0],
    [0.0, 4.023133377671971, -6.249321571474188, 2.6754244809482835],
    [0.0, -3.7324019591773413, 10.068970588235294, -5.6855269578294915],
    [0.0, 2.554803831366355, -6.399112381036449, 3.521932369440949],
    [0.0, -1.3744241095453652, 3.2726577470945877, -1.7672812582195055],
    [0.0, 1.3824689314366552, -3.7649378599018604, 2.382468931436655],
]
# fmt: on


def dp5_dense_output(y: Tensor, k: Tensor, h: float, theta: float) -> Tensor:
    """Evaluate the Dormand-Prince continuous extension inside one step.

    Parameters
    ----------
    y : Tensor
        State at the start of the step, shape (n,).
    k : Tensor
        The seven stage derivatives of the step, shape (7, n).
    h : float
        Step size.
    theta : float
        Normalized position in the step, ``(t - t_old) / h`` in ``[0, 1]``.

    Returns
    -------
    Tensor
        Interpolated state, shape (n,).
    """
    P = torch.tensor(_DP5_P, dtype=k.dtype, device=k.device)
    powers = torch.tensor(
        [theta, theta**2, theta**3, theta**4], dtype=k.dtype, device=k.device
    )
    b = P @ powers
    return y + h * (b @ k)


def bdf_dense_output(
    D: Tensor, order: int, t_new: float, h: float, t: float
) -> Tensor:
    """Evaluate the BDF interpolating polynomial of the last accepted step.

    The polynomial through the ``order + 1`` most recent solution points is
    stored in Newton form as backward differences ``D[0..order]`` at
    ``t_new``, on the equally spaced mesh ``t_new - j*h``.

    Parameters
    ----------
    D : Tensor
        Backward difference array, shape (>= order + 1, n).
    order : int
        Current method order.
    t_new : float
        End of the last accepted step.
    h : float
        Size of the last accepted step.
    t : float
        Query time, normally in ``[t_new - h, t_new]``.

    Returns
    -------
    Tensor
        Interpolated state, shape (n,).
    """
    j = torch.arange(order, dtype=D.dtype, device=D.device)
    t_shift = t_new - h * j
    denom = h * (1 + j)
    p = torch.cumprod((t - t_shift) / denom, dim=0)
    return D[0] + p @ D[1 : order + 1]
