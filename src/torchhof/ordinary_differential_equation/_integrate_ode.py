"""Differentiable ODE initial value problem solvers."""

from typing import Callable, Optional, Union

import torch
from tensordict import TensorDict
from torch import Tensor

from torchhof.functional import (
    ODE_ATOL,
    ODE_MAX_STEPS,
    ODE_RTOL,
    DataBlock,
    FunctionAdapter,
    FunctionContract,
    Tolerances,
    as_parameter,
    check_finite,
    check_nondecreasing,
    check_nonempty,
    check_size_match,
)
from torchhof.functional._values import ArrayLike
from torchhof.ordinary_differential_equation._bdf import bdf
from torchhof.ordinary_differential_equation._dormand_prince_5 import (
    dormand_prince_5,
)
from torchhof.ordinary_differential_equation._tensordict_utils import (
    flatten_state,
)
from torchhof.sensitivity import (
    attach_jacobians,
    augment_with_sensitivities,
    initial_sensitivities,
    split_sensitivities,
)

State = Union[Tensor, TensorDict]


def _integrate(
    operation: str,
    stiff: bool,
    f: Callable[..., Tensor],
    y0: State,
    t0,
    ts: ArrayLike,
    theta: ArrayLike,
    x_r: ArrayLike,
    x_i: ArrayLike,
    rtol: float,
    atol: float,
    max_steps: Optional[int],
) -> State:
    flat_y0, unflatten = flatten_state(y0)
    flat_y0 = as_parameter(flat_y0, "y0")
    check_nonempty(operation, "initial state", flat_y0)
    dtype, device = flat_y0.dtype, flat_y0.device

    theta = as_parameter(theta, "theta", dtype).to(dtype)
    ts = as_parameter(ts, "ts", dtype).to(dtype)
    check_nonempty(operation, "output times", ts)
    check_finite(operation, "output times", ts)
    check_nondecreasing(operation, "output times", ts)
    t0 = float(torch.as_tensor(t0).detach())
    check_finite(operation, "initial time", torch.tensor([t0]))
    ts_list = ts.detach().tolist()
    if not ts_list[0] > t0:
        raise ValueError(
            f"{operation}: initial time t0={t0} must be less than the first "
            f"output time {ts_list[0]}"
        )

    tolerances = Tolerances.ode(
        rtol=rtol, atol=atol, max_steps=max_steps
    ).validate(operation)
    data = DataBlock.from_arrays(x_r, x_i, dtype=dtype)

    rhs = FunctionAdapter(f, FunctionContract.ODE_RHS, data)
    n = flat_y0.shape[0]

    def as_time(t: float) -> Tensor:
        return torch.tensor(t, dtype=dtype, device=device)

    with torch.no_grad():
        f0 = rhs.evaluate(as_time(t0), flat_y0.detach(), theta.detach())
    check_size_match(
        operation, "initial state", n, "ODE right-hand side's output", f0.shape[0]
    )
    rhs.output_size = n

    grad_enabled = torch.is_grad_enabled()
    with_initial = grad_enabled and flat_y0.requires_grad
    with_params = grad_enabled and theta.requires_grad
    with_times = grad_enabled and ts.requires_grad

    options = dict(
        rtol=tolerances.rtol, atol=tolerances.atol, max_steps=tolerances.max_steps
    )

    with torch.no_grad():
        if with_initial or with_params:
            system = augment_with_sensitivities(
                rhs,
                theta,
                n,
                with_initial=with_initial,
                with_params=with_params,
            )
            z0 = initial_sensitivities(system, flat_y0)

            def system_rhs(t, z):
                return system.rhs(as_time(t), z)

            if stiff:
                trajectory = bdf(
                    system_rhs,
                    lambda t, z: system.jacobian(as_time(t), z),
                    z0,
                    t0,
                    ts_list,
                    **options,
                )
            else:
                trajectory = dormand_prince_5(
                    system_rhs, z0, t0, ts_list, **options
                )
            states, d_y0, d_theta = split_sensitivities(system, trajectory)
        else:
            theta_c = theta.detach()

            def state_rhs(t, y):
                return rhs.evaluate(as_time(t), y, theta_c)

            y_start = flat_y0.detach()
            if stiff:
                trajectory = bdf(
                    state_rhs,
                    lambda t, y: rhs.evaluate_with_jacobian(
                        as_time(t), y, theta_c, argnums=1
                    )[1][0],
                    y_start,
                    t0,
                    ts_list,
                    **options,
                )
            else:
                trajectory = dormand_prince_5(
                    state_rhs, y_start, t0, ts_list, **options
                )
            states, d_y0, d_theta = trajectory, None, None

        inputs, jacobians = [], []
        if with_initial:
            inputs.append(flat_y0)
            jacobians.append(d_y0)
        if with_params:
            inputs.append(theta)
            jacobians.append(d_theta)
        if with_times:
            theta_c = theta.detach()
            n_out = len(ts_list)
            d_ts = torch.zeros(n_out, n, n_out, dtype=dtype, device=device)
            for i, t_i in enumerate(ts_list):
                d_ts[i, :, i] = rhs.evaluate(as_time(t_i), states[i], theta_c)
            inputs.append(ts)
            jacobians.append(d_ts)

    return unflatten(attach_jacobians(states, inputs, jacobians))


def integrate_ode_nonstiff(
    f: Callable[..., Tensor],
    y0: State,
    t0,
    ts: ArrayLike,
    theta: ArrayLike,
    x_r: ArrayLike = (),
    x_i: ArrayLike = (),
    *,
    rtol: float = ODE_RTOL,
    atol: float = ODE_ATOL,
    max_steps: Optional[int] = ODE_MAX_STEPS,
) -> State:
    """
    Integrate a non-stiff ODE with the Dormand-Prince 5(4) method.

    Parameters
    ----------
    f : callable
        Right-hand side ``f(t, y, theta, x_r, x_i) -> dy/dt`` with
        ``len(dy/dt) == len(y)``.
    y0 : Tensor or TensorDict
        Initial state, shape ``(n,)``. May require grad. A TensorDict of
        leaves is flattened in sorted key order.
    t0 : float or Tensor
        Initial time.
    ts : Tensor or sequence of float
        Output times, non-decreasing, all greater than ``t0``. May require
        grad.
    theta : Tensor or sequence of float
        Parameters, shape ``(p,)``. May require grad.
    x_r : Tensor or sequence of float
        Real data. Must not require grad.
    x_i : Tensor or sequence of int
        Integer data.
    rtol : float, default=1e-6
        Relative tolerance.
    atol : float, default=1e-6
        Absolute tolerance.
    max_steps : int, default=1_000_000
        Maximum number of attempted steps for the whole call.

    Returns
    -------
    Tensor or TensorDict
        States at ``ts``, shape ``(len(ts), n)``. For a TensorDict ``y0`` a
        TensorDict with ``batch_size=[len(ts)]``.

    Raises
    ------
    DimensionMismatchError
        If ``y0`` or ``ts`` is empty, or ``f(t0, y0)`` does not have ``n``
        entries.
    ValueError
        If ``ts`` is unsorted or not after ``t0``, an argument is
        non-finite, or data requires grad.
    EvaluationError
        If ``f`` returns non-finite values.
    IntegrationError
        If the integrator exceeds ``max_steps`` or the step size collapses.

    Notes
    -----
    Gradients come from the forward sensitivity equations integrated
    alongside the state, with the sensitivities included in the error
    control. Only the sensitivities actually needed are integrated.

    Examples
    --------
    >>> import torch
    >>> from torchhof.ordinary_differential_equation import integrate_ode_nonstiff
    >>> def decay(t, y, theta, x_r, x_i):
    ...     return -theta[0] * y
    >>> theta = torch.tensor([0.5], dtype=torch.float64, requires_grad=True)
    >>> y = integrate_ode_nonstiff(
    ...     decay, torch.tensor([1.0], dtype=torch.float64), 0.0, [1.0, 2.0], theta
    ... )
    >>> y[-1].sum().backward()  # d exp(-2 theta) / d theta = -2 exp(-1)
    """
    return _integrate(
        "integrate_ode_nonstiff",
        False,
        f,
        y0,
        t0,
        ts,
        theta,
        x_r,
        x_i,
        rtol,
        atol,
        max_steps,
    )


def integrate_ode_stiff(
    f: Callable[..., Tensor],
    y0: State,
    t0,
    ts: ArrayLike,
    theta: ArrayLike,
    x_r: ArrayLike = (),
    x_i: ArrayLike = (),
    *,
    rtol: float = ODE_RTOL,
    atol: float = ODE_ATOL,
    max_steps: Optional[int] = ODE_MAX_STEPS,
) -> State:
    """
    Integrate a stiff ODE with the variable-order BDF method.

    Takes the same arguments and returns the same result as
    :func:`integrate_ode_nonstiff`. The Newton Jacobian ``df/dy`` comes from
    reverse-mode autodiff of ``f``; with sensitivities, the block-diagonal
    approximation ``I - c (I (x) J)`` is used for the augmented system.

    Examples
    --------
    Robertson's chemical kinetics, a classic stiff problem:

    >>> import torch
    >>> from torchhof.ordinary_differential_equation import integrate_ode_stiff
    >>> def robertson(t, y, theta, x_r, x_i):
    ...     k1, k2, k3 = theta
    ...     return torch.stack([
    ...         -k1 * y[0] + k3 * y[1] * y[2],
    ...         k1 * y[0] - k2 * y[1] ** 2 - k3 * y[1] * y[2],
    ...         k2 * y[1] ** 2,
    ...     ])
    >>> y = integrate_ode_stiff(
    ...     robertson,
    ...     torch.tensor([1.0, 0.0, 0.0], dtype=torch.float64),
    ...     0.0,
    ...     [1.0, 10.0, 100.0],
    ...     torch.tensor([0.04, 3e7, 1e4], dtype=torch.float64),
    ... )
    """
    return _integrate(
        "integrate_ode_stiff",
        True,
        f,
        y0,
        t0,
        ts,
        theta,
        x_r,
        x_i,
        rtol,
        atol,
        max_steps,
    )
