"""Differentiation utilities built on ``torch.func``."""

from typing import Callable, Sequence, Tuple, Union

import torch
from torch import Tensor

Argnums = Union[int, Tuple[int, ...]]


def _as_tuple(argnums: Argnums) -> Tuple[int, ...]:
    return (argnums,) if isinstance(argnums, int) else tuple(argnums)


def compute_jacobian(
    f: Callable[..., Tensor],
    args: Sequence[Tensor],
    *,
    argnums: Argnums = 0,
) -> Tuple[Tensor, Tuple[Tensor, ...]]:
    """Evaluate a function and its Jacobians in a single reverse pass.

    Parameters
    ----------
    f : Callable[..., Tensor]
        Function of ``len(args)`` tensors returning a tensor of shape ``(m,)``
        (or a scalar).
    args : sequence of Tensor
        Point of evaluation. Arguments are detached first, so no autograd
        history leaks out of the call.
    argnums : int or tuple of int
        Positions of the arguments to differentiate with respect to.

    Returns
    -------
    tuple[Tensor, tuple[Tensor, ...]]
        - **output** -- ``f(*args)``.
        - **jacobians** -- one Jacobian per entry of ``argnums``. For an
          argument of shape ``(n,)`` and output ``(m,)`` the Jacobian has
          shape ``(m, n)``; for a scalar output it has shape ``(n,)``.
    """
    argnums = _as_tuple(argnums)
    detached = tuple(a.detach() for a in args)

    def with_aux(*a: Tensor) -> Tuple[Tensor, Tensor]:
        out = f(*a)
        return out, out

    jacobians, output = torch.func.jacrev(
        with_aux, argnums=argnums, has_aux=True
    )(*detached)
    return output, tuple(jacobians)


def compute_vjp(
    f: Callable[..., Tensor],
    args: Sequence[Tensor],
    cotangent: Tensor,
    *,
    argnums: Argnums = 0,
) -> Tuple[Tensor, ...]:
    """Vector-Jacobian products ``cotangent @ df/dargs[i]`` for ``argnums``.

    Non-differentiated arguments are closed over, so only the requested
    products are formed.
    """
    argnums = _as_tuple(argnums)
    detached = [a.detach() for a in args]

    def partial(*selected: Tensor) -> Tensor:
        full = list(detached)
        for i, value in zip(argnums, selected):
            full[i] = value
        return f(*full)

    _, vjp_fn = torch.func.vjp(partial, *(detached[i] for i in argnums))
    return tuple(vjp_fn(cotangent))
