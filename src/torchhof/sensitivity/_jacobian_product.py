"""Autograd node for outputs whose Jacobians are already known."""

from typing import Sequence

import torch
from torch import Tensor


class JacobianProduct(torch.autograd.Function):
    """Return a precomputed value and backpropagate through given Jacobians.

    For each input ``x_i`` the Jacobian ``J_i`` has shape
    ``(*value.shape, *x_i.shape)`` and the backward pass computes
    ``grad_x_i = tensordot(grad_value, J_i, dims=value.dim())``.
    """

    @staticmethod
    def forward(ctx, value: Tensor, jacobians: Sequence[Tensor], *inputs):
        ctx.value_dim = value.dim()
        ctx.jacobians = tuple(jacobians)
        return value.detach().clone()

    @staticmethod
    def backward(ctx, grad_output: Tensor):
        grads = []
        for needs_grad, jacobian in zip(ctx.needs_input_grad[2:], ctx.jacobians):
            if not needs_grad or jacobian is None:
                grads.append(None)
                continue
            grads.append(
                torch.tensordot(
                    grad_output.to(jacobian.dtype),
                    jacobian,
                    dims=ctx.value_dim,
                )
            )
        return (None, None, *grads)


def attach_jacobians(
    value: Tensor,
    inputs: Sequence[Tensor],
    jacobians: Sequence[Tensor],
) -> Tensor:
    """Wire ``value`` into the autograd graph of ``inputs``.

    Inputs that do not require grad are passed through untouched, so callers
    may supply ``None`` for their Jacobians.
    """
    if len(inputs) != len(jacobians):
        raise ValueError(
            f"got {len(inputs)} inputs but {len(jacobians)} Jacobians"
        )
    if not any(isinstance(x, Tensor) and x.requires_grad for x in inputs):
        return value
    return JacobianProduct.apply(value, tuple(jacobians), *inputs)
