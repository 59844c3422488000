"""Differentiable sharded map over rectangular parameter and data blocks."""

from typing import Callable, List, Optional, Sequence, Tuple

import torch
from torch import Tensor

from torchhof.functional import (
    DataBlock,
    FunctionAdapter,
    FunctionContract,
    as_data,
    as_integer_data,
    as_parameter,
    check_finite,
    check_rectangular,
)
from torchhof.functional._values import ArrayLike
from torchhof.map_reduce._concurrency import parallel_execute, resolve_workers

_OPERATION = "map_rect"


def _shard_rows(rows, name: str, n: int) -> Sequence:
    """Check ``rows`` is ``(n, k)`` and return it row-indexable."""
    if isinstance(rows, Tensor):
        if n == 0 and rows.numel() == 0:
            return rows.reshape(0, 0)
        check_rectangular(_OPERATION, name, rows, n)
        return rows
    rows = list(rows)
    check_rectangular(_OPERATION, name, rows, n)
    return rows


class _Shards:
    """Per-shard adapters and the shared evaluation point."""

    def __init__(
        self,
        f: Callable[..., Tensor],
        phi: Tensor,
        thetas: Tensor,
        blocks: List[DataBlock],
        n_workers: int,
    ):
        self.phi = phi.detach()
        self.thetas = thetas.detach()
        self.adapters = [
            FunctionAdapter(f, FunctionContract.SHARD_WORKER, block)
            for block in blocks
        ]
        self.n_workers = n_workers
        self.sizes: List[int] = []

    def _evaluate(self, index: int) -> Tensor:
        with torch.no_grad():
            return self.adapters[index].evaluate(self.phi, self.thetas[index])

    def evaluate(self) -> Tensor:
        outputs = parallel_execute(
            self._evaluate,
            [(n,) for n in range(len(self.adapters))],
            n_workers=self.n_workers,
        )
        self.sizes = [out.shape[0] for out in outputs]
        return torch.cat(outputs)

    def _vjp(self, index: int, cotangent: Tensor) -> Tuple[Tensor, Tensor]:
        return self.adapters[index].vjp(
            self.phi, self.thetas[index], cotangent=cotangent, argnums=(0, 1)
        )

    def vjp(self, grad_output: Tensor) -> Tuple[Tensor, Tensor]:
        cotangents = torch.split(grad_output, self.sizes)
        grads = parallel_execute(
            self._vjp,
            [(n, cotangents[n]) for n in range(len(self.adapters))],
            n_workers=self.n_workers,
        )
        grad_phi = torch.zeros_like(self.phi)
        for g_phi, _ in grads:
            grad_phi = grad_phi + g_phi
        grad_thetas = torch.stack([g_theta for _, g_theta in grads])
        return grad_phi, grad_thetas


class _MapRectVJP(torch.autograd.Function):
    """Autograd for the concatenated shard outputs.

    Each shard's output depends on ``phi`` and its own row of ``thetas``, so
    the backward pass is one vector-Jacobian product per shard: ``grad_phi``
    sums over shards, ``grad_thetas[n]`` comes from shard ``n`` alone.
    """

    @staticmethod
    def forward(ctx, value: Tensor, shards: _Shards, phi: Tensor, thetas: Tensor):
        ctx.shards = shards
        return value.clone()

    @staticmethod
    def backward(ctx, grad_output: Tensor):
        grad_phi, grad_thetas = ctx.shards.vjp(grad_output)
        return (
            None,
            None,
            grad_phi if ctx.needs_input_grad[2] else None,
            grad_thetas if ctx.needs_input_grad[3] else None,
        )


def map_rect(
    f: Callable[..., Tensor],
    phi: ArrayLike,
    thetas,
    x_rs,
    x_is,
    *,
    n_workers: Optional[int] = None,
) -> Tensor:
    """
    Apply ``f`` to every shard and concatenate the results in shard order.

    Parameters
    ----------
    f : callable
        Worker ``f(phi, theta_n, x_r_n, x_i_n) -> Tensor`` of shape
        ``(m_n,)``. Called once per shard, possibly from a worker thread.
    phi : Tensor or sequence of float
        Parameters shared by all shards, shape ``(P,)``. May require grad.
    thetas : Tensor or sequence of sequences
        Per-shard parameters, shape ``(N, K)``. May require grad.
    x_rs : Tensor or sequence of sequences
        Per-shard real data, shape ``(N, R)``. Must not require grad.
    x_is : Tensor or sequence of sequences
        Per-shard integer data, shape ``(N, I)``.
    n_workers : int, optional
        Number of threads. Default: ``TORCHHOF_NUM_THREADS``, otherwise the
        hardware thread count. ``1`` runs serially.

    Returns
    -------
    Tensor
        ``cat([f(phi, thetas[0], ...), ..., f(phi, thetas[N-1], ...)])``.
        Empty when ``N == 0``.

    Raises
    ------
    DimensionMismatchError
        If the three blocks disagree on ``N`` or any of them is ragged.
        Checked before any shard runs.
    ShardError
        If a worker raises; the lowest failing shard index is reported and
        no partial result is returned.
    ValueError
        If parameters are non-finite, data requires grad, or ``n_workers``
        is not a positive integer.

    Notes
    -----
    The shard outputs are independent, so the result is the same for any
    number of workers and any execution order.

    Examples
    --------
    >>> import torch
    >>> from torchhof.map_reduce import map_rect
    >>> def normal_lpdf(phi, theta, x_r, x_i):
    ...     mu, sigma = phi[0] + theta[0], phi[1]
    ...     return (-0.5 * ((x_r - mu) / sigma) ** 2 - torch.log(sigma)).sum().reshape(1)
    >>> phi = torch.tensor([0.0, 1.0], dtype=torch.float64, requires_grad=True)
    >>> thetas = torch.zeros(3, 1, dtype=torch.float64)
    >>> x_rs = torch.randn(3, 10, dtype=torch.float64)
    >>> lp = map_rect(normal_lpdf, phi, thetas, x_rs, [[]] * 3, n_workers=2)
    >>> lp.sum().backward()
    """
    phi = as_parameter(phi, "phi")
    dtype = phi.dtype

    n = len(thetas)
    thetas_rows = _shard_rows(thetas, "thetas", n)
    x_rs_rows = _shard_rows(x_rs, "x_rs", n)
    x_is_rows = _shard_rows(x_is, "x_is", n)

    if n == 0:
        return torch.empty(0, dtype=dtype)

    if isinstance(thetas_rows, Tensor):
        thetas_t = thetas_rows.to(dtype)
        check_finite(_OPERATION, "thetas", thetas_t)
    else:
        thetas_t = torch.stack(
            [
                as_parameter(row, f"thetas[{i}]", dtype).to(dtype)
                for i, row in enumerate(thetas_rows)
            ]
        )
    blocks = [
        DataBlock(
            as_data(x_rs_rows[i], f"x_rs[{i}]", dtype).to(dtype),
            as_integer_data(x_is_rows[i], f"x_is[{i}]"),
        )
        for i in range(n)
    ]

    shards = _Shards(f, phi, thetas_t, blocks, resolve_workers(n_workers, n))
    value = shards.evaluate()

    if torch.is_grad_enabled() and (phi.requires_grad or thetas_t.requires_grad):
        return _MapRectVJP.apply(value, shards, phi, thetas_t)
    return value
