"""Parameter (dual) and data (plain) values.

A parameter is a floating tensor that may take part in autograd. Data is a
floating or integer tensor that never does. The split is checked once, when a
value enters the library, rather than inspected during a solve.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import torch
from torch import Tensor

ArrayLike = Union[Tensor, Sequence[float], Sequence[int], float, int]


def _floating_dtype(x, dtype: Optional[torch.dtype] = None) -> torch.dtype:
    if isinstance(x, Tensor) and x.dtype.is_floating_point:
        return x.dtype
    return dtype if dtype is not None else torch.get_default_dtype()


def is_dual(x) -> bool:
    """Return True if ``x`` carries derivative information."""
    return isinstance(x, Tensor) and x.requires_grad


def as_parameter(
    x: ArrayLike, name: str = "theta", dtype: Optional[torch.dtype] = None
) -> Tensor:
    """Convert ``x`` to a 1-D floating parameter tensor.

    Autograd history is preserved, so a tensor with ``requires_grad=True``
    stays a dual value.

    Parameters
    ----------
    x : Tensor or sequence of float
        Parameter values.
    name : str
        Argument name used in error messages.
    dtype : torch.dtype, optional
        Floating dtype for values that are not already floating tensors.
        Defaults to the global default dtype.

    Returns
    -------
    Tensor
        Shape ``(n,)``.

    Raises
    ------
    ValueError
        If ``x`` has more than one dimension or non-finite entries.
    """
    if isinstance(x, Tensor):
        out = x if x.dtype.is_floating_point else x.to(_floating_dtype(x, dtype))
    else:
        out = torch.as_tensor(x, dtype=_floating_dtype(x, dtype))
    out = out.reshape(-1) if out.dim() == 0 else out
    if out.dim() != 1:
        raise ValueError(
            f"{name} must be one-dimensional, got shape {tuple(out.shape)}"
        )
    if not torch.isfinite(out.detach()).all():
        raise ValueError(f"{name} must be finite, got {out.detach().tolist()}")
    return out


def as_data(
    x: ArrayLike, name: str = "x_r", dtype: Optional[torch.dtype] = None
) -> Tensor:
    """Convert ``x`` to a 1-D floating data tensor.

    Raises
    ------
    ValueError
        If ``x`` requires grad, is not one-dimensional, or is non-finite.
    """
    if is_dual(x):
        raise ValueError(
            f"{name} is data-only and must not carry derivative information"
        )
    if isinstance(x, Tensor):
        out = x.to(_floating_dtype(x, dtype))
    else:
        out = torch.as_tensor(x, dtype=_floating_dtype(x, dtype))
    out = out.reshape(-1) if out.dim() == 0 else out
    if out.dim() != 1:
        raise ValueError(
            f"{name} must be one-dimensional, got shape {tuple(out.shape)}"
        )
    if not torch.isfinite(out).all():
        raise ValueError(f"{name} must be finite, got {out.tolist()}")
    return out


def as_integer_data(x: ArrayLike, name: str = "x_i") -> Tensor:
    """Convert ``x`` to a 1-D ``int64`` data tensor.

    Raises
    ------
    ValueError
        If ``x`` requires grad, is not one-dimensional, or has non-integral
        entries.
    """
    if is_dual(x):
        raise ValueError(
            f"{name} is data-only and must not carry derivative information"
        )
    out = x if isinstance(x, Tensor) else torch.as_tensor(x)
    out = out.reshape(-1) if out.dim() == 0 else out
    if out.dim() != 1:
        raise ValueError(
            f"{name} must be one-dimensional, got shape {tuple(out.shape)}"
        )
    if out.dtype.is_floating_point:
        if out.numel() and not bool((out == torch.round(out)).all()):
            raise ValueError(f"{name} must contain integers only")
    return out.to(torch.int64)


@dataclass(frozen=True)
class DataBlock:
    """Real and integer data bound into a user function.

    Attributes
    ----------
    x_r : Tensor
        Real data, shape ``(R,)``.
    x_i : Tensor
        Integer data, shape ``(I,)``, ``int64``.
    """

    x_r: Tensor
    x_i: Tensor

    @classmethod
    def from_arrays(
        cls,
        x_r: ArrayLike = (),
        x_i: ArrayLike = (),
        *,
        dtype: Optional[torch.dtype] = None,
    ) -> "DataBlock":
        real = as_data(x_r, "x_r", dtype)
        if dtype is not None:
            real = real.to(dtype)
        return cls(real, as_integer_data(x_i, "x_i"))
