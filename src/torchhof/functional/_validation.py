"""Argument checks run before any numerical work."""

from typing import Sequence

import torch
from torch import Tensor

from torchhof.functional._exceptions import DimensionMismatchError


def check_nonempty(operation: str, name: str, x: Tensor) -> None:
    if x.numel() == 0:
        raise DimensionMismatchError(f"{operation}: {name} has size 0")


def check_size_match(
    operation: str, name_a: str, size_a: int, name_b: str, size_b: int
) -> None:
    if size_a != size_b:
        raise DimensionMismatchError(
            f"{operation}: size of {name_a} ({size_a}) and size of "
            f"{name_b} ({size_b}) must match"
        )


def check_finite(operation: str, name: str, x) -> None:
    values = x.detach() if isinstance(x, Tensor) else torch.as_tensor(x)
    if not torch.isfinite(values).all():
        raise ValueError(f"{operation}: {name} must be finite")


def check_nondecreasing(operation: str, name: str, x: Tensor) -> None:
    values = x.detach()
    if values.numel() > 1 and bool((values[1:] < values[:-1]).any()):
        raise ValueError(f"{operation}: {name} must be sorted")


def check_rectangular(
    operation: str, name: str, rows: Sequence, n_rows: int
) -> None:
    """Check that ``rows`` is a rectangular ``(n_rows, k)`` collection."""
    if len(rows) != n_rows:
        raise DimensionMismatchError(
            f"{operation}: {name} has {len(rows)} rows, expected {n_rows}"
        )
    if isinstance(rows, Tensor):
        if rows.dim() != 2:
            raise DimensionMismatchError(
                f"{operation}: {name} must be two-dimensional, got shape "
                f"{tuple(rows.shape)}"
            )
        return
    widths = {len(row) for row in rows}
    if len(widths) > 1:
        raise DimensionMismatchError(
            f"{operation}: {name} is ragged (row lengths {sorted(widths)})"
        )
