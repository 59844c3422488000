"""Flattening of structured ODE states.

An ODE state may be given as a TensorDict of named leaves; the integrators
work on one flat vector, and trajectories are restored to a TensorDict with
a leading time dimension.
"""

from typing import Callable, List, Tuple, Union

import torch
from tensordict import TensorDict


def flatten_state(
    y: Union[torch.Tensor, TensorDict],
) -> Tuple[
    torch.Tensor, Callable[[torch.Tensor], Union[torch.Tensor, TensorDict]]
]:
    """
    Flatten a Tensor or unbatched TensorDict state to a 1-D tensor.

    Parameters
    ----------
    y : Tensor or TensorDict
        The state. A TensorDict must have an empty batch size.

    Returns
    -------
    flat : Tensor
        Flattened state, shape (n,). Leaves are concatenated in sorted key
        order, so gradients flow from ``flat`` back to each leaf.
    unflatten : callable
        Restores the structure from a flat tensor. An input of shape
        ``(T, n)`` gives a TensorDict with ``batch_size=(T,)``.
    """
    if isinstance(y, torch.Tensor):
        return y, lambda flat: flat

    if tuple(y.batch_size) != ():
        raise ValueError(
            f"ODE state TensorDict must be unbatched, got batch_size "
            f"{tuple(y.batch_size)}"
        )

    y_flat_keys = y.flatten_keys(separator=".")
    flat_keys = sorted(y_flat_keys.keys())

    shapes: List[Tuple[str, Tuple[int, ...]]] = []
    flat_parts = []
    for key in flat_keys:
        leaf = y_flat_keys[key]
        shapes.append((key, tuple(leaf.shape)))
        flat_parts.append(leaf.reshape(-1))

    flat = torch.cat(flat_parts)

    def unflatten_tensordict(flat_tensor: torch.Tensor) -> TensorDict:
        leading = flat_tensor.shape[:-1]
        flat_td = TensorDict({}, batch_size=leading)
        offset = 0
        for key, shape in shapes:
            numel = 1
            for s in shape:
                numel *= s
            flat_td[key] = flat_tensor[..., offset : offset + numel].reshape(
                *leading, *shape
            )
            offset += numel
        return flat_td.unflatten_keys(separator=".")

    return flat, unflatten_tensordict
