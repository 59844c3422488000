"""Binding of user callables to the fixed function contracts."""

import enum
from typing import Callable, Optional, Tuple

import torch
from torch import Tensor

from torchhof.functional._differentiation import (
    Argnums,
    compute_jacobian,
    compute_vjp,
)
from torchhof.functional._exceptions import EvaluationError
from torchhof.functional._values import DataBlock


class FunctionContract(enum.Enum):
    """Call signature and output shape of a user function.

    The value of each member is ``(leading arguments, scalar output)``; the
    data block ``(x_r, x_i)`` is always appended after the leading arguments.
    """

    ALGEBRAIC_SYSTEM = (("y", "theta"), False)
    ODE_RHS = (("t", "y", "theta"), False)
    INTEGRAND = (("x", "xc", "theta"), True)
    SHARD_WORKER = (("phi", "theta"), False)

    @property
    def arguments(self) -> Tuple[str, ...]:
        return self.value[0]

    @property
    def scalar_output(self) -> bool:
        return self.value[1]


class FunctionAdapter:
    """A user callable bound to its contract and data block.

    Parameters
    ----------
    fn : callable
        User function. Called as ``fn(*varying, x_r, x_i)`` where ``varying``
        are the contract's leading arguments.
    contract : FunctionContract
        Role of the function.
    data : DataBlock
        Data-only arguments, fixed for the lifetime of the adapter.
    output_size : int, optional
        Required output length for vector contracts.
    name : str, optional
        Name used in error messages. Defaults to ``fn.__name__``.

    Examples
    --------
    >>> import torch
    >>> from torchhof.functional import DataBlock, FunctionAdapter, FunctionContract
    >>> def system(y, theta, x_r, x_i):
    ...     return y - theta * x_r
    >>> data = DataBlock.from_arrays([2.0], [], dtype=torch.float64)
    >>> g = FunctionAdapter(system, FunctionContract.ALGEBRAIC_SYSTEM, data)
    >>> y = torch.tensor([1.0], dtype=torch.float64)
    >>> theta = torch.tensor([3.0], dtype=torch.float64)
    >>> g.evaluate(y, theta)
    tensor([-5.], dtype=torch.float64)
    """

    def __init__(
        self,
        fn: Callable[..., Tensor],
        contract: FunctionContract,
        data: DataBlock,
        *,
        output_size: Optional[int] = None,
        name: Optional[str] = None,
    ):
        if not callable(fn):
            raise TypeError(f"expected a callable, got {type(fn).__name__}")
        self.fn = fn
        self.contract = contract
        self.data = data
        self.output_size = output_size
        self.name = name or getattr(fn, "__name__", type(fn).__name__)

    def __repr__(self) -> str:
        return (
            f"FunctionAdapter({self.name}, {self.contract.name}, "
            f"output_size={self.output_size})"
        )

    def _check_arity(self, varying: Tuple) -> None:
        expected = len(self.contract.arguments)
        if len(varying) != expected:
            raise TypeError(
                f"{self.contract.name} takes {expected} leading arguments "
                f"{self.contract.arguments}, got {len(varying)}"
            )

    def raw(self, *varying: Tensor) -> Tensor:
        """Call the user function without output checks.

        This is the form handed to ``torch.func`` transforms.
        """
        out = self.fn(*varying, self.data.x_r, self.data.x_i)
        if not isinstance(out, Tensor):
            out = torch.as_tensor(out, dtype=self.data.x_r.dtype)
        return out

    def check_output(self, out: Tensor) -> Tensor:
        """Validate the shape and finiteness of an output.

        Raises
        ------
        EvaluationError
            If the output is not finite or has the wrong shape.
        """
        if self.contract.scalar_output:
            if out.numel() != 1:
                raise EvaluationError(
                    f"{self.name}: {self.contract.name} must return a scalar, "
                    f"got shape {tuple(out.shape)}"
                )
            out = out.reshape(())
        else:
            if out.dim() != 1:
                raise EvaluationError(
                    f"{self.name}: {self.contract.name} must return a vector, "
                    f"got shape {tuple(out.shape)}"
                )
            if self.output_size is not None and out.shape[0] != self.output_size:
                raise EvaluationError(
                    f"{self.name}: expected output of size {self.output_size}, "
                    f"got {out.shape[0]}"
                )
        if not torch.isfinite(out.detach()).all():
            raise EvaluationError(
                f"{self.name}: {self.contract.name} returned non-finite values "
                f"{out.detach().tolist()}"
            )
        return out

    def evaluate(self, *varying: Tensor) -> Tensor:
        """Evaluate the bound function and check its output."""
        self._check_arity(varying)
        return self.check_output(self.raw(*varying))

    def evaluate_with_jacobian(
        self, *varying: Tensor, argnums: Argnums = 0
    ) -> Tuple[Tensor, Tuple[Tensor, ...]]:
        """Evaluate the function and its Jacobians w.r.t. ``argnums``.

        Jacobians come from reverse-mode autodiff through the user function,
        never from finite differences.
        """
        self._check_arity(varying)
        out, jacobians = compute_jacobian(self.raw, varying, argnums=argnums)
        self.check_output(out)
        if self.contract.scalar_output:
            out = out.reshape(())
        return out, jacobians

    def vjp(
        self, *varying: Tensor, cotangent: Tensor, argnums: Argnums = 0
    ) -> Tuple[Tensor, ...]:
        """Vector-Jacobian products of the function w.r.t. ``argnums``."""
        self._check_arity(varying)
        return compute_vjp(self.raw, varying, cotangent, argnums=argnums)
