"""Tolerance configuration for the numerical operations."""

import math
from dataclasses import dataclass, replace
from typing import Optional

ALGEBRAIC_RTOL = 1e-6
ALGEBRAIC_FTOL = 1e-6
ODE_RTOL = 1e-6
ODE_ATOL = 1e-6
ODE_MAX_STEPS = 1_000_000
QUADRATURE_RTOL = 1e-8


def default_max_steps(n: int) -> int:
    """Default step budget for the algebraic solver of an ``n``-dim system."""
    return 100 * (n + 1)


@dataclass(frozen=True)
class Tolerances:
    """Numeric knobs for one solve.

    Fields left as ``None`` are not used by the operation.

    Attributes
    ----------
    rtol : float, optional
        Relative tolerance.
    atol : float, optional
        Absolute tolerance.
    ftol : float, optional
        Tolerance on the residual norm.
    max_steps : int, optional
        Iteration or step budget.
    """

    rtol: Optional[float] = None
    atol: Optional[float] = None
    ftol: Optional[float] = None
    max_steps: Optional[int] = None

    @classmethod
    def algebraic(cls, n: int, **overrides) -> "Tolerances":
        base = cls(
            rtol=ALGEBRAIC_RTOL,
            ftol=ALGEBRAIC_FTOL,
            max_steps=default_max_steps(n),
        )
        return base.with_overrides(**overrides)

    @classmethod
    def ode(cls, **overrides) -> "Tolerances":
        base = cls(rtol=ODE_RTOL, atol=ODE_ATOL, max_steps=ODE_MAX_STEPS)
        return base.with_overrides(**overrides)

    @classmethod
    def quadrature(cls, **overrides) -> "Tolerances":
        return cls(rtol=QUADRATURE_RTOL).with_overrides(**overrides)

    def with_overrides(self, **overrides) -> "Tolerances":
        """Return a copy with the non-``None`` overrides applied."""
        given = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **given)

    def validate(self, operation: str) -> "Tolerances":
        """Check every configured knob.

        Raises
        ------
        ValueError
            If a tolerance is not finite and positive, or ``max_steps`` is not
            a positive integer.
        """
        for field in ("rtol", "atol", "ftol"):
            value = getattr(self, field)
            if value is None:
                continue
            if not math.isfinite(value) or value <= 0:
                raise ValueError(
                    f"{operation}: {field} must be finite and positive, "
                    f"got {value}"
                )
        if self.max_steps is not None:
            if isinstance(self.max_steps, bool) or not isinstance(
                self.max_steps, int
            ):
                raise ValueError(
                    f"{operation}: max_steps must be an int, "
                    f"got {self.max_steps!r}"
                )
            if self.max_steps <= 0:
                raise ValueError(
                    f"{operation}: max_steps must be positive, "
                    f"got {self.max_steps}"
                )
        return self
