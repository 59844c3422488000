"""Double-exponential (tanh-sinh family) quadrature rules.

All three rules substitute ``x = phi(t)`` with a change of variables whose
weights decay double-exponentially in ``|t|``, then apply the trapezoidal
rule in ``t``. Halving the step ``h`` only adds the odd multiples of ``h``,
so each level reuses every previous function value.

- tanh-sinh on ``[a, b]``: ``x = c + r * tanh(pi/2 sinh t)``
- exp-sinh on ``[a, inf)``: ``x = a + exp(pi/2 sinh t)``
- sinh-sinh on ``(-inf, inf)``: ``x = sinh(pi/2 sinh t)``
"""

import enum
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

import torch
from torch import Tensor

from torchhof._logger import torchhof_logger
from torchhof.functional import EvaluationError

MAX_LEVELS = 15
MIN_LEVELS = 3

# Nodes with |t| below this must evaluate finite; beyond it a non-finite
# value truncates the rule on that side instead.
_T_FAR = 3.0


class Transform(enum.Enum):
    TANH_SINH = "tanh_sinh"
    EXP_SINH = "exp_sinh"
    SINH_SINH = "sinh_sinh"


@dataclass(frozen=True)
class Interval:
    """One integration range and the rule applied to it.

    Attributes
    ----------
    transform : Transform
        Quadrature rule.
    lo, hi : float
        Bounds, possibly infinite.
    complement : bool
        Whether the integrand receives the distance to the nearest endpoint
        as ``xc``; otherwise ``xc`` is NaN.
    """

    transform: Transform
    lo: float
    hi: float
    complement: bool = True


def split_at_zero(a: float, b: float) -> List[Interval]:
    """Choose rules for ``[a, b]``, splitting ranges that contain zero.

    ``(-inf, inf)`` is handled whole by sinh-sinh. Any other range that
    contains zero in its interior is split there so that neither piece
    straddles the origin.
    """
    if a == b:
        return []
    complement = math.isfinite(a) and math.isfinite(b)
    tanh_sinh, exp_sinh = Transform.TANH_SINH, Transform.EXP_SINH
    if math.isinf(a) and math.isinf(b):
        return [Interval(Transform.SINH_SINH, a, b, False)]
    if math.isinf(b):
        if a < 0:
            return [Interval(tanh_sinh, a, 0.0, False), Interval(exp_sinh, 0.0, b, False)]
        return [Interval(exp_sinh, a, b, False)]
    if math.isinf(a):
        if b > 0:
            return [Interval(exp_sinh, a, 0.0, False), Interval(tanh_sinh, 0.0, b, False)]
        return [Interval(exp_sinh, a, b, False)]
    if a < 0 < b:
        return [Interval(tanh_sinh, a, 0.0, complement), Interval(tanh_sinh, 0.0, b, complement)]
    return [Interval(tanh_sinh, a, b, complement)]


def t_max(transform: Transform, dtype: torch.dtype) -> float:
    """Largest ``|t|`` before the abscissas or weights leave the float range."""
    finfo = torch.finfo(dtype)
    if transform is Transform.TANH_SINH:
        # 1 - |x| = 2 exp(-2u) / (1 + exp(-2u)) reaches the smallest normal
        u = 0.5 * math.log(2.0 / finfo.tiny)
    else:
        u = 0.9 * math.log(finfo.max)
    return math.asinh(2.0 * u / math.pi)


def abscissas_and_weights(
    interval: Interval, t: Tensor
) -> Tuple[Tensor, Tensor, Tensor]:
    """Map trapezoid points ``t`` to ``(x, xc, w)`` on ``interval``.

    For tanh-sinh, ``xc`` is ``a - x`` for ``t < 0`` and ``b - x`` for
    ``t >= 0``, computed directly from ``1 - |tanh(u)|`` so that nodes near an
    endpoint keep full relative precision in ``xc``.
    """
    u = 0.5 * math.pi * torch.sinh(t)
    dudt = 0.5 * math.pi * torch.cosh(t)
    lo, hi = interval.lo, interval.hi
    if interval.transform is Transform.TANH_SINH:
        radius = 0.5 * (hi - lo)
        cosh_u = torch.cosh(u)
        distance = radius * torch.exp(-torch.abs(u)) / cosh_u
        right = t >= 0
        x = torch.where(right, hi - distance, lo + distance)
        xc = torch.where(right, distance, -distance)
        w = radius * dudt / cosh_u**2
    elif interval.transform is Transform.EXP_SINH:
        e = torch.exp(u)
        if math.isinf(hi):
            x = lo + e
        else:
            x = hi - e
        xc = torch.full_like(t, math.nan)
        w = dudt * e
    else:
        x = torch.sinh(u)
        xc = torch.full_like(t, math.nan)
        w = dudt * torch.cosh(u)
    if not interval.complement:
        xc = torch.full_like(t, math.nan)
    return x, xc, w


def _level_points(
    level: int, lo_t: float, hi_t: float, dtype: torch.dtype, device
) -> Tensor:
    """Trapezoid points new at ``level``, strictly inside ``(lo_t, hi_t)``."""
    if level == 0:
        k = torch.arange(
            math.floor(lo_t) + 1, math.ceil(hi_t), dtype=dtype, device=device
        )
        return k
    h = 2.0**-level
    j_lo = math.floor((lo_t / h - 1) / 2) + 1
    j_hi = math.ceil((hi_t / h - 1) / 2) - 1
    j = torch.arange(j_lo, j_hi + 1, dtype=dtype, device=device)
    return (2 * j + 1) * h


def double_exponential(
    evaluate: Callable[[Tensor, Tensor], Tensor],
    interval: Interval,
    value_shape: Tuple[int, ...],
    *,
    rtol: float,
    dtype: torch.dtype,
    device=None,
    max_levels: int = MAX_LEVELS,
    min_levels: int = MIN_LEVELS,
) -> Tuple[Tensor, float, Dict]:
    """
    Integrate over one interval with level refinement.

    Parameters
    ----------
    evaluate : callable
        ``evaluate(x, xc) -> values`` for a batch of ``m`` nodes, returning
        shape ``(m, *value_shape)``.
    interval : Interval
        Range and rule.
    value_shape : tuple of int
        Shape of one integrand value; ``()`` for a scalar integrand.
    rtol : float
        Relative tolerance with respect to the L1 norm.
    dtype : torch.dtype
        Floating dtype of the nodes.
    device : torch.device, optional
        Device of the nodes.
    max_levels : int
        Maximum number of levels, the first with ``h = 1``.
    min_levels : int
        Levels always computed before testing convergence.

    Returns
    -------
    value : Tensor
        Integral estimate, shape ``value_shape``.
    error : float
        ``max |I_L - I_{L-1}|`` at the final level.
    info : dict
        ``levels``, ``n_evaluations``, ``l1_norm`` and ``converged``.

    Raises
    ------
    EvaluationError
        If the integrand is not finite at a node with ``|t| < 3``.

    Notes
    -----
    With a complement, nodes are skipped only where ``xc`` is zero; a node
    whose abscissa rounds onto an endpoint is still evaluated through its
    nonzero ``xc``. Without one, nodes whose abscissa rounds onto a finite
    endpoint are skipped. A non-finite value far out
    in a tail (``|t| >= 3``) truncates the rule at that point on that side.
    """
    limit = t_max(interval.transform, dtype)
    lo_t, hi_t = -limit, limit

    ts: List[Tensor] = []
    terms: List[Tensor] = []
    previous = None
    error = math.inf
    n_evaluations = 0
    value = torch.zeros(value_shape, dtype=dtype, device=device)
    l1_norm = 0.0
    converged = False
    level = 0

    for level in range(max_levels):
        t = _level_points(level, lo_t, hi_t, dtype, device)
        x, xc, w = abscissas_and_weights(interval, t)
        if interval.complement:
            keep = torch.isfinite(x) & (xc != 0)
        else:
            keep = torch.isfinite(x) & (x != interval.lo) & (x != interval.hi)
        t, x, xc, w = t[keep], x[keep], xc[keep], w[keep]

        if t.numel():
            values = evaluate(x, xc)
            n_evaluations += t.numel()
            term = w.reshape(-1, *([1] * len(value_shape))) * values
            finite = torch.isfinite(term.reshape(t.numel(), -1)).all(dim=1)
            if not bool(finite.all()):
                bad = t[~finite]
                near = ~finite & (torch.abs(t) < _T_FAR)
                if bool(near.any()):
                    raise EvaluationError(
                        f"integrand returned non-finite values at "
                        f"x={x[near].tolist()} on "
                        f"[{interval.lo}, {interval.hi}]"
                    )
                if bool((bad > 0).any()):
                    hi_t = min(hi_t, bad[bad > 0].min().item())
                if bool((bad < 0).any()):
                    lo_t = max(lo_t, bad[bad < 0].max().item())
                term = torch.where(
                    finite.reshape(-1, *([1] * len(value_shape))),
                    term,
                    torch.zeros_like(term),
                )
            ts.append(t)
            terms.append(term)

        h = 2.0**-level
        if ts:
            all_t = torch.cat(ts)
            all_terms = torch.cat(terms)
            inside = (all_t > lo_t) & (all_t < hi_t)
            all_terms = all_terms[inside]
            value = h * all_terms.sum(dim=0)
            l1_norm = h * torch.abs(all_terms).sum(dim=0).max().item() if all_terms.numel() else 0.0

        if previous is not None:
            error = torch.abs(value - previous).max().item() if value.numel() else 0.0
            if level + 1 >= min_levels and error <= rtol * l1_norm:
                converged = True
                break
        previous = value

    torchhof_logger.debug(
        "%s on [%s, %s]: %d levels, %d evaluations, error %.3e, converged=%s",
        interval.transform.value,
        interval.lo,
        interval.hi,
        level + 1,
        n_evaluations,
        error,
        converged,
    )
    info = {
        "levels": level + 1,
        "n_evaluations": n_evaluations,
        "l1_norm": l1_norm,
        "converged": converged,
    }
    return value, error, info
