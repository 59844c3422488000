"""Thread pool execution of independent shards."""

import contextvars
import os
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional, Sequence, Tuple

from torchhof._logger import torchhof_logger
from torchhof.map_reduce._exceptions import ShardError

NUM_THREADS_ENV = "TORCHHOF_NUM_THREADS"


def _int_env(name: str) -> Optional[int]:
    """Read a positive integer from an environment variable.

    Returns ``None`` when the variable is unset, empty, not an integer or not
    positive.
    """
    v = os.getenv(name)
    if not v:
        return None
    try:
        i = int(v)
    except ValueError:
        return None
    return i if i > 0 else None


def _detect_hw_threads() -> int:
    """Hardware thread count, capped by the usual BLAS/OpenMP hints."""
    hints = [
        _int_env("OMP_NUM_THREADS"),
        _int_env("MKL_NUM_THREADS"),
        _int_env("OPENBLAS_NUM_THREADS"),
        _int_env("VECLIB_MAXIMUM_THREADS"),
        _int_env("NUMEXPR_NUM_THREADS"),
    ]
    env_cap = min([h for h in hints if h is not None], default=None)
    hw = os.cpu_count() or 1
    return max(1, min(hw, env_cap) if env_cap else hw)


def resolve_workers(n_workers: Optional[int], n_tasks: int) -> int:
    """
    Decide how many threads run ``n_tasks`` shards.

    Parameters
    ----------
    n_workers : int, optional
        Requested worker count. ``None`` reads ``TORCHHOF_NUM_THREADS`` and
        falls back to the hardware thread count.
    n_tasks : int
        Number of shards; never more workers than shards are used.

    Returns
    -------
    int
        Worker count, at least 1.

    Raises
    ------
    ValueError
        If ``n_workers`` is given and is not a positive integer.
    """
    if n_workers is None:
        requested = _int_env(NUM_THREADS_ENV)
        source = NUM_THREADS_ENV
        if requested is None:
            requested = _detect_hw_threads()
            source = "hardware"
    else:
        if isinstance(n_workers, bool) or not isinstance(n_workers, int):
            raise ValueError(f"n_workers must be an int, got {n_workers!r}")
        if n_workers < 1:
            raise ValueError(f"n_workers must be positive, got {n_workers}")
        requested = n_workers
        source = "argument"
    workers = max(1, min(requested, n_tasks))
    torchhof_logger.debug(
        "map_rect: %d workers for %d shards (from %s)", workers, n_tasks, source
    )
    return workers


def parallel_execute(
    worker: Callable[..., Any],
    arg_tuples: Sequence[Tuple[Any, ...]],
    *,
    n_workers: int = 1,
) -> List[Any]:
    """
    Run ``worker(*args)`` for each tuple, returning results in input order.

    Parameters
    ----------
    worker : callable
        Function applied to each argument tuple.
    arg_tuples : sequence of tuple
        One argument tuple per shard.
    n_workers : int
        Thread count; ``1`` runs serially in the calling thread.

    Returns
    -------
    list
        ``[worker(*args) for args in arg_tuples]``.

    Raises
    ------
    ShardError
        For the lowest-index shard that raised, chained to its exception.
        Shards not yet started are cancelled; running shards are allowed to
        finish before the error propagates.
    """
    if n_workers <= 1:
        results = []
        for index, args in enumerate(arg_tuples):
            try:
                results.append(worker(*args))
            except Exception as exc:
                raise ShardError(index, exc) from exc
        return results

    with ThreadPoolExecutor(max_workers=n_workers) as ex:
        futures = []
        for args in arg_tuples:
            # Each task gets its own copy of the current context
            ctx = contextvars.copy_context()
            futures.append(ex.submit(ctx.run, worker, *args))
        _, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in pending:
            future.cancel()
    # Leaving the executor joins every running shard

    for index, future in enumerate(futures):
        if future.cancelled():
            continue
        exc = future.exception()
        if exc is not None:
            raise ShardError(index, exc) from exc
    return [future.result() for future in futures]
