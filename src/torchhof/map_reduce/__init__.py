"""
Sharded map-reduce over rectangular parameter and data blocks.

map_rect
    Evaluate a worker once per shard on a thread pool and concatenate the
    results in shard order; gradients by one vector-Jacobian product per
    shard.
resolve_workers, parallel_execute
    Worker count resolution (``TORCHHOF_NUM_THREADS``) and ordered pool
    execution with shard-order error reporting.
ShardError
    Raised when a worker fails, carrying the shard index.
"""

from torchhof.map_reduce._concurrency import parallel_execute, resolve_workers
from torchhof.map_reduce._exceptions import ShardError
from torchhof.map_reduce._map_rect import map_rect

__all__ = [
    "map_rect",
    "parallel_execute",
    "resolve_workers",
    "ShardError",
]
