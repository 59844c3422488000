"""Exceptions for sharded map-reduce."""

from torchhof.functional import TorchHOFError


class ShardError(TorchHOFError):
    """A shard's worker function raised.

    The original exception is chained as ``__cause__`` and also kept on
    ``cause``.

    Attributes
    ----------
    shard_index : int
        Index of the failing shard; the lowest such index among the shards
        that ran.
    cause : BaseException
        The exception raised by the worker.
    """

    def __init__(self, shard_index: int, cause: BaseException):
        super().__init__(
            f"map_rect: shard {shard_index} failed with "
            f"{type(cause).__name__}: {cause}"
        )
        self.shard_index = shard_index
        self.cause = cause
