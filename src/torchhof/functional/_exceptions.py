"""Base exception classes shared by every torchhof operation."""


class TorchHOFError(Exception):
    """Base exception for all torchhof errors."""

    pass


class DimensionMismatchError(TorchHOFError, ValueError):
    """Raised when shape or length invariants are violated.

    Always raised before any numerical work begins.
    """

    pass


class EvaluationError(TorchHOFError):
    """Raised when a user function returns a non-finite or wrong-shaped output."""

    pass
