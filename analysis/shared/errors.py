"""
Error taxonomy for Matrix Python agents.
"""


class MatrixError(Exception):
    """Base class for all agent errors."""


class SourceError(MatrixError):
    """A price source could not be reached or returned unusable data."""

    def __init__(
        self,
        source: str,
        message: str,
        status_code: int | None = None,
        timed_out: bool = False,
    ):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message
        self.status_code = status_code
        self.timed_out = timed_out


class SinkError(MatrixError):
    """A snapshot could not be persisted."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class PriceValidationError(MatrixError, ValueError):
    """A fetched record violates the price data invariants."""
