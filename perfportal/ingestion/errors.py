from __future__ import annotations


class JtlProcessingError(RuntimeError):
    """Base class for failures that abort a whole JTL parse."""

    def __init__(self, message: str, *, rows_processed: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.rows_processed = rows_processed


class FileTooLargeError(JtlProcessingError):
    """Raised before parsing when the upload exceeds the configured byte limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"File size {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class UnsupportedFormatError(JtlProcessingError):
    """Raised when the file extension or declared format is not a JTL format."""


class MalformedInputError(JtlProcessingError):
    """Raised when the file cannot be parsed at the container level."""


__all__ = [
    "FileTooLargeError",
    "JtlProcessingError",
    "MalformedInputError",
    "UnsupportedFormatError",
]
