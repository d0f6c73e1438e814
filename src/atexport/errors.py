"""Exceptions raised by the export pipeline.

Per-block and per-item problems are counted and logged where they happen; only the
exceptions below cross module boundaries.
"""


class AtExportError(Exception):
    """Base exception for all export errors."""


class CarFormatError(AtExportError):
    """The archive framing cannot be read (truncated varint, header or block)."""

    def __init__(self, message: str, offset: int | None = None):
        if offset is not None:
            message = f"{message} (at byte {offset})"
        super().__init__(message)
        self.offset = offset


class ExportCancelled(AtExportError):
    """Raised at a cancellation checkpoint once the user cancelled the job."""

    def __init__(self, message: str = "Export cancelled by user"):
        super().__init__(message)


class FetchError(AtExportError):
    """One fetch attempt failed.

    Attributes:
        status: HTTP status code, or None for network errors and timeouts
        retryable: Whether another attempt may succeed
    """

    def __init__(self, message: str, status: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class RateLimitedError(FetchError):
    """The server answered 429; retry_after carries its hint in seconds, if any."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status=429, retryable=True)
        self.retry_after = retry_after


class NoSaveTargetError(AtExportError):
    """Neither an interactive save location nor a fallback directory is available."""


class RepositoryFetchError(AtExportError):
    """The repository or its blob listing could not be retrieved."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class BundleSaveError(AtExportError):
    """A bundle could not be written to its chosen location."""
