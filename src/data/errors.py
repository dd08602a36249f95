"""Exception types raised by the offline cache layer."""

from typing import Optional


class OfflineCacheError(Exception):
    """Base class for all offline cache failures."""


class StorageError(OfflineCacheError):
    """Raised when the local store cannot be read or written."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class MigrationError(OfflineCacheError):
    """Raised when a schema migration step fails.

    ``version`` is the target version of the step that failed; the store is
    left at ``version - 1``.
    """

    def __init__(self, version: int, message: str, cause: Optional[Exception] = None):
        self.version = version
        self.cause = cause
        super().__init__(f"[v{version}] {message}")


class NetworkError(OfflineCacheError):
    """Raised when the remote API cannot be reached or answers with an error."""

    def __init__(
        self,
        source: str,
        message: str,
        cause: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        self.source = source
        self.cause = cause
        self.status_code = status_code
        super().__init__(f"[{source}] {message}")
