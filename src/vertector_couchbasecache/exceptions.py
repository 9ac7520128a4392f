"""
Exception hierarchy for the Couchbase cache adapter.

Fatal errors (malformed connection strings, wrong argument shapes, an
unsupported SDK) are raised from resolution and construction. Per-key store
failures are never raised out of batch operations; they are aggregated into
batch results instead.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class CouchbaseCacheError(Exception):
    """
    Base exception for Couchbase cache errors.

    Wraps underlying SDK exceptions with additional context and ensures
    proper logging.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        """
        Initialize cache error.

        Args:
            message: Human-readable error message
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.original_error = original_error
        self.message = message

        if original_error:
            logger.error(
                f"{self.__class__.__name__}: {message}",
                exc_info=original_error,
                extra={
                    "error_type": type(original_error).__name__,
                    "error_message": str(original_error)
                }
            )
        else:
            logger.error(f"{self.__class__.__name__}: {message}")

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (caused by {type(self.original_error).__name__}: {self.original_error})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, original_error={self.original_error!r})"


class MalformedDescriptorError(CouchbaseCacheError, ValueError):
    """
    Raised when a connection string does not match the descriptor grammar:

        couchbase[s]://[user:pass@]host[:port]/bucket[/scope/collection][?opt=v&...]

    Resolution stops at the first malformed descriptor; nothing is partially
    resolved.
    """

    def __init__(self, message: str, dsn: str | None = None, original_error: Exception | None = None):
        self.dsn = dsn
        super().__init__(message, original_error)


class InvalidArgumentKindError(CouchbaseCacheError, TypeError):
    """Raised when the server specification is neither a string nor a list of strings."""

    def __init__(self, message: str, received: Any = None):
        self.received_type = type(received).__name__
        super().__init__(message)


class UnsupportedBackendError(CouchbaseCacheError):
    """
    Raised when the installed Couchbase SDK is missing or outside the
    supported version range.

    Always raised before any network activity.
    """

    def __init__(self, message: str = "Couchbase SDK >= 3.0.0 < 4.0.0 is required.", detected_version: str | None = None):
        self.detected_version = detected_version
        if detected_version:
            message = f"{message} (detected {detected_version})"
        super().__init__(message)


class CacheKeyError(CouchbaseCacheError, ValueError):
    """Raised when a cache key or namespace is empty or contains reserved characters."""

    def __init__(self, message: str, key: Any = None):
        self.key = key
        super().__init__(message)


class CacheConfigurationError(CouchbaseCacheError):
    """
    Raised when the cache is misconfigured in a way pydantic cannot catch,
    for example a password secret that cannot be resolved.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message, original_error)
