"""Error types for traversal and store operations."""

from enum import StrEnum
from typing import final


class ErrorKind(StrEnum):
    """Classification of traversal errors."""

    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    RETRY_EXHAUSTED = "retry_exhausted"
    PROVIDER = "provider"
    USER_FUNCTION = "user_function"
    CONFIGURATION = "configuration"


class BatchError(Exception):
    """Base error for all traversal operations."""

    __slots__ = ("key", "kind", "message", "source")

    default_kind: ErrorKind = ErrorKind.PROVIDER

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        key: str | None = None,
        source: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.key = key
        self.source = source

    def __repr__(self) -> str:
        name = type(self).__name__
        return f"{name}({self.message!r}, kind={self.kind!r}, key={self.key!r})"

    def with_key(self, key: str) -> "BatchError":
        """Attach the key being processed if the error does not carry one yet."""
        if self.key is None:
            self.key = key
        return self


@final
class TransientStoreError(BatchError):
    """Retryable store failure (throttling, timeouts, 5xx)."""

    default_kind = ErrorKind.TRANSIENT


@final
class PermanentStoreError(BatchError):
    """Non-retryable store failure, or a transient one that ran out of retries."""

    default_kind = ErrorKind.PROVIDER


@final
class UserFunctionError(BatchError):
    """Exception raised by a caller-supplied function."""

    default_kind = ErrorKind.USER_FUNCTION


@final
class ConfigurationError(BatchError):
    """Invalid traversal configuration, detected before or instead of any I/O."""

    default_kind = ErrorKind.CONFIGURATION
