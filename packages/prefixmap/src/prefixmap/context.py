"""Traversal context and content transformers.

A TraversalContext is an immutable value. Every builder call returns a
new context, so two traversals never share mutable configuration.
"""

from collections.abc import Callable
from enum import StrEnum
from typing import Any, Protocol, Self, runtime_checkable

from pydantic import BaseModel

from prefixmap.datatypes import Key, Location
from prefixmap.errors import ConfigurationError

DEFAULT_ENCODING = "utf-8"


class FunctionMode(StrEnum):
    """How a user function is invoked."""

    AUTO = "auto"
    """Inspect the callable and await its result if it is awaitable."""

    SYNC = "sync"
    """Call directly; the result is used as-is."""

    ASYNC = "async"
    """Call and await the returned awaitable."""


@runtime_checkable
class Transformer(Protocol):
    """Decodes fetched bytes into content and encodes content for writes."""

    def decode(self, data: bytes, key: Key) -> Any: ...

    def encode(self, content: Any, key: Key) -> bytes: ...


class TextTransformer:
    """Decode and encode content as text in a fixed encoding."""

    __slots__ = ("encoding",)

    def __init__(self, encoding: str = DEFAULT_ENCODING) -> None:
        self.encoding = encoding

    def decode(self, data: bytes, key: Key) -> str:
        return data.decode(self.encoding)

    def encode(self, content: Any, key: Key) -> bytes:
        if isinstance(content, str):
            return content.encode(self.encoding)
        if isinstance(content, bytes | bytearray | memoryview):
            return bytes(content)
        msg = f"Cannot write {type(content).__name__} content for '{key}' as text"
        raise TypeError(msg)


class BytesTransformer:
    """Pass raw bytes through untouched."""

    __slots__ = ()

    def decode(self, data: bytes, key: Key) -> bytes:
        return data

    def encode(self, content: Any, key: Key) -> bytes:
        if isinstance(content, bytes | bytearray | memoryview):
            return bytes(content)
        msg = f"Cannot write {type(content).__name__} content for '{key}' without an encoding"
        raise TypeError(msg)


class TraversalContext(BaseModel, frozen=True, arbitrary_types_allowed=True):
    """Immutable configuration for one traversal."""

    source: Location | None = None
    """Location whose keys are traversed."""

    output: Location | None = None
    """Redirect target. None means destructive, in-place writes."""

    concurrency_limit: int | None = None
    """Maximum outstanding per-key tasks. None means unbounded."""

    encoding: str | None = DEFAULT_ENCODING
    """Text encoding for content. None hands raw bytes to user functions."""

    transformer: Transformer | None = None
    """Custom decode/encode pair; overrides `encoding` when set."""

    function_mode: FunctionMode = FunctionMode.AUTO
    """Default invocation mode for user functions."""

    start_after: Key | None = None
    """Initial listing marker; only keys after it are traversed."""

    end_key: Key | None = None
    """Inclusive upper bound; listing stops at the first key past it."""

    max_keys: int | None = None
    """Stop after this many keys."""

    exclude: Callable[[Key], bool] | None = None
    """Keys for which this returns True are skipped before any fetch."""

    def with_source(self, bucket: str, prefix: str = "") -> Self:
        """Set the source location, resetting output, limit and listing bounds."""
        return self.model_copy(
            update={
                "source": Location(bucket=bucket, prefix=prefix),
                "output": None,
                "concurrency_limit": None,
                "start_after": None,
                "end_key": None,
                "max_keys": None,
                "exclude": None,
            }
        )

    def with_output(self, bucket: str, prefix: str = "") -> Self:
        """Redirect results to `bucket/prefix`."""
        return self.model_copy(update={"output": Location(bucket=bucket, prefix=prefix)})

    def in_place(self) -> Self:
        """Clear the output location."""
        return self.model_copy(update={"output": None})

    def with_limit(self, limit: int | None) -> Self:
        """Set the concurrency limit; None means unbounded."""
        if limit is not None:
            _check_limit(limit)
        return self.model_copy(update={"concurrency_limit": limit})

    def with_encoding(self, encoding: str | None) -> Self:
        """Set the text encoding; None means raw bytes."""
        return self.model_copy(update={"encoding": encoding})

    def with_transformer(self, transformer: Transformer | None) -> Self:
        """Set a custom transformer."""
        return self.model_copy(update={"transformer": transformer})

    def with_function_mode(self, mode: FunctionMode) -> Self:
        """Set how user functions are invoked."""
        return self.model_copy(update={"function_mode": mode})

    def with_bounds(
        self,
        start_after: Key | None = None,
        end_key: Key | None = None,
        max_keys: int | None = None,
    ) -> Self:
        """Restrict the listing. Arguments left as None keep their current value."""
        if max_keys is not None and max_keys < 0:
            msg = f"max_keys must be non-negative, got {max_keys}"
            raise ConfigurationError(msg)
        update: dict[str, Any] = {}
        if start_after is not None:
            update["start_after"] = start_after
        if end_key is not None:
            update["end_key"] = end_key
        if max_keys is not None:
            update["max_keys"] = max_keys
        return self.model_copy(update=update)

    def with_exclude(self, predicate: Callable[[Key], bool] | None) -> Self:
        """Set the key exclusion predicate."""
        return self.model_copy(update={"exclude": predicate})

    @property
    def redirected(self) -> bool:
        return self.output is not None

    def codec(self) -> Transformer:
        """Transformer used to decode and encode object content."""
        if self.transformer is not None:
            return self.transformer
        if self.encoding is None:
            return BytesTransformer()
        return TextTransformer(self.encoding)

    def target_key(self, key: Key) -> tuple[Location, Key]:
        """Location and key that results for `key` are written to."""
        source = self.require_source()
        if self.output is None:
            return source, key
        return self.output, self.output.resolve(source.relative_key(key))

    def require_source(self) -> Location:
        if self.source is None:
            msg = "No source location set; call source() before running an operation"
            raise ConfigurationError(msg)
        return self.source

    def validate_for_run(self) -> Location:
        """Check the context before any I/O and return its source."""
        source = self.require_source()
        if self.concurrency_limit is not None:
            _check_limit(self.concurrency_limit)
        if self.max_keys is not None and self.max_keys < 0:
            msg = f"max_keys must be non-negative, got {self.max_keys}"
            raise ConfigurationError(msg)
        return source


def _check_limit(limit: int) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        msg = f"Concurrency limit must be an integer of at least 1, got {limit!r}"
        raise ConfigurationError(msg)
