"""Data types that flow through the traversal engine.

- `Location` for a bucket and key prefix
- `ListingPage` for one page of a key listing
- `ObjectRecord` for a key paired with its decoded content
"""

from typing import Any, TypeAlias

from pydantic import BaseModel, Field

Key: TypeAlias = str
"""Opaque object key, ordered lexicographically by the store."""


class Location(BaseModel, frozen=True):
    """A bucket and key prefix scoping a listing."""

    bucket: str
    """Bucket name (S3 bucket, GCS bucket, Azure container)."""

    prefix: str = ""
    """Key prefix; every key under this location starts with it."""

    def relative_key(self, key: Key) -> str:
        """Strip this location's prefix from a full key."""
        if self.prefix and key.startswith(self.prefix):
            return key[len(self.prefix) :]
        return key

    def resolve(self, relative: str) -> Key:
        """Turn a relative key into a full key under this location."""
        return f"{self.prefix}{relative}"

    def __str__(self) -> str:
        return f"{self.bucket}/{self.prefix}"


class ListingPage(BaseModel, frozen=True):
    """One page of a marker-paginated key listing."""

    keys: tuple[Key, ...] = ()
    """Keys on this page, in listing order."""

    next_marker: Key | None = None
    """Marker for the next request; the last key of this page."""

    truncated: bool = False
    """Whether more pages follow."""


class ObjectRecord(BaseModel, frozen=True, arbitrary_types_allowed=True):
    """An object key paired with its decoded content."""

    key: Key
    """Full key of the object."""

    content: Any = Field(default=None)
    """Content decoded by the traversal's transformer."""
