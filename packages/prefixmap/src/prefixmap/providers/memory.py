"""In-memory provider for tests and local runs.

Implements KeyLister and ObjectClient over a dict of buckets. Listing
follows the same marker contract as S3: keys sorted lexicographically,
pages of at most `page_size` keys, each page starting after the marker.
"""

import asyncio
from bisect import bisect_right
from collections import Counter
from collections.abc import Mapping
from typing import ClassVar, Self

from pydantic import BaseModel

from prefixmap.datatypes import Key, ListingPage, Location
from prefixmap.errors import ErrorKind, PermanentStoreError, TransientStoreError
from prefixmap.params import ObjectParams


class MemoryCredentials(BaseModel, frozen=True):
    """Credentials for the in-memory store (none are needed)."""


class MemoryParams(ObjectParams, frozen=True):
    """Parameters for the in-memory store.

    Inherits `bucket`, `page_size` and `content_type` from ObjectParams.
    """

    latency: float = 0.0
    """Seconds each store call sleeps, to make interleaving observable."""


class MemoryStore:
    """Thread-unsafe, event-loop-safe object store held in memory."""

    __slots__: ClassVar[tuple[str, ...]] = (
        "_buckets",
        "_failures",
        "_in_flight",
        "_params",
        "calls",
        "max_in_flight",
    )

    def __init__(self, params: MemoryParams | None = None) -> None:
        self._params = params or MemoryParams()
        self._buckets: dict[str, dict[Key, bytes]] = {}
        self._failures: dict[tuple[str, Key], list[Exception]] = {}
        self._in_flight = 0
        self.max_in_flight = 0
        self.calls: Counter[str] = Counter()

    @classmethod
    async def connect(cls, credentials: MemoryCredentials, params: MemoryParams) -> Self:
        """Create an empty store."""
        return cls(params)

    async def disconnect(self) -> None:
        """Nothing to release."""

    # Seeding and inspection

    def put_many(self, bucket: str, objects: Mapping[Key, bytes | str]) -> None:
        target = self._buckets.setdefault(bucket, {})
        for key, value in objects.items():
            target[key] = value.encode() if isinstance(value, str) else bytes(value)

    def snapshot(self, bucket: str, prefix: str = "") -> dict[Key, bytes]:
        """Copy of every object under `bucket/prefix`."""
        objects = self._buckets.get(bucket, {})
        return {key: objects[key] for key in sorted(objects) if key.startswith(prefix)}

    def fail(self, op: str, key: Key, *errors: Exception) -> None:
        """Queue errors raised by the next calls of `op` on `key`, in order."""
        self._failures.setdefault((op, key), []).extend(errors)

    async def _enter(self, op: str, key: Key, *, counted: bool = True) -> None:
        self.calls[op] += 1
        if counted:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self._params.latency:
                await asyncio.sleep(self._params.latency)
            else:
                await asyncio.sleep(0)
            queued = self._failures.get((op, key))
            if queued:
                raise queued.pop(0)
        except BaseException:
            if counted:
                self._in_flight -= 1
            raise

    def _leave(self) -> None:
        self._in_flight -= 1

    def _bucket(self, location: Location) -> dict[Key, bytes]:
        try:
            return self._buckets[location.bucket]
        except KeyError:
            msg = f"Bucket '{location.bucket}' not found"
            raise PermanentStoreError(msg, kind=ErrorKind.NOT_FOUND) from None

    # KeyLister

    async def list_page(self, location: Location, marker: Key | None = None) -> ListingPage:
        # Listing runs beside object calls and is left out of the in-flight count.
        await self._enter("list", marker or "", counted=False)
        objects = self._bucket(location)
        ordered = sorted(key for key in objects if key.startswith(location.prefix))
        start = bisect_right(ordered, marker) if marker is not None else 0
        keys = tuple(ordered[start : start + self._params.page_size])
        truncated = start + len(keys) < len(ordered)
        return ListingPage(
            keys=keys,
            next_marker=keys[-1] if truncated and keys else None,
            truncated=truncated,
        )

    # ObjectClient

    async def fetch(self, location: Location, key: Key) -> bytes:
        await self._enter("fetch", key)
        try:
            objects = self._bucket(location)
            if key not in objects:
                msg = f"Object '{key}' not found"
                raise PermanentStoreError(msg, kind=ErrorKind.NOT_FOUND, key=key)
            return objects[key]
        finally:
            self._leave()

    async def write(self, location: Location, key: Key, data: bytes) -> None:
        await self._enter("write", key)
        try:
            self._buckets.setdefault(location.bucket, {})[key] = bytes(data)
        finally:
            self._leave()

    async def copy(self, src: Location, src_key: Key, dst: Location, dst_key: Key) -> None:
        await self._enter("copy", src_key)
        try:
            objects = self._bucket(src)
            if src_key not in objects:
                msg = f"Object '{src_key}' not found"
                raise PermanentStoreError(msg, kind=ErrorKind.NOT_FOUND, key=src_key)
            self._buckets.setdefault(dst.bucket, {})[dst_key] = objects[src_key]
        finally:
            self._leave()

    async def remove(self, location: Location, key: Key) -> None:
        await self._enter("remove", key)
        try:
            self._bucket(location).pop(key, None)
        finally:
            self._leave()


def transient(message: str = "SlowDown") -> TransientStoreError:
    """Convenience for queueing throttling failures with `MemoryStore.fail`."""
    return TransientStoreError(message)


Provider = MemoryStore
