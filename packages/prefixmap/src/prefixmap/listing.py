"""Lazy, restartable key sequence over a paginated listing."""

from collections.abc import AsyncIterator, Callable

from loguru import logger

from prefixmap.aggregator import user_error
from prefixmap.datatypes import Key, ListingPage, Location
from prefixmap.protocols import KeyLister
from prefixmap.retry import RetryPolicy


class KeySequence:
    """Every key under a location, one listing page in memory at a time.

    Each `async for` starts a fresh listing, so the sequence can be
    consumed more than once. Page requests go through the retry policy.
    """

    __slots__ = (
        "_end_key",
        "_exclude",
        "_lister",
        "_location",
        "_max_keys",
        "_retry",
        "_start_after",
    )

    def __init__(
        self,
        lister: KeyLister,
        location: Location,
        retry: RetryPolicy | None = None,
        *,
        start_after: Key | None = None,
        end_key: Key | None = None,
        max_keys: int | None = None,
        exclude: Callable[[Key], bool] | None = None,
    ) -> None:
        self._lister = lister
        self._location = location
        self._retry = retry or RetryPolicy()
        self._start_after = start_after
        self._end_key = end_key
        self._max_keys = max_keys
        self._exclude = exclude

    async def pages(self) -> AsyncIterator[ListingPage]:
        """Yield raw listing pages until the listing is no longer truncated."""
        marker = self._start_after
        page_number = 0
        while True:
            page = await self._retry.call(
                lambda marker=marker: self._lister.list_page(self._location, marker),
            )
            page_number += 1
            logger.debug(
                "Listed page {page} of {location}: {count} keys, truncated={truncated}",
                page=page_number,
                location=str(self._location),
                count=len(page.keys),
                truncated=page.truncated,
            )
            yield page
            if not page.truncated:
                return
            next_marker = page.next_marker or (page.keys[-1] if page.keys else None)
            if next_marker is None or next_marker == marker:
                logger.warning(
                    "Listing of {location} reported truncation without advancing; stopping",
                    location=str(self._location),
                )
                return
            marker = next_marker

    async def __aiter__(self) -> AsyncIterator[Key]:
        yielded = 0
        last: Key | None = self._start_after
        if self._max_keys == 0:
            return
        async for page in self.pages():
            for key in page.keys:
                if last is not None and key <= last:
                    logger.warning("Dropping out-of-order or repeated key {key}", key=key)
                    continue
                last = key
                if self._end_key is not None and key > self._end_key:
                    return
                if self._excluded(key):
                    continue
                yield key
                yielded += 1
                if self._max_keys is not None and yielded >= self._max_keys:
                    return

    def _excluded(self, key: Key) -> bool:
        if self._exclude is None:
            return False
        try:
            return bool(self._exclude(key))
        except Exception as e:
            raise user_error(e, key) from e

    async def collect(self) -> list[Key]:
        """Materialize the whole sequence."""
        return [key async for key in self]
