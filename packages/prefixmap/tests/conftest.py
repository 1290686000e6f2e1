"""Shared fixtures for prefixmap tests."""

import pytest

from prefixmap import PrefixCollection, RetryPolicy
from prefixmap.providers.memory import MemoryParams, MemoryStore

BUCKET = "data"


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore(MemoryParams(page_size=2))
    store.put_many(
        BUCKET,
        {
            "in/a": "1",
            "in/b": "2",
            "in/c": "3",
            "other/z": "untouched",
        },
    )
    return store


@pytest.fixture
def retry() -> RetryPolicy:
    return RetryPolicy.immediate(max_attempts=3)


@pytest.fixture
def collection(store: MemoryStore, retry: RetryPolicy) -> PrefixCollection:
    return PrefixCollection(store, retry=retry)

