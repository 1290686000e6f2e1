"""Retry policy for store calls.

Transient store failures are retried with backoff; everything else
propagates untouched. Exhausting the budget turns the last transient
failure into a PermanentStoreError.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_none,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from prefixmap.errors import ErrorKind, PermanentStoreError, TransientStoreError

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE = 0.2
DEFAULT_BACKOFF_MAX = 20.0


class RetryPolicy:
    """Injectable retry policy on top of tenacity's AsyncRetrying.

    Args:
        max_attempts: Total attempts per call, including the first.
        backoff: tenacity wait strategy; full-jitter exponential by default.
        sleep: Coroutine used to wait between attempts.
    """

    __slots__ = ("backoff", "max_attempts", "sleep")

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: wait_base | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {max_attempts}"
            raise ValueError(msg)
        self.max_attempts = max_attempts
        self.backoff = backoff or wait_random_exponential(
            multiplier=DEFAULT_BACKOFF_BASE,
            max=DEFAULT_BACKOFF_MAX,
        )
        self.sleep = sleep

    @classmethod
    def immediate(cls, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> "RetryPolicy":
        """Policy that retries without waiting."""
        return cls(max_attempts=max_attempts, backoff=wait_none())

    @staticmethod
    def _log_retry(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "Transient store failure, retrying (attempt {attempt}): {error}",
            attempt=state.attempt_number,
            error=error,
        )

    async def call(self, fn: Callable[[], Awaitable[T]], key: str | None = None) -> T:
        """Run `fn`, retrying TransientStoreError within the budget."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.backoff,
            retry=retry_if_exception_type(TransientStoreError),
            sleep=self.sleep,
            before_sleep=self._log_retry,
        )
        result: T
        try:
            async for attempt in retrying:
                with attempt:
                    result = await fn()
        except RetryError as e:
            last = e.last_attempt.exception()
            msg = f"Retry budget of {self.max_attempts} attempts exhausted: {last}"
            raise PermanentStoreError(
                msg,
                kind=ErrorKind.RETRY_EXHAUSTED,
                key=key or getattr(last, "key", None),
                source=last,
            ) from last
        return result
