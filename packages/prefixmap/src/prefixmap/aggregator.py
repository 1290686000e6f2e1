"""Failure classification and traversal state tracking.

Every per-key failure passes through an ErrorAggregator. It turns raw
exceptions into the BatchError taxonomy, keeps the first fatal one, and
tells the dispatcher to stop admitting new keys.
"""

from enum import StrEnum

from loguru import logger

from prefixmap.datatypes import Key
from prefixmap.errors import (
    BatchError,
    ErrorKind,
    PermanentStoreError,
    TransientStoreError,
    UserFunctionError,
)
from prefixmap.operations import OperationKind


class TraversalState(StrEnum):
    CONFIGURING = "configuring"
    LISTING = "listing"
    DISPATCHING = "dispatching"
    AWAITING = "awaiting"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TRANSITIONS: dict[TraversalState, frozenset[TraversalState]] = {
    TraversalState.CONFIGURING: frozenset({TraversalState.LISTING, TraversalState.ABORTED}),
    TraversalState.LISTING: frozenset(
        {
            TraversalState.DISPATCHING,
            TraversalState.AWAITING,
            TraversalState.COMPLETED,
            TraversalState.ABORTED,
        }
    ),
    TraversalState.DISPATCHING: frozenset(
        {TraversalState.AWAITING, TraversalState.LISTING, TraversalState.ABORTED}
    ),
    TraversalState.AWAITING: frozenset(
        {
            TraversalState.DISPATCHING,
            TraversalState.LISTING,
            TraversalState.COMPLETED,
            TraversalState.ABORTED,
        }
    ),
    TraversalState.COMPLETED: frozenset(),
    TraversalState.ABORTED: frozenset(),
}


def classify(error: BaseException, key: Key | None) -> BatchError:
    """Map any exception raised while processing `key` onto the taxonomy."""
    if isinstance(error, TransientStoreError):
        # Only reaches here when a caller bypassed the retry policy.
        wrapped = PermanentStoreError(
            f"Transient failure escaped retries: {error.message}",
            kind=ErrorKind.RETRY_EXHAUSTED,
            key=error.key or key,
            source=error,
        )
        wrapped.__cause__ = error
        return wrapped
    if isinstance(error, BatchError):
        return error.with_key(key) if key is not None else error
    wrapped = PermanentStoreError(
        f"Unexpected store failure: {error}",
        kind=ErrorKind.PROVIDER,
        key=key,
        source=error,
    )
    wrapped.__cause__ = error
    return wrapped


def user_error(error: Exception, key: Key | None) -> UserFunctionError:
    wrapped = UserFunctionError(
        f"User function failed on '{key}': {error}",
        key=key,
        source=error,
    )
    wrapped.__cause__ = error
    return wrapped


class ErrorAggregator:
    """Collects failures from per-key tasks and keeps the first one."""

    __slots__ = ("_first", "failures")

    def __init__(self) -> None:
        self._first: BatchError | None = None
        self.failures: list[BatchError] = []

    @property
    def failed(self) -> bool:
        return self._first is not None

    @property
    def first(self) -> BatchError | None:
        return self._first

    def record(self, error: BaseException, key: Key | None) -> BatchError:
        batch_error = classify(error, key)
        self.failures.append(batch_error)
        if self._first is None:
            self._first = batch_error
        else:
            logger.debug(
                "Additional failure after abort on {key}: {error}",
                key=key,
                error=batch_error.message,
            )
        return batch_error

    def raise_if_failed(self) -> None:
        if self._first is not None:
            raise self._first


class TraversalRun:
    """State machine for one traversal.

    Tracks `CONFIGURING -> LISTING -> {DISPATCHING -> AWAITING}* ->
    COMPLETED | ABORTED` and records the key and cause of an abort.
    """

    __slots__ = ("aborted_key", "cause", "dispatched", "kind", "settled", "state")

    def __init__(self, kind: OperationKind) -> None:
        self.kind = kind
        self.state = TraversalState.CONFIGURING
        self.dispatched = 0
        self.settled = 0
        self.aborted_key: Key | None = None
        self.cause: BatchError | None = None

    def move(self, state: TraversalState) -> None:
        if state is self.state:
            return
        if state not in _TRANSITIONS[self.state]:
            msg = f"Illegal traversal transition {self.state} -> {state}"
            raise RuntimeError(msg)
        self.state = state

    def dispatch(self) -> None:
        self.move(TraversalState.DISPATCHING)
        self.dispatched += 1

    def settle(self) -> None:
        self.settled += 1

    def complete(self) -> None:
        self.move(TraversalState.COMPLETED)
        logger.debug(
            "{kind} completed: {count} keys",
            kind=str(self.kind),
            count=self.settled,
        )

    def abort(self, error: BatchError) -> None:
        self.aborted_key = error.key
        self.cause = error
        self.move(TraversalState.ABORTED)
        logger.error(
            "{kind} aborted on key {key}: {error}",
            kind=str(self.kind),
            key=error.key,
            error=error.message,
        )
