"""Batch operations and the user-function strategy they carry."""

import inspect
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Final, TypeAlias, final

from pydantic import BaseModel

from prefixmap.context import FunctionMode


class _Unset:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset()
"""Sentinel for an omitted fold seed; None is a valid seed."""


@final
class UserFunction:
    """A caller-supplied callable tagged with its invocation mode.

    Synchronous and asynchronous functions are invoked the same way:
    `await fn.invoke(*args)`.
    """

    __slots__ = ("fn", "mode")

    def __init__(self, fn: Callable[..., Any], mode: FunctionMode = FunctionMode.AUTO) -> None:
        if not callable(fn):
            msg = f"Expected a callable, got {type(fn).__name__}"
            raise TypeError(msg)
        if mode is FunctionMode.AUTO and inspect.iscoroutinefunction(fn):
            mode = FunctionMode.ASYNC
        self.fn = fn
        self.mode = mode

    @classmethod
    def wrap(
        cls,
        fn: "Callable[..., Any] | UserFunction",
        is_async: bool | None = None,
        default: FunctionMode = FunctionMode.AUTO,
    ) -> "UserFunction":
        if isinstance(fn, UserFunction):
            return fn
        if is_async is None:
            return cls(fn, default)
        return cls(fn, FunctionMode.ASYNC if is_async else FunctionMode.SYNC)

    async def invoke(self, *args: Any) -> Any:
        result = self.fn(*args)
        if self.mode is FunctionMode.SYNC:
            return result
        if self.mode is FunctionMode.ASYNC or inspect.isawaitable(result):
            return await result
        return result

    def __repr__(self) -> str:
        name = getattr(self.fn, "__qualname__", repr(self.fn))
        return f"UserFunction({name}, mode={self.mode})"


class OperationKind(StrEnum):
    VISIT = "visit"
    PARALLEL_VISIT = "parallel_visit"
    TRANSFORM = "transform"
    FOLD = "fold"
    FILTER = "filter"
    CONCATENATE = "concatenate"

    @property
    def sequential(self) -> bool:
        return self in (OperationKind.VISIT, OperationKind.FOLD, OperationKind.CONCATENATE)

    @property
    def mutating(self) -> bool:
        return self in (OperationKind.TRANSFORM, OperationKind.FILTER)


class BatchOperation(BaseModel, frozen=True, arbitrary_types_allowed=True):
    """Base for the operation variants."""

    kind: OperationKind


class Visit(BatchOperation, frozen=True):
    """Sequential visit; `fn(record)` per key."""

    kind: OperationKind = OperationKind.VISIT
    fn: UserFunction


class ParallelVisit(BatchOperation, frozen=True):
    """Concurrent visit; `fn(record)` per key."""

    kind: OperationKind = OperationKind.PARALLEL_VISIT
    fn: UserFunction


class Transform(BatchOperation, frozen=True):
    """Write `fn(content)` to the destructive or redirected key."""

    kind: OperationKind = OperationKind.TRANSFORM
    fn: UserFunction


class Fold(BatchOperation, frozen=True):
    """Sequential reduction; `fn(accumulator, content)` per key."""

    kind: OperationKind = OperationKind.FOLD
    fn: UserFunction
    seed: Any = UNSET

    @property
    def has_seed(self) -> bool:
        return self.seed is not UNSET


class Filter(BatchOperation, frozen=True):
    """Keep keys where `predicate(content)` is truthy."""

    kind: OperationKind = OperationKind.FILTER
    predicate: UserFunction


class Concatenate(BatchOperation, frozen=True):
    """Join every content with `delimiter`."""

    kind: OperationKind = OperationKind.CONCATENATE
    delimiter: str | bytes = ""


AnyOperation: TypeAlias = Visit | ParallelVisit | Transform | Fold | Filter | Concatenate
