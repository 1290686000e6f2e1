"""Fluent facade exposing a store prefix as an ordered collection.

Example:
    store = await S3Provider.connect(credentials, params)
    collection = PrefixCollection(store)

    logs = collection.source("my-bucket", "logs/2024/").limit(16)
    await logs.output("my-bucket", "clean/2024/").transform(str.strip)
    total = await logs.fold(lambda acc, text: acc + len(text), seed=0)
"""

from collections.abc import Callable
from typing import Any, Self

from prefixmap.context import FunctionMode, Transformer, TraversalContext
from prefixmap.datatypes import Key
from prefixmap.engine import BatchEngine
from prefixmap.operations import (
    UNSET,
    Concatenate,
    Filter,
    Fold,
    ParallelVisit,
    Transform,
    UserFunction,
    Visit,
)
from prefixmap.protocols import KeyLister, ObjectClient
from prefixmap.retry import RetryPolicy


class Traversal:
    """An engine bound to an immutable traversal context.

    Builder methods return a new Traversal and never modify the receiver,
    so a configured traversal can be shared and reused freely.
    """

    __slots__ = ("_context", "_engine")

    def __init__(self, engine: BatchEngine, context: TraversalContext | None = None) -> None:
        self._engine = engine
        self._context = context or TraversalContext()

    @property
    def context(self) -> TraversalContext:
        return self._context

    def _with(self, context: TraversalContext) -> Self:
        return type(self)(self._engine, context)

    # Configuration

    def source(self, bucket: str, prefix: str = "") -> Self:
        """Traverse keys under `bucket/prefix`; resets output, limit and bounds."""
        return self._with(self._context.with_source(bucket, prefix))

    def output(self, bucket: str, prefix: str = "") -> Self:
        """Redirect transform and filter results instead of mutating the source."""
        return self._with(self._context.with_output(bucket, prefix))

    def in_place(self) -> Self:
        """Write transform and filter results back to the source keys."""
        return self._with(self._context.in_place())

    def limit(self, concurrency: int | None) -> Self:
        """Cap outstanding per-key tasks; None removes the cap."""
        return self._with(self._context.with_limit(concurrency))

    def encoding(self, encoding: str | None) -> Self:
        """Decode content as text in `encoding`; None passes raw bytes."""
        return self._with(self._context.with_encoding(encoding))

    def transformer(self, transformer: Transformer | None) -> Self:
        """Use a custom transformer in place of the encoding-based one."""
        return self._with(self._context.with_transformer(transformer))

    def asynchronous(self) -> Self:
        """Treat user functions as coroutine functions unless told otherwise."""
        return self._with(self._context.with_function_mode(FunctionMode.ASYNC))

    def synchronous(self) -> Self:
        """Call user functions directly unless told otherwise."""
        return self._with(self._context.with_function_mode(FunctionMode.SYNC))

    def start_after(self, key: Key) -> Self:
        """Only list keys that sort after `key`."""
        return self._with(self._context.with_bounds(start_after=key))

    def end_key(self, key: Key) -> Self:
        """Stop listing after `key`, inclusive."""
        return self._with(self._context.with_bounds(end_key=key))

    def max_keys(self, count: int) -> Self:
        """Stop after `count` keys."""
        return self._with(self._context.with_bounds(max_keys=count))

    def exclude(self, predicate: Callable[[Key], bool]) -> Self:
        """Skip keys matching `predicate` before they are fetched."""
        return self._with(self._context.with_exclude(predicate))

    # Operations

    def _fn(self, fn: Callable[..., Any] | UserFunction, is_async: bool | None) -> UserFunction:
        return UserFunction.wrap(fn, is_async, default=self._context.function_mode)

    async def keys(self) -> list[Key]:
        """Keys this traversal would visit, in listing order."""
        return await self._engine.keys(self._context)

    async def visit(self, fn: Callable[..., Any], is_async: bool | None = None) -> None:
        """Call `fn(record)` for each key, one at a time, in listing order."""
        await self._engine.run(self._context, Visit(fn=self._fn(fn, is_async)))

    async def parallel_visit(self, fn: Callable[..., Any], is_async: bool | None = None) -> None:
        """Call `fn(record)` for each key, up to the concurrency limit at once."""
        await self._engine.run(self._context, ParallelVisit(fn=self._fn(fn, is_async)))

    async def transform(self, fn: Callable[..., Any], is_async: bool | None = None) -> None:
        """Replace (or redirect) each object's content with `fn(content)`."""
        await self._engine.run(self._context, Transform(fn=self._fn(fn, is_async)))

    async def fold(
        self,
        fn: Callable[..., Any],
        seed: Any = UNSET,
        is_async: bool | None = None,
    ) -> Any:
        """Reduce contents in listing order with `fn(accumulator, content)`."""
        return await self._engine.run(
            self._context,
            Fold(fn=self._fn(fn, is_async), seed=seed),
        )

    async def filter(self, predicate: Callable[..., Any], is_async: bool | None = None) -> None:
        """Delete (or skip copying) objects whose content fails `predicate`."""
        await self._engine.run(self._context, Filter(predicate=self._fn(predicate, is_async)))

    async def concatenate(self, delimiter: str | bytes = "") -> str | bytes:
        """Join every object's content with `delimiter`, in listing order."""
        return await self._engine.run(self._context, Concatenate(delimiter=delimiter))

    def __repr__(self) -> str:
        ctx = self._context
        return f"Traversal(source={ctx.source}, output={ctx.output}, limit={ctx.concurrency_limit})"


class PrefixCollection(Traversal):
    """Entry point: a traversal with no source set yet.

    `store` must implement both KeyLister and ObjectClient; pass `lister`
    to list keys through a different collaborator.
    """

    __slots__ = ()

    def __init__(
        self,
        store: ObjectClient,
        *,
        lister: KeyLister | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        key_lister = lister if lister is not None else store
        if not isinstance(key_lister, KeyLister):
            msg = f"{type(key_lister).__name__} does not implement list_page()"
            raise TypeError(msg)
        super().__init__(BatchEngine(key_lister, store, retry))

    def _with(self, context: TraversalContext) -> Traversal:  # type: ignore[override]
        return Traversal(self._engine, context)
