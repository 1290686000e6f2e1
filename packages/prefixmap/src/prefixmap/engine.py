"""Batch traversal engine.

Turns a paginated key listing into per-key work with one of two
scheduling policies:

- sequential (visit, fold, concatenate): key k+1 starts only after key k's
  store call and user function have settled.
- pooled (parallel visit, transform, filter): keys are admitted in listing
  order into a pool of at most `concurrency_limit` outstanding tasks.

On the first failure a pooled traversal stops admitting keys, waits for
tasks already in flight to settle, then raises that failure.
"""

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Any, TypeVar

from loguru import logger

from prefixmap.aggregator import ErrorAggregator, TraversalRun, TraversalState, classify, user_error
from prefixmap.context import TraversalContext
from prefixmap.datatypes import Key, Location, ObjectRecord
from prefixmap.errors import BatchError, ConfigurationError
from prefixmap.listing import KeySequence
from prefixmap.operations import (
    AnyOperation,
    Concatenate,
    Filter,
    Fold,
    OperationKind,
    ParallelVisit,
    Transform,
    UserFunction,
    Visit,
)
from prefixmap.protocols import KeyLister, ObjectClient
from prefixmap.retry import RetryPolicy

T = TypeVar("T")


class BatchEngine:
    """Runs batch operations against a key lister and an object client."""

    __slots__ = ("_client", "_lister", "_retry")

    def __init__(
        self,
        lister: KeyLister,
        client: ObjectClient,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._lister = lister
        self._client = client
        self._retry = retry or RetryPolicy()

    def key_sequence(self, context: TraversalContext) -> KeySequence:
        """Lazy key sequence for the context's source and listing bounds."""
        return KeySequence(
            self._lister,
            context.require_source(),
            self._retry,
            start_after=context.start_after,
            end_key=context.end_key,
            max_keys=context.max_keys,
            exclude=context.exclude,
        )

    async def keys(self, context: TraversalContext) -> list[Key]:
        """List the keys a traversal with this context would visit."""
        context.validate_for_run()
        try:
            return await self.key_sequence(context).collect()
        except Exception as e:
            error = classify(e, None)
            if error is e:
                raise
            raise error from e

    async def run(self, context: TraversalContext, operation: AnyOperation) -> Any:
        """Execute one operation to completion and return its result."""
        run = TraversalRun(operation.kind)
        try:
            source = context.validate_for_run()
            _check_output(context, operation.kind)
        except BatchError as e:
            run.abort(e)
            raise

        logger.info(
            "Starting {kind} over {source} (limit={limit}, output={output})",
            kind=str(operation.kind),
            source=str(source),
            limit=context.concurrency_limit,
            output=str(context.output) if context.output else None,
        )
        run.move(TraversalState.LISTING)
        keys = self.key_sequence(context)
        limit = context.concurrency_limit
        try:
            match operation:
                case Visit():
                    result = await self._visit(context, operation, keys, run)
                case ParallelVisit():
                    handler = self._visit_one(context, operation.fn)
                    result = await self._pool(keys, run, handler, limit)
                case Transform():
                    handler = self._transform_one(context, operation)
                    result = await self._pool(keys, run, handler, limit)
                case Filter():
                    handler = self._filter_one(context, operation)
                    result = await self._pool(keys, run, handler, limit)
                case Fold():
                    result = await self._fold(context, operation, keys, run)
                case Concatenate():
                    result = await self._concatenate(context, operation, keys, run)
                case _:
                    msg = f"Unsupported operation {operation!r}"
                    raise ConfigurationError(msg)
        except BatchError as e:
            run.abort(e)
            raise
        except Exception as e:
            error = classify(e, None)
            run.abort(error)
            raise error from e
        run.complete()
        return result

    # Sequential algorithms

    async def _visit(
        self,
        context: TraversalContext,
        operation: Visit,
        keys: KeySequence,
        run: TraversalRun,
    ) -> None:
        async with aclosing(keys.__aiter__()) as stream:
            async for key in stream:
                run.dispatch()
                record = await self._fetch(context, key)
                run.move(TraversalState.AWAITING)
                await self._call(operation.fn, key, record)
                run.settle()

    async def _fold(
        self,
        context: TraversalContext,
        operation: Fold,
        keys: KeySequence,
        run: TraversalRun,
    ) -> Any:
        accumulator = operation.seed
        started = operation.has_seed
        async with aclosing(keys.__aiter__()) as stream:
            async for key in stream:
                run.dispatch()
                record = await self._fetch(context, key)
                run.move(TraversalState.AWAITING)
                if started:
                    accumulator = await self._call(operation.fn, key, accumulator, record.content)
                else:
                    accumulator = record.content
                    started = True
                run.settle()
        if not started:
            msg = "Cannot fold an empty listing without a seed"
            raise ConfigurationError(msg)
        return accumulator

    async def _concatenate(
        self,
        context: TraversalContext,
        operation: Concatenate,
        keys: KeySequence,
        run: TraversalRun,
    ) -> str | bytes:
        parts: list[Any] = []
        async with aclosing(keys.__aiter__()) as stream:
            async for key in stream:
                run.dispatch()
                record = await self._fetch(context, key)
                run.move(TraversalState.AWAITING)
                parts.append(record.content)
                run.settle()
        return _join(parts, operation.delimiter, context.encoding or "utf-8")

    # Pooled algorithms

    async def _pool(
        self,
        keys: KeySequence,
        run: TraversalRun,
        handler: Callable[[Key], Awaitable[None]],
        limit: int | None,
    ) -> None:
        aggregator = ErrorAggregator()
        slots = asyncio.Semaphore(limit) if limit is not None else None
        in_flight: set[asyncio.Task[None]] = set()

        async def worker(key: Key) -> None:
            try:
                await handler(key)
            except Exception as e:  # noqa: BLE001
                aggregator.record(e, key)
            finally:
                run.settle()
                if slots is not None:
                    slots.release()

        try:
            try:
                async with aclosing(keys.__aiter__()) as stream:
                    async for key in stream:
                        if slots is not None:
                            run.move(TraversalState.AWAITING)
                            await slots.acquire()
                        if aggregator.failed:
                            if slots is not None:
                                slots.release()
                            break
                        run.dispatch()
                        task = asyncio.create_task(worker(key), name=f"prefixmap:{key}")
                        in_flight.add(task)
                        task.add_done_callback(in_flight.discard)
            except Exception as e:  # noqa: BLE001
                aggregator.record(e, None)
            run.move(TraversalState.AWAITING)
            if in_flight:
                await asyncio.gather(*in_flight)
        except asyncio.CancelledError:
            pending = list(in_flight)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise
        aggregator.raise_if_failed()

    def _visit_one(
        self,
        context: TraversalContext,
        fn: UserFunction,
    ) -> Callable[[Key], Awaitable[None]]:
        async def handle(key: Key) -> None:
            record = await self._fetch(context, key)
            await self._call(fn, key, record)

        return handle

    def _transform_one(
        self,
        context: TraversalContext,
        operation: Transform,
    ) -> Callable[[Key], Awaitable[None]]:
        codec = context.codec()

        async def handle(key: Key) -> None:
            record = await self._fetch(context, key)
            result = await self._call(operation.fn, key, record.content)
            try:
                data = codec.encode(result, key)
            except Exception as e:
                raise user_error(e, key) from e
            location, target = context.target_key(key)
            await self._store(lambda: self._client.write(location, target, data), key)
            logger.debug("Transformed {key} -> {target}", key=key, target=target)

        return handle

    def _filter_one(
        self,
        context: TraversalContext,
        operation: Filter,
    ) -> Callable[[Key], Awaitable[None]]:
        source = context.require_source()

        async def handle(key: Key) -> None:
            record = await self._fetch(context, key)
            keep = bool(await self._call(operation.predicate, key, record.content))
            if context.output is not None:
                if keep:
                    location, target = context.target_key(key)
                    await self._store(
                        lambda: self._client.copy(source, key, location, target),
                        key,
                    )
            elif not keep:
                await self._store(lambda: self._client.remove(source, key), key)
            logger.debug("Filtered {key}: keep={keep}", key=key, keep=keep)

        return handle

    # Per-key primitives

    async def _fetch(self, context: TraversalContext, key: Key) -> ObjectRecord:
        source = context.require_source()
        data = await self._store(lambda: self._client.fetch(source, key), key)
        try:
            content = context.codec().decode(data, key)
        except Exception as e:
            raise user_error(e, key) from e
        return ObjectRecord(key=key, content=content)

    async def _store(self, call: Callable[[], Awaitable[T]], key: Key) -> T:
        try:
            return await self._retry.call(call, key=key)
        except Exception as e:
            error = classify(e, key)
            if error is e:
                raise
            raise error from e

    @staticmethod
    async def _call(fn: UserFunction, key: Key, *args: Any) -> Any:
        try:
            return await fn.invoke(*args)
        except Exception as e:
            raise user_error(e, key) from e


def _check_output(context: TraversalContext, kind: OperationKind) -> None:
    """Reject redirect targets that would feed back into the source listing."""
    if context.output is None or not kind.mutating:
        return
    source = context.require_source()
    output = context.output
    if output.bucket == source.bucket and output.prefix.startswith(source.prefix):
        msg = f"Output location {output} lies inside source location {source}"
        raise ConfigurationError(msg)


def _join(parts: list[Any], delimiter: str | bytes, encoding: str) -> str | bytes:
    if all(isinstance(part, str) for part in parts):
        sep = delimiter.decode(encoding) if isinstance(delimiter, bytes) else delimiter
        return sep.join(parts)
    if all(isinstance(part, bytes) for part in parts):
        sep_bytes = delimiter if isinstance(delimiter, bytes) else delimiter.encode(encoding)
        return sep_bytes.join(parts)
    msg = "Concatenate requires all contents to be text or all to be bytes"
    raise ConfigurationError(msg)
