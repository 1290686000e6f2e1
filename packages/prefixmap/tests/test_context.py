"""Tests for traversal configuration."""

import pytest

from prefixmap import (
    ConfigurationError,
    FunctionMode,
    Location,
    PrefixCollection,
    TextTransformer,
    TraversalContext,
)
from prefixmap.context import BytesTransformer
from prefixmap.providers.memory import MemoryStore


class TestTraversalContext:
    def test_builders_return_new_contexts(self):
        base = TraversalContext().with_source("data", "in/")
        limited = base.with_limit(4)

        assert base.concurrency_limit is None
        assert limited.concurrency_limit == 4
        assert limited is not base

    def test_source_resets_output_limit_and_bounds(self):
        ctx = (
            TraversalContext()
            .with_source("data", "in/")
            .with_output("data", "out/")
            .with_limit(3)
            .with_bounds(start_after="in/a", max_keys=2)
            .with_encoding("latin-1")
        )

        reset = ctx.with_source("data", "other/")

        assert reset.source == Location(bucket="data", prefix="other/")
        assert reset.output is None
        assert reset.concurrency_limit is None
        assert reset.start_after is None
        assert reset.max_keys is None
        assert reset.encoding == "latin-1"

    @pytest.mark.parametrize("limit", [0, -1, True, 2.5])
    def test_invalid_limit_is_rejected(self, limit):
        with pytest.raises(ConfigurationError):
            TraversalContext().with_source("data").with_limit(limit)

    def test_negative_max_keys_is_rejected(self):
        with pytest.raises(ConfigurationError):
            TraversalContext().with_bounds(max_keys=-1)

    def test_missing_source(self):
        with pytest.raises(ConfigurationError):
            TraversalContext().validate_for_run()

    def test_target_key_destructive_and_redirected(self):
        ctx = TraversalContext().with_source("data", "in/")

        assert ctx.target_key("in/x/y") == (Location(bucket="data", prefix="in/"), "in/x/y")

        redirected = ctx.with_output("archive", "out/")
        assert redirected.redirected
        assert redirected.target_key("in/x/y") == (
            Location(bucket="archive", prefix="out/"),
            "out/x/y",
        )

    def test_codec_selection(self):
        ctx = TraversalContext()

        assert isinstance(ctx.codec(), TextTransformer)
        assert isinstance(ctx.with_encoding(None).codec(), BytesTransformer)
        custom = TextTransformer("utf-16")
        assert ctx.with_encoding(None).with_transformer(custom).codec() is custom

    def test_bytes_transformer_rejects_text(self):
        with pytest.raises(TypeError):
            BytesTransformer().encode("text", "k")

    def test_text_transformer_rejects_non_text(self):
        codec = TextTransformer()

        assert codec.encode("h\u00e9", "k") == "h\u00e9".encode()
        assert codec.encode(b"raw", "k") == b"raw"
        for content in (None, 3, {"a": 1}):
            with pytest.raises(TypeError):
                codec.encode(content, "k")


class TestTraversalBuilder:
    def test_builder_does_not_mutate_receiver(self, collection: PrefixCollection):
        logs = collection.source("data", "in/")
        _ = logs.limit(2).output("data", "out/").asynchronous()

        assert logs.context.concurrency_limit is None
        assert logs.context.output is None
        assert logs.context.function_mode is FunctionMode.AUTO

    async def test_operation_without_source_fails_before_io(
        self, collection: PrefixCollection, store: MemoryStore
    ):
        with pytest.raises(ConfigurationError):
            await collection.visit(lambda record: None)

        assert sum(store.calls.values()) == 0

    async def test_output_inside_source_is_rejected(self, collection: PrefixCollection):
        with pytest.raises(ConfigurationError):
            await collection.source("data", "in/").output("data", "in/copy/").transform(str.upper)

    def test_store_without_listing_is_rejected(self):
        class WriteOnly:
            async def fetch(self, location, key): ...

        with pytest.raises(TypeError):
            PrefixCollection(WriteOnly())  # type: ignore[arg-type]
