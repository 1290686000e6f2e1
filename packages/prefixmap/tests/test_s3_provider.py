"""S3 provider tests against botocore's Stubber."""

import io
from collections.abc import Iterator

import boto3
import pytest
from botocore.exceptions import (
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ProxyConnectionError,
    ResponseStreamingError,
)
from botocore.response import StreamingBody
from botocore.stub import Stubber

from prefixmap import (
    ErrorKind,
    Location,
    PermanentStoreError,
    PrefixCollection,
    RetryPolicy,
    TransientStoreError,
)
from prefixmap.providers.s3 import S3Credentials, S3Params, S3Provider, classify_client_error

SOURCE = Location(bucket="data", prefix="in/")


def body(data: bytes) -> StreamingBody:
    return StreamingBody(io.BytesIO(data), len(data))


class BrokenBody(StreamingBody):
    """Body whose connection drops while it is being read."""

    def __init__(self) -> None:
        super().__init__(io.BytesIO(b"partial"), 7)

    def read(self, amt: int | None = None) -> bytes:
        raise ResponseStreamingError(error="Connection reset by peer")


@pytest.fixture
def client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(client) -> Iterator[Stubber]:
    with Stubber(client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def provider(client) -> S3Provider:
    return S3Provider(client, S3Params(page_size=2))


class TestListPage:
    async def test_first_page_has_no_marker(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": "in/a"}, {"Key": "in/b"}], "IsTruncated": True},
            {"Bucket": "data", "Prefix": "in/", "MaxKeys": 2},
        )

        page = await provider.list_page(SOURCE)

        assert page.keys == ("in/a", "in/b")
        assert page.truncated
        assert page.next_marker == "in/b"

    async def test_marker_is_sent_as_start_after(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": "in/c"}], "IsTruncated": False},
            {"Bucket": "data", "Prefix": "in/", "MaxKeys": 2, "StartAfter": "in/b"},
        )

        page = await provider.list_page(SOURCE, "in/b")

        assert page.keys == ("in/c",)
        assert not page.truncated
        assert page.next_marker is None

    async def test_empty_listing(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response("list_objects_v2", {"IsTruncated": False})

        page = await provider.list_page(SOURCE)

        assert page.keys == ()


class TestObjectCalls:
    async def test_fetch(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response(
            "get_object",
            {"Body": body(b"hello")},
            {"Bucket": "data", "Key": "in/a"},
        )

        assert await provider.fetch(SOURCE, "in/a") == b"hello"

    async def test_fetch_missing_key(self, stubber: Stubber, provider: S3Provider):
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

        with pytest.raises(PermanentStoreError) as info:
            await provider.fetch(SOURCE, "in/a")

        assert info.value.kind is ErrorKind.NOT_FOUND
        assert info.value.key == "in/a"

    async def test_throttling_is_transient(self, stubber: Stubber, provider: S3Provider):
        stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)

        with pytest.raises(TransientStoreError):
            await provider.write(SOURCE, "in/a", b"x")

    async def test_access_denied(self, stubber: Stubber, provider: S3Provider):
        stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)

        with pytest.raises(PermanentStoreError) as info:
            await provider.remove(SOURCE, "in/a")

        assert info.value.kind is ErrorKind.ACCESS_DENIED

    async def test_copy(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response(
            "copy_object",
            {},
            {
                "Bucket": "archive",
                "Key": "out/a",
                "CopySource": {"Bucket": "data", "Key": "in/a"},
            },
        )

        await provider.copy(SOURCE, "in/a", Location(bucket="archive", prefix="out/"), "out/a")

    async def test_interrupted_body_read_is_transient(
        self, stubber: Stubber, provider: S3Provider
    ):
        stubber.add_response("get_object", {"Body": BrokenBody()}, {"Bucket": "data", "Key": "in/a"})

        with pytest.raises(TransientStoreError) as info:
            await provider.fetch(SOURCE, "in/a")

        assert info.value.key == "in/a"
        assert isinstance(info.value.source, ResponseStreamingError)


class TestClassification:
    @pytest.mark.parametrize(
        "failure",
        [
            EndpointConnectionError(endpoint_url="http://s3"),
            ConnectTimeoutError(endpoint_url="http://s3"),
            ProxyConnectionError(proxy_url="http://proxy"),
            ResponseStreamingError(error="reset"),
        ],
    )
    def test_network_errors_are_transient(self, failure: Exception):
        error = classify_client_error(failure, "k")

        assert isinstance(error, TransientStoreError)
        assert error.key == "k"
        assert error.source is failure

    def test_other_client_errors_are_permanent(self):
        error = classify_client_error(NoCredentialsError(), "k")

        assert isinstance(error, PermanentStoreError)
        assert error.kind is ErrorKind.PROVIDER

    def test_credentials_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "id")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
        monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")
        monkeypatch.delenv("AWS_REGION", raising=False)
        monkeypatch.delenv("AWS_SESSION_TOKEN", raising=False)
        monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)

        credentials = S3Credentials.from_env()

        assert credentials.access_key_id == "id"
        assert credentials.region == "eu-west-1"
        assert credentials.endpoint_url is None


class TestEngineOverS3:
    async def test_sequential_transform(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": "in/a"}, {"Key": "in/b"}], "IsTruncated": False},
            {"Bucket": "data", "Prefix": "in/", "MaxKeys": 2},
        )
        for key, content in (("in/a", b"x"), ("in/b", b"y")):
            stubber.add_response("get_object", {"Body": body(content)}, {"Bucket": "data", "Key": key})
            stubber.add_response("put_object", {})

        collection = PrefixCollection(provider, retry=RetryPolicy.immediate())
        await collection.source("data", "in/").limit(1).transform(str.upper)

    async def test_retries_throttled_fetch(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": "in/a"}], "IsTruncated": False},
        )
        stubber.add_client_error("get_object", service_error_code="SlowDown", http_status_code=503)
        stubber.add_response("get_object", {"Body": body(b"payload")})

        collection = PrefixCollection(provider, retry=RetryPolicy.immediate())

        assert await collection.source("data", "in/").concatenate() == "payload"

    async def test_retries_fetch_cut_off_mid_stream(self, stubber: Stubber, provider: S3Provider):
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": "in/a"}], "IsTruncated": False},
        )
        stubber.add_response("get_object", {"Body": BrokenBody()})
        stubber.add_response("get_object", {"Body": body(b"payload")})

        collection = PrefixCollection(provider, retry=RetryPolicy.immediate())

        assert await collection.source("data", "in/").concatenate() == "payload"
