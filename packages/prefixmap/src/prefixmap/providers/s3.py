"""S3 provider using boto3.

boto3 clients are blocking and thread-safe, so every call runs in a
worker thread via `asyncio.to_thread` and one client is shared by all
tasks of a traversal.
"""

import asyncio
import os
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar, Self, TypeVar

from loguru import logger
from pydantic import BaseModel

from prefixmap.datatypes import Key, ListingPage, Location
from prefixmap.errors import BatchError, ErrorKind, PermanentStoreError, TransientStoreError
from prefixmap.params import ObjectParams

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

try:
    import boto3
    from botocore.config import Config
    from botocore.exceptions import (
        BotoCoreError,
        ClientError,
        HTTPClientError,
        ResponseStreamingError,
    )
    from botocore.exceptions import ConnectionError as BotoConnectionError
except ImportError as e:
    _msg = "boto3 is required for S3 support. Install with: pip install 'prefixmap[s3]'"
    raise ImportError(_msg) from e

T = TypeVar("T")

_TRANSIENT_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "RequestTimeout",
        "RequestTimeTooSkewed",
        "InternalError",
        "ServiceUnavailable",
    }
)
_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NotFound"})
_ACCESS_DENIED_CODES = frozenset({"403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"})


class S3Credentials(BaseModel, frozen=True):
    """Credentials for S3 connection.

    Leaving the keys unset defers to boto3's default credential chain.
    """

    access_key_id: str | None = None
    secret_access_key: str | None = None
    session_token: str | None = None
    region: str = "us-east-1"
    endpoint_url: str | None = None

    @classmethod
    def from_env(cls) -> Self:
        """Read the standard AWS_* environment variables."""
        return cls(
            access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
            session_token=os.environ.get("AWS_SESSION_TOKEN"),
            region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or "us-east-1",
            endpoint_url=os.environ.get("AWS_ENDPOINT_URL"),
        )


class S3Params(ObjectParams, frozen=True):
    """Parameters for S3 operations.

    Inherits `bucket`, `page_size` and `content_type` from ObjectParams.
    """

    connect_timeout: float = 10.0
    """Seconds to wait for a connection."""

    read_timeout: float = 60.0
    """Seconds to wait for a response; the per-call timeout."""

    max_pool_connections: int = 50
    """Size of botocore's HTTP connection pool."""

    sdk_max_attempts: int = 1
    """Attempts botocore makes itself before the retry policy sees a failure."""


def classify_client_error(error: Exception, key: Key | None = None) -> BatchError:
    """Map a boto3/botocore exception onto the store error taxonomy."""
    if isinstance(error, ClientError):
        err = error.response.get("Error", {})
        code = str(err.get("Code", "Unknown"))
        status = int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)
        msg = f"S3 request failed ({code}): {err.get('Message', error)}"
        if code in _TRANSIENT_CODES or status >= 500 or status in (408, 429):
            return TransientStoreError(msg, key=key, source=error)
        if code in _NOT_FOUND_CODES or status == 404:
            return PermanentStoreError(msg, kind=ErrorKind.NOT_FOUND, key=key, source=error)
        if code in _ACCESS_DENIED_CODES or status == 403:
            return PermanentStoreError(msg, kind=ErrorKind.ACCESS_DENIED, key=key, source=error)
        return PermanentStoreError(msg, key=key, source=error)
    # Network failures, including bodies cut off mid-stream.
    if isinstance(error, BotoConnectionError | HTTPClientError | ResponseStreamingError):
        return TransientStoreError(f"S3 connection failed: {error}", key=key, source=error)
    if isinstance(error, BotoCoreError):
        return PermanentStoreError(f"S3 client error: {error}", key=key, source=error)
    return PermanentStoreError(f"S3 call failed: {error}", key=key, source=error)


class S3Provider:
    """S3 provider implementing KeyLister and ObjectClient."""

    __slots__: ClassVar[tuple[str, str]] = ("_client", "_params")

    _client: "S3Client"
    _params: S3Params

    def __init__(self, client: "S3Client", params: S3Params) -> None:
        self._client = client
        self._params = params

    @classmethod
    async def connect(cls, credentials: S3Credentials, params: S3Params) -> Self:
        """Create S3 client, checking `params.bucket` exists when set."""
        config = Config(
            connect_timeout=params.connect_timeout,
            read_timeout=params.read_timeout,
            max_pool_connections=params.max_pool_connections,
            retries={"mode": "standard", "total_max_attempts": params.sdk_max_attempts},
        )
        try:
            client: S3Client = boto3.client(  # pyright: ignore[reportUnknownMemberType]
                "s3",
                aws_access_key_id=credentials.access_key_id,
                aws_secret_access_key=credentials.secret_access_key,
                aws_session_token=credentials.session_token,
                region_name=credentials.region,
                endpoint_url=credentials.endpoint_url,
                config=config,
            )
            if params.bucket:
                _ = await asyncio.to_thread(client.head_bucket, Bucket=params.bucket)
        except (ClientError, BotoCoreError) as e:
            raise classify_client_error(e) from e

        logger.info(
            "Connected to S3 (region={region}, endpoint={endpoint})",
            region=credentials.region,
            endpoint=credentials.endpoint_url,
        )
        return cls(client, params)

    async def disconnect(self) -> None:
        """Close the client's connection pool."""
        await asyncio.to_thread(self._client.close)

    async def _call(self, fn: Callable[..., T], key: Key | None, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise classify_client_error(e, key) from e

    async def list_page(self, location: Location, marker: Key | None = None) -> ListingPage:
        """List one page of keys, using `marker` as StartAfter."""
        request: dict[str, Any] = {
            "Bucket": location.bucket,
            "Prefix": location.prefix,
            "MaxKeys": self._params.page_size,
        }
        if marker:
            request["StartAfter"] = marker
        response = await self._call(self._client.list_objects_v2, None, **request)
        keys = tuple(obj["Key"] for obj in response.get("Contents", []) if obj.get("Key"))
        truncated = bool(response.get("IsTruncated"))
        return ListingPage(
            keys=keys,
            next_marker=keys[-1] if truncated and keys else None,
            truncated=truncated,
        )

    async def fetch(self, location: Location, key: Key) -> bytes:
        response = await self._call(
            self._client.get_object,
            key,
            Bucket=location.bucket,
            Key=key,
        )
        body = response["Body"]
        try:
            return await asyncio.to_thread(body.read)
        except (ClientError, BotoCoreError) as e:
            raise classify_client_error(e, key) from e
        finally:
            body.close()

    async def write(self, location: Location, key: Key, data: bytes) -> None:
        _ = await self._call(
            self._client.put_object,
            key,
            Bucket=location.bucket,
            Key=key,
            Body=data,
            ContentType=self._params.content_type,
        )

    async def copy(self, src: Location, src_key: Key, dst: Location, dst_key: Key) -> None:
        _ = await self._call(
            self._client.copy_object,
            src_key,
            Bucket=dst.bucket,
            Key=dst_key,
            CopySource={"Bucket": src.bucket, "Key": src_key},
        )

    async def remove(self, location: Location, key: Key) -> None:
        _ = await self._call(
            self._client.delete_object,
            key,
            Bucket=location.bucket,
            Key=key,
        )


Provider = S3Provider
