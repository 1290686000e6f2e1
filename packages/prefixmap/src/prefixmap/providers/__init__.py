"""Provider implementations for object stores.

Each provider module exports a `Provider` class alias for the main provider class,
along with its credentials and params types.

Available providers:
- memory: in-process store for tests and local runs
- s3: AWS S3 / MinIO via boto3 (requires the `s3` extra; import
  `prefixmap.providers.s3` directly)
"""

from prefixmap.providers import memory

__all__ = [
    "memory",
]
