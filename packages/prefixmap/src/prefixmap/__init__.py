"""Batch traversal of object-store prefixes as ordered collections."""

from loguru import logger

from prefixmap.collection import PrefixCollection, Traversal
from prefixmap.context import (
    BytesTransformer,
    FunctionMode,
    TextTransformer,
    Transformer,
    TraversalContext,
)
from prefixmap.datatypes import Key, ListingPage, Location, ObjectRecord
from prefixmap.engine import BatchEngine
from prefixmap.errors import (
    BatchError,
    ConfigurationError,
    ErrorKind,
    PermanentStoreError,
    TransientStoreError,
    UserFunctionError,
)
from prefixmap.listing import KeySequence
from prefixmap.protocols import KeyLister, ObjectClient, Provider
from prefixmap.retry import RetryPolicy

logger.disable("prefixmap")

__all__ = [
    "BatchEngine",
    "BatchError",
    "BytesTransformer",
    "ConfigurationError",
    "ErrorKind",
    "FunctionMode",
    "Key",
    "KeyLister",
    "KeySequence",
    "ListingPage",
    "Location",
    "ObjectClient",
    "ObjectRecord",
    "PermanentStoreError",
    "PrefixCollection",
    "Provider",
    "RetryPolicy",
    "TextTransformer",
    "TransientStoreError",
    "Transformer",
    "Traversal",
    "TraversalContext",
    "UserFunctionError",
]
