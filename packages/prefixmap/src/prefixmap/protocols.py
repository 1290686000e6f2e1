"""Core protocols for store collaborators."""

from typing import Protocol, Self, TypeVar, runtime_checkable

from prefixmap.datatypes import Key, ListingPage, Location

Cred_contra = TypeVar("Cred_contra", contravariant=True)
Params_contra = TypeVar("Params_contra", contravariant=True)


@runtime_checkable
class KeyLister(Protocol):
    """Protocol for marker-paginated key listings."""

    async def list_page(self, location: Location, marker: Key | None = None) -> ListingPage:
        """Return the page of keys under `location` that sort after `marker`.

        Raises TransientStoreError for retryable failures and
        PermanentStoreError for everything else.
        """
        ...


@runtime_checkable
class ObjectClient(Protocol):
    """Protocol for single-object store operations.

    Instances are shared by every task of a traversal and must be safe
    for concurrent use.
    """

    async def fetch(self, location: Location, key: Key) -> bytes:
        """Read the raw content of one object."""
        ...

    async def write(self, location: Location, key: Key, data: bytes) -> None:
        """Create or overwrite one object."""
        ...

    async def copy(
        self,
        src: Location,
        src_key: Key,
        dst: Location,
        dst_key: Key,
    ) -> None:
        """Copy one object server-side."""
        ...

    async def remove(self, location: Location, key: Key) -> None:
        """Delete one object."""
        ...


@runtime_checkable
class Provider(Protocol[Cred_contra, Params_contra]):
    """Protocol for provider lifecycle management."""

    @classmethod
    async def connect(cls, credentials: Cred_contra, params: Params_contra) -> Self:
        """Establish connection to the external service."""
        ...

    async def disconnect(self) -> None:
        """Release resources and close connections."""
        ...
