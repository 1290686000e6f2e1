"""Parameter types for provider configuration.

Params define how providers operate (bucket, page sizes, content types),
while traversal contexts carry per-call state (locations, limits).
"""

from pydantic import BaseModel, Field


class ObjectParams(BaseModel, frozen=True):
    """Common parameters for object storage providers."""

    bucket: str | None = None
    """Bucket checked on connect. Locations name their own bucket."""

    page_size: int = Field(default=1000, ge=1, le=1000)
    """Maximum keys requested per listing page."""

    content_type: str = "application/octet-stream"
    """Content type for written objects."""
