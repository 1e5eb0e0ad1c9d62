"""
Request/response schemas and partial-update patches for events and images.

Patches use a tagged optional: a field is either absent (None) or present
(Some(value)), where value itself may be None to clear a nullable column.
Request bodies are turned into patches once, at the HTTP boundary.
"""

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Generic, Iterator, Optional, Tuple, TypeVar, Any

from pydantic import BaseModel, Field, field_validator

T = TypeVar("T")


@dataclass(frozen=True)
class Some(Generic[T]):
    """A present value in a patch."""
    value: T


@dataclass(frozen=True)
class _Patch:
    def present(self) -> Iterator[Tuple[str, Any]]:
        """Yield (field, value) for every field explicitly present in the patch."""
        for f in fields(self):
            slot = getattr(self, f.name)
            if isinstance(slot, Some):
                yield f.name, slot.value

    def is_empty(self) -> bool:
        return next(self.present(), None) is None


@dataclass(frozen=True)
class EventPatch(_Patch):
    title: Optional[Some[str]] = None
    description: Optional[Some[Optional[str]]] = None
    date: Optional[Some[datetime]] = None
    location: Optional[Some[str]] = None
    category: Optional[Some[Optional[str]]] = None


@dataclass(frozen=True)
class ImagePatch(_Patch):
    description: Optional[Some[Optional[str]]] = None
    order: Optional[Some[int]] = None


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _patch_from_request(patch_cls, body: BaseModel):
    present = {name: Some(getattr(body, name)) for name in body.model_fields_set}
    return patch_cls(**present)


# =============================================================================
# Request Schemas
# =============================================================================

class EventUpdateRequest(BaseModel):
    """PATCH body for an event; only fields sent by the client are applied."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    date: Optional[datetime] = None
    location: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, max_length=64)

    @field_validator("date")
    @classmethod
    def normalize_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    def to_patch(self) -> EventPatch:
        return _patch_from_request(EventPatch, self)


class ImageUpdateRequest(BaseModel):
    """PATCH body for an image."""
    description: Optional[str] = None
    order: Optional[int] = Field(default=None, ge=0)

    def to_patch(self) -> ImagePatch:
        return _patch_from_request(ImagePatch, self)


# =============================================================================
# Response Schemas
# =============================================================================

class EventCreatedResponse(BaseModel):
    """Response from the batch-create endpoint."""
    status: str = "success"
    event_id: int
    batch_id: str
    image_count: int
    message: str


class ImageCreatedResponse(BaseModel):
    """Response from the single-image upload endpoint."""
    status: str = "success"
    event_id: int
    batch_id: str
    original_id: int
    watermark_id: int
    order: int
    message: str
