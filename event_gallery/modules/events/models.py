"""
Event, Image and UploadIntent tables

An Event owns an ordered set of Images. Every ingested file yields one
ORIGINAL row and one WATERMARK row with the same order; the WATERMARK points
back at its ORIGINAL through original_id.

UploadIntent is the saga log for remote uploads: it lists the storage keys a
batch is about to create and is flipped to FULFILLED in the same transaction
that commits the batch's rows.
"""

from enum import Enum
from sqlmodel import SQLModel, Field, Column, JSON
from sqlalchemy import DateTime, UniqueConstraint
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column is declared as a plain DateTime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ImageVariant(str, Enum):
    """Rendition tag for an image row."""
    ORIGINAL = "ORIGINAL"
    WATERMARK = "WATERMARK"


class IntentStatus(str, Enum):
    """Lifecycle of an upload intent."""
    PENDING = "PENDING"           # Uploads planned or in flight
    FULFILLED = "FULFILLED"       # Rows committed, objects are referenced
    ABANDONED = "ABANDONED"       # Batch failed, objects are orphans
    RECONCILED = "RECONCILED"     # Orphans deleted by the sweep


class Event(SQLModel, table=True):
    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    date: datetime = Field(sa_type=DateTime)
    location: str
    category: Optional[str] = Field(default=None, index=True)

    # Owning account; accounts live in the auth service
    user_id: int = Field(index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    def to_response_dict(self, images: Optional[List["Image"]] = None) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat() if self.date else None,
            "location": self.location,
            "category": self.category,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if images is not None:
            data["images"] = [image.to_response_dict() for image in images]
        return data


class Image(SQLModel, table=True):
    __tablename__ = "event_images"
    __table_args__ = (
        UniqueConstraint("event_id", "variant", "order", name="uq_event_images_event_variant_order"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="events.id", index=True)

    url: str
    storage_key: Optional[str] = None
    variant: ImageVariant
    order: int = Field(default=0)
    description: Optional[str] = None

    # Set only on WATERMARK rows
    original_id: Optional[int] = Field(default=None, foreign_key="event_images.id", index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "url": self.url,
            "variant": self.variant.value,
            "order": self.order,
            "description": self.description,
            "original_id": self.original_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UploadIntent(SQLModel, table=True):
    __tablename__ = "upload_intents"

    # Batch id; also the folder prefix of every planned key
    id: str = Field(primary_key=True)
    status: IntentStatus = Field(default=IntentStatus.PENDING, index=True)
    storage_keys: List[str] = Field(default=[], sa_column=Column(JSON))
    event_id: Optional[int] = Field(default=None)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    def mark(self, status: IntentStatus, error_message: Optional[str] = None):
        self.status = status
        if error_message:
            self.error_message = error_message
        self.updated_at = utcnow()
