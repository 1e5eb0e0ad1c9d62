"""
Metadata Transaction Coordinator

Writes a batch's metadata in one local transaction: the Event row, then for
every file in ascending order an ORIGINAL row followed by the WATERMARK row
that references it. The batch's upload intent is marked FULFILLED inside the
same transaction, so committed rows and a fulfilled intent always go together.

Any store error rolls the whole transaction back. Remote objects already
uploaded for the batch are left in place.
"""

from dataclasses import dataclass
from datetime import datetime
from operator import attrgetter
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_gallery.core.exceptions import NotFoundError, PersistenceError
from event_gallery.core.logging import get_logger
from event_gallery.core.metrics import track_stage_latency
from event_gallery.modules.events.models import (
    Event,
    Image,
    ImageVariant,
    IntentStatus,
    UploadIntent,
    utcnow,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class EventFields:
    """Scalar fields of a new event."""
    title: str
    date: datetime
    location: str
    description: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class FileResult:
    """Uploaded renditions of one batch file."""
    order: int
    original_url: str
    watermark_url: str
    original_key: Optional[str] = None
    watermark_key: Optional[str] = None
    description: Optional[str] = None


class MetadataTransactionCoordinator:
    """Owns the local transaction for a batch commit."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def _add_pair(self, session: AsyncSession, event_id: int, result: FileResult, order: int) -> Tuple[Image, Image]:
        original = Image(
            event_id=event_id,
            url=result.original_url,
            storage_key=result.original_key,
            variant=ImageVariant.ORIGINAL,
            order=order,
            description=result.description
        )
        session.add(original)
        # The watermark row needs the original's generated id
        await session.flush()

        watermark = Image(
            event_id=event_id,
            url=result.watermark_url,
            storage_key=result.watermark_key,
            variant=ImageVariant.WATERMARK,
            order=order,
            description=result.description,
            original_id=original.id
        )
        session.add(watermark)
        await session.flush()
        return original, watermark

    async def _fulfil_intent(self, session: AsyncSession, intent_id: Optional[str], event_id: int):
        """Flip a PENDING intent to FULFILLED; any other status aborts the commit."""
        if intent_id is None:
            return
        result = await session.execute(
            update(UploadIntent)
            .where(
                UploadIntent.id == intent_id,
                UploadIntent.status == IntentStatus.PENDING
            )
            .values(status=IntentStatus.FULFILLED, event_id=event_id, updated_at=utcnow())
        )
        if result.rowcount == 1:
            return

        intent = await session.get(UploadIntent, intent_id)
        if intent is None:
            logger.warning("upload_intent_missing", intent_id=intent_id)
            return
        # The orphan sweep claimed this batch; its objects may already be gone
        raise PersistenceError(
            "Upload intent is no longer pending",
            details={"intent_status": intent.status.value}
        )


    async def commit_event(
        self,
        fields: EventFields,
        user_id: int,
        results: Sequence[FileResult],
        intent_id: Optional[str] = None
    ) -> int:
        """
        Create the event and its image pairs; return the new event id.

        Raises:
            PersistenceError: With batch_index set to the order being written
                when the failure happened, or None for event/commit failures
        """
        ordered: List[FileResult] = sorted(results, key=attrgetter("order"))
        current_index: Optional[int] = None

        try:
            with track_stage_latency("commit"):
                async with self.session_maker() as session:
                    async with session.begin():
                        event = Event(
                            title=fields.title,
                            description=fields.description,
                            date=fields.date,
                            location=fields.location,
                            category=fields.category,
                            user_id=user_id
                        )
                        session.add(event)
                        await session.flush()

                        for result in ordered:
                            current_index = result.order
                            await self._add_pair(session, event.id, result, result.order)

                        current_index = None
                        await self._fulfil_intent(session, intent_id, event.id)
                    event_id = event.id
        except SQLAlchemyError as e:
            where = f"image {current_index + 1}" if current_index is not None else "event"
            logger.error(
                "metadata_commit_failed",
                batch_index=current_index,
                error=str(e),
                error_type=type(e).__name__
            )
            raise PersistenceError(
                f"Failed to create event: could not persist {where}",
                batch_index=current_index,
                details={"error_type": type(e).__name__}
            ) from e

        logger.info("metadata_committed", event_id=event_id, image_pairs=len(ordered))
        return event_id

    async def append_to_event(
        self,
        event_id: int,
        result: FileResult,
        intent_id: Optional[str] = None
    ) -> Tuple[int, int, int]:
        """
        Add one image pair to an existing event at the next free order.

        Returns:
            (original_id, watermark_id, order)
        """
        try:
            with track_stage_latency("commit"):
                async with self.session_maker() as session:
                    async with session.begin():
                        if await session.get(Event, event_id) is None:
                            raise NotFoundError(f"Event with ID {event_id} not found")

                        next_order = await session.scalar(
                            select(func.coalesce(func.max(Image.order) + 1, 0))
                            .where(
                                Image.event_id == event_id,
                                Image.variant == ImageVariant.ORIGINAL
                            )
                        )
                        original, watermark = await self._add_pair(session, event_id, result, next_order)
                        await self._fulfil_intent(session, intent_id, event_id)
        except SQLAlchemyError as e:
            logger.error("metadata_append_failed", event_id=event_id, error=str(e))
            raise PersistenceError(
                f"Failed to add image to event {event_id}",
                batch_index=0,
                details={"error_type": type(e).__name__}
            ) from e

        logger.info(
            "metadata_appended",
            event_id=event_id,
            original_id=original.id,
            watermark_id=watermark.id,
            order=next_order
        )
        return original.id, watermark.id, next_order
