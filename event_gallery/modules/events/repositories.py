"""
Event and Image repositories

Row-level reads, patches and deletions outside the ingestion pipeline.
Image deletion keeps pairs together: removing either half of an
ORIGINAL/WATERMARK pair removes the other half as well.
"""

from typing import List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from event_gallery.core.exceptions import InvalidInputError, NotFoundError, PersistenceError
from event_gallery.core.logging import get_logger
from event_gallery.modules.events.models import Event, Image, ImageVariant, utcnow
from event_gallery.modules.events.schemas import EventPatch, ImagePatch

logger = get_logger(__name__)

_NON_NULLABLE_EVENT_FIELDS = {"title", "date", "location"}


# =============================================================================
# Event Repository
# =============================================================================

class EventRepository:
    """Repository for events and their image sets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, event_id: int) -> Event:
        event = await self.session.get(Event, event_id)
        if event is None:
            raise NotFoundError(f"Event with ID {event_id} not found")
        return event

    async def get_images(self, event_id: int) -> List[Image]:
        """Images of an event ordered by position, ORIGINAL before WATERMARK."""
        result = await self.session.execute(
            select(Image)
            .where(Image.event_id == event_id)
            .order_by(Image.order, Image.variant, Image.id)
        )
        return list(result.scalars().all())

    async def get_with_images(self, event_id: int) -> Tuple[Event, List[Image]]:
        event = await self.get(event_id)
        return event, await self.get_images(event_id)

    async def update(self, event_id: int, patch: EventPatch) -> Event:
        event = await self.get(event_id)

        for name, value in patch.present():
            if value is None and name in _NON_NULLABLE_EVENT_FIELDS:
                raise InvalidInputError(f"Field '{name}' cannot be null")
            setattr(event, name, value)

        if not patch.is_empty():
            event.updated_at = utcnow()

        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to update event {event_id}: {e}") from e

        await self.session.refresh(event)
        return event

    async def delete(self, event_id: int) -> Event:
        """Delete an event and all of its images.

        WATERMARK rows go first so no ORIGINAL is removed while still referenced.
        """
        event = await self.get(event_id)

        try:
            await self.session.execute(
                delete(Image).where(
                    Image.event_id == event_id,
                    Image.variant == ImageVariant.WATERMARK
                )
            )
            await self.session.execute(delete(Image).where(Image.event_id == event_id))
            await self.session.delete(event)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to delete event {event_id}: {e}") from e

        logger.info("event_deleted", event_id=event_id)
        return event


# =============================================================================
# Image Repository
# =============================================================================

class ImageRepository:
    """Repository for image rows and their ORIGINAL/WATERMARK pairing."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, image_id: int) -> Image:
        image = await self.session.get(Image, image_id)
        if image is None:
            raise NotFoundError(f"Image #{image_id} not found")
        return image

    async def _paired_original(self, image: Image) -> Optional[Image]:
        if image.variant is ImageVariant.WATERMARK:
            if image.original_id is None:
                return None
            return await self.session.get(Image, image.original_id)
        elif image.variant is ImageVariant.ORIGINAL:
            return None
        raise ValueError(f"Unknown image variant: {image.variant!r}")

    async def _watermarks_of(self, original: Image) -> List[Image]:
        result = await self.session.execute(
            select(Image).where(Image.original_id == original.id)
        )
        return list(result.scalars().all())

    async def update(self, image_id: int, patch: ImagePatch) -> Image:
        """Apply a patch; a WATERMARK's paired ORIGINAL receives the same fields.

        An order change is carried to every row of the pair, whichever side
        was patched, so a WATERMARK always shares its ORIGINAL's order.
        """
        image = await self.get(image_id)
        targets = [image]

        original = await self._paired_original(image)
        if original is not None:
            targets.append(original)

        changes = dict(patch.present())
        if "order" in changes:
            if changes["order"] is None:
                raise InvalidInputError("Field 'order' cannot be null")
            anchor = original if original is not None else image
            if anchor.variant is ImageVariant.ORIGINAL:
                for watermark in await self._watermarks_of(anchor):
                    if watermark not in targets:
                        watermark.order = changes["order"]

        for name, value in changes.items():
            for target in targets:
                setattr(target, name, value)

        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise InvalidInputError(
                f"Image {image_id} conflicts with another image of the same event",
                code=409,
                details={"error_type": type(e).__name__}
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to update image {image_id}: {e}") from e

        await self.session.refresh(image)
        return image

    async def delete(self, image_id: int) -> List[int]:
        """Delete an image together with the other half of its pair.

        - WATERMARK with original_id: its ORIGINAL and every WATERMARK
          referencing that ORIGINAL are removed.
        - ORIGINAL: every WATERMARK referencing it is removed with it.
        - WATERMARK without original_id: only that row.

        Returns the ids of all removed rows.
        """
        image = await self.get(image_id)

        if image.variant is ImageVariant.WATERMARK:
            anchor = await self._paired_original(image)
        elif image.variant is ImageVariant.ORIGINAL:
            anchor = image
        else:
            raise ValueError(f"Unknown image variant: {image.variant!r}")

        removed: List[int] = []
        try:
            if anchor is None:
                removed.append(image.id)
                await self.session.delete(image)
            else:
                result = await self.session.execute(
                    select(Image).where(Image.original_id == anchor.id)
                )
                for watermark in result.scalars().all():
                    removed.append(watermark.id)
                    await self.session.delete(watermark)
                # Watermarks must be gone before the row they reference
                await self.session.flush()
                removed.append(anchor.id)
                await self.session.delete(anchor)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError(f"Failed to delete image {image_id}: {e}") from e

        logger.info("images_deleted", requested_id=image_id, removed_ids=removed)
        return removed
