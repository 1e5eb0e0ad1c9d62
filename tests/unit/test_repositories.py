from datetime import datetime

import pytest
from sqlalchemy import DateTime, func, select

from event_gallery.core.exceptions import InvalidInputError, NotFoundError
from event_gallery.modules.events.models import Event, Image, ImageVariant, UploadIntent
from event_gallery.modules.events.repositories import EventRepository, ImageRepository
from event_gallery.modules.events.schemas import (
    EventPatch,
    EventUpdateRequest,
    ImagePatch,
    ImageUpdateRequest,
    Some,
)
from event_gallery.pipeline.coordinator import EventFields, FileResult, MetadataTransactionCoordinator


async def _create_event(database, file_count: int = 2, date: datetime = datetime(2025, 7, 15)) -> int:
    coordinator = MetadataTransactionCoordinator(database.session_maker)
    results = [
        FileResult(order=i, original_url=f"o{i}", watermark_url=f"w{i}", description=f"photo {i}")
        for i in range(file_count)
    ]
    fields = EventFields(title="Launch", date=date, location="Hall A", category="tech")
    return await coordinator.commit_event(fields, 1, results)


async def _pair(database, event_id: int, order: int):
    async with database.session_maker() as session:
        rows = await session.execute(
            select(Image).where(Image.event_id == event_id, Image.order == order)
        )
        images = {image.variant: image for image in rows.scalars().all()}
    return images[ImageVariant.ORIGINAL], images[ImageVariant.WATERMARK]


async def _image_ids(database):
    async with database.session_maker() as session:
        return set((await session.execute(select(Image.id))).scalars().all())


# =============================================================================
# Patches
# =============================================================================

def test_patch_from_request_tracks_presence():
    patch = EventUpdateRequest.model_validate({"description": None, "location": "Hall B"}).to_patch()

    assert patch.title is None
    assert patch.description == Some(None)
    assert patch.location == Some("Hall B")
    assert dict(patch.present()) == {"description": None, "location": "Hall B"}


def test_empty_request_gives_empty_patch():
    assert ImageUpdateRequest.model_validate({}).to_patch().is_empty()


def test_aware_dates_are_stored_as_naive_utc():
    request = EventUpdateRequest.model_validate({"date": "2025-07-15T20:00:00+02:00"})
    assert request.date == datetime(2025, 7, 15, 18, 0)


# =============================================================================
# Timestamps
# =============================================================================

def test_datetime_columns_are_plain_datetime():
    columns = [
        Event.__table__.c.date,
        Event.__table__.c.created_at,
        Event.__table__.c.updated_at,
        Image.__table__.c.created_at,
        UploadIntent.__table__.c.created_at,
        UploadIntent.__table__.c.updated_at,
    ]
    for column in columns:
        assert type(column.type) is DateTime
        assert column.type.timezone is False


@pytest.mark.asyncio
async def test_naive_utc_dates_round_trip(database):
    event_id = await _create_event(database, date=datetime(2025, 1, 1, 9, 30))

    async with database.session_maker() as session:
        event = await session.get(Event, event_id)
        intent = UploadIntent(id="round-trip", storage_keys=["events/round-trip/originals/0000.jpg"])
        session.add(intent)
        await session.commit()
        await session.refresh(intent)

    assert event.date == datetime(2025, 1, 1, 9, 30)
    assert event.created_at.tzinfo is None
    assert intent.created_at.tzinfo is None


# =============================================================================
# Events
# =============================================================================

@pytest.mark.asyncio
async def test_event_patch_applies_only_present_fields(database):
    event_id = await _create_event(database)

    async with database.session_maker() as session:
        event = await EventRepository(session).update(
            event_id, EventPatch(description=Some(None), title=Some("Relaunch"))
        )

    assert event.title == "Relaunch"
    assert event.description is None
    assert event.location == "Hall A"
    assert event.category == "tech"


@pytest.mark.asyncio
async def test_event_patch_cannot_null_required_field(database):
    event_id = await _create_event(database)

    async with database.session_maker() as session:
        with pytest.raises(InvalidInputError):
            await EventRepository(session).update(event_id, EventPatch(title=Some(None)))


@pytest.mark.asyncio
async def test_get_with_images_orders_pairs(database):
    event_id = await _create_event(database, file_count=3)

    async with database.session_maker() as session:
        event, images = await EventRepository(session).get_with_images(event_id)

    assert event.id == event_id
    assert [(image.order, image.variant) for image in images] == [
        (0, ImageVariant.ORIGINAL), (0, ImageVariant.WATERMARK),
        (1, ImageVariant.ORIGINAL), (1, ImageVariant.WATERMARK),
        (2, ImageVariant.ORIGINAL), (2, ImageVariant.WATERMARK),
    ]


@pytest.mark.asyncio
async def test_event_delete_removes_images(database):
    event_id = await _create_event(database)

    async with database.session_maker() as session:
        await EventRepository(session).delete(event_id)

    async with database.session_maker() as session:
        assert await session.get(Event, event_id) is None
        assert await session.scalar(select(func.count()).select_from(Image)) == 0


@pytest.mark.asyncio
async def test_missing_event(database):
    async with database.session_maker() as session:
        with pytest.raises(NotFoundError):
            await EventRepository(session).get(404)


# =============================================================================
# Images
# =============================================================================

@pytest.mark.asyncio
async def test_watermark_patch_propagates_to_original(database):
    event_id = await _create_event(database)
    original, watermark = await _pair(database, event_id, 0)

    async with database.session_maker() as session:
        await ImageRepository(session).update(watermark.id, ImagePatch(description=Some("cover shot")))

    original, watermark = await _pair(database, event_id, 0)
    assert watermark.description == "cover shot"
    assert original.description == "cover shot"


@pytest.mark.asyncio
async def test_original_order_patch_moves_its_watermark(database):
    event_id = await _create_event(database)
    original, _ = await _pair(database, event_id, 0)

    async with database.session_maker() as session:
        await ImageRepository(session).update(original.id, ImagePatch(order=Some(5)))

    original, watermark = await _pair(database, event_id, 5)
    assert watermark.original_id == original.id
    assert (original.order, watermark.order) == (5, 5)


@pytest.mark.asyncio
async def test_original_description_patch_leaves_watermark(database):
    event_id = await _create_event(database)
    original, _ = await _pair(database, event_id, 1)

    async with database.session_maker() as session:
        await ImageRepository(session).update(original.id, ImagePatch(description=Some("raw")))

    original, watermark = await _pair(database, event_id, 1)
    assert original.description == "raw"
    assert watermark.description == "photo 1"


@pytest.mark.asyncio
async def test_order_patch_conflict_is_rejected(database):
    event_id = await _create_event(database)
    _, watermark = await _pair(database, event_id, 0)

    async with database.session_maker() as session:
        with pytest.raises(InvalidInputError) as exc_info:
            await ImageRepository(session).update(watermark.id, ImagePatch(order=Some(1)))
    assert exc_info.value.code == 409


@pytest.mark.asyncio
async def test_deleting_watermark_removes_its_original(database):
    event_id = await _create_event(database)
    original, watermark = await _pair(database, event_id, 0)
    other = await _pair(database, event_id, 1)

    async with database.session_maker() as session:
        removed = await ImageRepository(session).delete(watermark.id)

    assert set(removed) == {original.id, watermark.id}
    assert await _image_ids(database) == {other[0].id, other[1].id}


@pytest.mark.asyncio
async def test_deleting_original_removes_its_watermarks(database):
    event_id = await _create_event(database)
    original, watermark = await _pair(database, event_id, 1)

    async with database.session_maker() as session:
        removed = await ImageRepository(session).delete(original.id)

    assert set(removed) == {original.id, watermark.id}
    assert len(await _image_ids(database)) == 2


@pytest.mark.asyncio
async def test_unpaired_watermark_is_deleted_alone(database):
    event_id = await _create_event(database, file_count=1)
    async with database.session_maker() as session:
        stray = Image(event_id=event_id, url="w-stray", variant=ImageVariant.WATERMARK, order=9)
        session.add(stray)
        await session.commit()
        stray_id = stray.id

    async with database.session_maker() as session:
        removed = await ImageRepository(session).delete(stray_id)

    assert removed == [stray_id]
    assert len(await _image_ids(database)) == 2


@pytest.mark.asyncio
async def test_missing_image(database):
    async with database.session_maker() as session:
        with pytest.raises(NotFoundError):
            await ImageRepository(session).delete(12345)
