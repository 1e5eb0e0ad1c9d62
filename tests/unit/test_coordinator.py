from datetime import datetime

import pytest
from sqlalchemy import func, select

from event_gallery.core.exceptions import NotFoundError, PersistenceError
from event_gallery.modules.events.models import Event, Image, ImageVariant, IntentStatus, UploadIntent
from event_gallery.pipeline.coordinator import EventFields, FileResult, MetadataTransactionCoordinator

FIELDS = EventFields(
    title="Summer Festival",
    date=datetime(2025, 7, 15, 18, 0),
    location="Central Park",
    description="Annual summer music festival"
)


def _result(order: int) -> FileResult:
    return FileResult(
        order=order,
        original_url=f"https://cdn/originals/{order:04d}.jpg",
        watermark_url=f"https://cdn/watermarks/{order:04d}.jpg",
        original_key=f"events/b1/originals/{order:04d}.jpg",
        watermark_key=f"events/b1/watermarks/{order:04d}.jpg"
    )


async def _images(database, event_id):
    async with database.session_maker() as session:
        result = await session.execute(
            select(Image).where(Image.event_id == event_id).order_by(Image.order, Image.variant)
        )
        return list(result.scalars().all())


async def _count(database, model) -> int:
    async with database.session_maker() as session:
        return await session.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_commit_writes_pairs_in_order(database):
    coordinator = MetadataTransactionCoordinator(database.session_maker)

    # Completion order must not matter
    event_id = await coordinator.commit_event(FIELDS, 7, [_result(2), _result(0), _result(1)])

    images = await _images(database, event_id)
    assert len(images) == 6

    originals = [image for image in images if image.variant is ImageVariant.ORIGINAL]
    watermarks = [image for image in images if image.variant is ImageVariant.WATERMARK]
    assert [image.order for image in originals] == [0, 1, 2]
    assert [image.order for image in watermarks] == [0, 1, 2]

    by_id = {image.id: image for image in originals}
    for watermark in watermarks:
        paired = by_id[watermark.original_id]
        assert paired.order == watermark.order
        assert paired.url.endswith(f"{watermark.order:04d}.jpg")
    assert all(original.original_id is None for original in originals)


@pytest.mark.asyncio
async def test_commit_fulfils_intent(database):
    async with database.session_maker() as session:
        session.add(UploadIntent(id="batch-1", storage_keys=["a", "b"]))
        await session.commit()

    coordinator = MetadataTransactionCoordinator(database.session_maker)
    event_id = await coordinator.commit_event(FIELDS, 7, [_result(0)], intent_id="batch-1")

    async with database.session_maker() as session:
        intent = await session.get(UploadIntent, "batch-1")
        assert intent.status is IntentStatus.FULFILLED
        assert intent.event_id == event_id


@pytest.mark.asyncio
async def test_failed_insert_rolls_back_everything(database):
    async with database.session_maker() as session:
        session.add(UploadIntent(id="batch-2", storage_keys=["a"]))
        await session.commit()

    coordinator = MetadataTransactionCoordinator(database.session_maker)
    # Second order-1 row violates the (event, variant, order) constraint
    with pytest.raises(PersistenceError) as exc_info:
        await coordinator.commit_event(FIELDS, 7, [_result(0), _result(1), _result(1)], intent_id="batch-2")

    assert exc_info.value.stage == "commit"
    assert exc_info.value.batch_index == 1
    assert await _count(database, Event) == 0
    assert await _count(database, Image) == 0

    async with database.session_maker() as session:
        intent = await session.get(UploadIntent, "batch-2")
        assert intent.status is IntentStatus.PENDING


@pytest.mark.asyncio
async def test_append_uses_next_order(database):
    coordinator = MetadataTransactionCoordinator(database.session_maker)
    event_id = await coordinator.commit_event(FIELDS, 7, [_result(0), _result(1)])

    original_id, watermark_id, order = await coordinator.append_to_event(event_id, _result(0))

    assert order == 2
    async with database.session_maker() as session:
        watermark = await session.get(Image, watermark_id)
        assert watermark.original_id == original_id
        assert watermark.order == 2


@pytest.mark.asyncio
async def test_append_to_empty_event_starts_at_zero(database):
    coordinator = MetadataTransactionCoordinator(database.session_maker)
    event_id = await coordinator.commit_event(FIELDS, 7, [])

    _, _, order = await coordinator.append_to_event(event_id, _result(5))
    assert order == 0


@pytest.mark.asyncio
async def test_append_to_missing_event(database):
    coordinator = MetadataTransactionCoordinator(database.session_maker)

    with pytest.raises(NotFoundError):
        await coordinator.append_to_event(999, _result(0))
    assert await _count(database, Image) == 0
