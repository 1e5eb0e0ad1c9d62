from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from event_gallery.core.exceptions import PersistenceError
from event_gallery.core.storage import StorageError
from event_gallery.modules.events.models import Event, Image, ImageVariant, IntentStatus, UploadIntent, utcnow
from event_gallery.pipeline.coordinator import EventFields, FileResult, MetadataTransactionCoordinator
from event_gallery.pipeline.reconciliation import OrphanReconciler, ReconcileReport

HOUR = timedelta(hours=1)


async def _add_intent(database, storage, batch_id, status, age=2 * HOUR, upload=True):
    keys = [f"events/{batch_id}/originals/0000.jpg", f"events/{batch_id}/watermarks/0000.jpg"]
    if upload:
        for key in keys:
            folder, filename = key.rsplit("/", 1)
            await storage.upload(b"jpeg", filename, folder=folder)

    created = utcnow() - age
    async with database.session_maker() as session:
        session.add(UploadIntent(id=batch_id, status=status, storage_keys=keys, created_at=created, updated_at=created))
        await session.commit()
    return keys


async def _status(database, batch_id):
    async with database.session_maker() as session:
        return (await session.get(UploadIntent, batch_id)).status


@pytest.mark.asyncio
async def test_abandoned_objects_are_deleted(database, storage):
    # Abandoned intents are swept regardless of age
    keys = await _add_intent(database, storage, "failed-batch", IntentStatus.ABANDONED, age=timedelta(minutes=1))

    report = await OrphanReconciler(database.session_maker, storage).sweep(HOUR)

    assert report.intents_reconciled == 1
    assert report.deleted == 2
    for key in keys:
        assert not await storage.exists(key)
    assert await _status(database, "failed-batch") is IntentStatus.RECONCILED


@pytest.mark.asyncio
async def test_stale_pending_intent_is_swept_but_fresh_one_is_not(database, storage):
    stale = await _add_intent(database, storage, "crashed-batch", IntentStatus.PENDING)
    fresh = await _add_intent(database, storage, "running-batch", IntentStatus.PENDING, age=timedelta(minutes=1))

    report = await OrphanReconciler(database.session_maker, storage).sweep(HOUR)

    assert report.intents_scanned == 1
    assert not await storage.exists(stale[0])
    assert await storage.exists(fresh[0])
    assert await _status(database, "running-batch") is IntentStatus.PENDING


@pytest.mark.asyncio
async def test_fulfilled_intents_are_left_alone(database, storage):
    keys = await _add_intent(database, storage, "good-batch", IntentStatus.FULFILLED)

    report = await OrphanReconciler(database.session_maker, storage).sweep(HOUR)

    assert report.intents_scanned == 0
    assert await storage.exists(keys[0])


@pytest.mark.asyncio
async def test_referenced_keys_are_kept(database, storage):
    keys = await _add_intent(database, storage, "half-batch", IntentStatus.ABANDONED)
    async with database.session_maker() as session:
        event = Event(title="t", date=utcnow(), location="l", user_id=1)
        session.add(event)
        await session.flush()
        session.add(Image(event_id=event.id, url="u", storage_key=keys[0], variant=ImageVariant.ORIGINAL, order=0))
        await session.commit()

    report = await OrphanReconciler(database.session_maker, storage).sweep(HOUR)

    assert report.referenced == 1
    assert report.deleted == 1
    assert await storage.exists(keys[0])
    assert not await storage.exists(keys[1])


@pytest.mark.asyncio
async def test_already_missing_objects_still_reconcile(database, storage):
    await _add_intent(database, storage, "gone-batch", IntentStatus.ABANDONED, upload=False)

    report = await OrphanReconciler(database.session_maker, storage).sweep(HOUR)

    assert report.missing == 2
    assert await _status(database, "gone-batch") is IntentStatus.RECONCILED


@pytest.mark.asyncio
async def test_failed_delete_keeps_intent_for_next_sweep(database, storage):
    await _add_intent(database, storage, "flaky-batch", IntentStatus.ABANDONED)
    storage.delete = AsyncMock(side_effect=StorageError("rate limited"))

    report = await OrphanReconciler(database.session_maker, storage).sweep(HOUR)

    assert report.intents_reconciled == 0
    assert len(report.failed_keys) == 2
    assert await _status(database, "flaky-batch") is IntentStatus.ABANDONED


@pytest.mark.asyncio
async def test_late_commit_after_sweep_is_rejected(database, storage):
    await _add_intent(database, storage, "slow-batch", IntentStatus.PENDING)
    await OrphanReconciler(database.session_maker, storage).sweep(HOUR)

    coordinator = MetadataTransactionCoordinator(database.session_maker)
    fields = EventFields(title="t", date=datetime(2025, 7, 15), location="l")
    results = [FileResult(order=0, original_url="o", watermark_url="w")]
    with pytest.raises(PersistenceError):
        await coordinator.commit_event(fields, 1, results, intent_id="slow-batch")

    async with database.session_maker() as session:
        assert (await session.execute(select(func.count()).select_from(Event))).scalar_one() == 0
    assert await _status(database, "slow-batch") is IntentStatus.RECONCILED


@pytest.mark.asyncio
async def test_intent_fulfilled_after_selection_is_not_swept(database, storage):
    keys = await _add_intent(database, storage, "racing-batch", IntentStatus.PENDING)
    async with database.session_maker() as session:
        selected = await session.get(UploadIntent, "racing-batch")

    # The batch commits between selection and claim
    async with database.session_maker() as session:
        async with session.begin():
            (await session.get(UploadIntent, "racing-batch")).mark(IntentStatus.FULFILLED)

    report = ReconcileReport()
    reconciled = await OrphanReconciler(database.session_maker, storage)._reconcile_intent(selected, report)

    assert reconciled is False
    assert report.deleted == 0
    for key in keys:
        assert await storage.exists(key)
    assert await _status(database, "racing-batch") is IntentStatus.FULFILLED
