"""
Orphan Reconciliation

Remote uploads cannot join the local transaction, so a failed batch can leave
objects in the content store that no row references. Every batch records an
UploadIntent listing its planned keys before uploading; this sweep deletes
the objects of intents that were ABANDONED, or left PENDING past the timeout
(process crash mid-batch), and marks them RECONCILED.
A stale PENDING intent is first claimed as ABANDONED, so a batch that
commits late fails instead of pointing at deleted objects.

Keys still referenced by an image row are never deleted.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Set

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from event_gallery.core.logging import LogContext, get_logger
from event_gallery.core.metrics import record_reconciled_asset
from event_gallery.core.storage import IStorage
from event_gallery.modules.events.models import Image, IntentStatus, UploadIntent, utcnow

logger = get_logger(__name__)

_SWEEPABLE = (IntentStatus.PENDING, IntentStatus.ABANDONED)


@dataclass
class ReconcileReport:
    intents_scanned: int = 0
    intents_reconciled: int = 0
    deleted: int = 0
    missing: int = 0
    referenced: int = 0
    failed_keys: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "intents_scanned": self.intents_scanned,
            "intents_reconciled": self.intents_reconciled,
            "deleted": self.deleted,
            "missing": self.missing,
            "referenced": self.referenced,
            "failed": len(self.failed_keys),
        }


class OrphanReconciler:
    """Deletes remote objects of failed or stale batches."""

    def __init__(self, session_maker: async_sessionmaker, storage: IStorage):
        self.session_maker = session_maker
        self.storage = storage

    async def _referenced_keys(self, keys: List[str]) -> Set[str]:
        if not keys:
            return set()
        async with self.session_maker() as session:
            rows = await session.execute(
                select(Image.storage_key).where(Image.storage_key.in_(keys))
            )
            return {key for key in rows.scalars().all() if key}

    async def sweep(self, older_than: timedelta) -> ReconcileReport:
        """
        Reconcile ABANDONED intents and PENDING ones created before now - older_than.

        An intent whose deletions all succeed is marked RECONCILED; one with a
        failed deletion stays as it is and is retried on the next sweep.
        """
        report = ReconcileReport()
        cutoff = utcnow() - older_than

        async with self.session_maker() as session:
            result = await session.execute(
                select(UploadIntent)
                .where(or_(
                    UploadIntent.status == IntentStatus.ABANDONED,
                    and_(
                        UploadIntent.status == IntentStatus.PENDING,
                        UploadIntent.created_at < cutoff
                    )
                ))
                .order_by(UploadIntent.created_at)
            )
            intents = list(result.scalars().all())

        for intent in intents:
            report.intents_scanned += 1
            with LogContext(batch_id=intent.id, stage="reconcile"):
                if await self._reconcile_intent(intent, report):
                    report.intents_reconciled += 1

        logger.info("orphan_sweep_finished", **report.to_dict())
        return report

    async def _claim(self, intent: UploadIntent) -> bool:
        """Move a stale PENDING intent to ABANDONED before touching its objects.

        Returns False when the batch committed in the meantime.
        """
        if intent.status is not IntentStatus.PENDING:
            return True
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(UploadIntent)
                    .where(
                        UploadIntent.id == intent.id,
                        UploadIntent.status == IntentStatus.PENDING
                    )
                    .values(
                        status=IntentStatus.ABANDONED,
                        error_message="Timed out; claimed by orphan sweep",
                        updated_at=utcnow()
                    )
                )
        if result.rowcount != 1:
            logger.info("orphan_claim_lost")
            return False
        return True

    async def _reconcile_intent(self, intent: UploadIntent, report: ReconcileReport) -> bool:
        if not await self._claim(intent):
            return False

        keys = list(intent.storage_keys or [])
        referenced = await self._referenced_keys(keys)
        clean = True

        for key in keys:
            if key in referenced:
                report.referenced += 1
                continue
            try:
                deleted = await self.storage.delete(key)
            except Exception as e:
                clean = False
                report.failed_keys.append(key)
                record_reconciled_asset("error")
                logger.warning("orphan_delete_failed", storage_key=key, error=str(e))
                continue

            if deleted:
                report.deleted += 1
                record_reconciled_asset("deleted")
                logger.info("orphan_deleted", storage_key=key)
            else:
                report.missing += 1
                record_reconciled_asset("missing")

        if not clean:
            return False

        async with self.session_maker() as session:
            async with session.begin():
                stored = await session.get(UploadIntent, intent.id)
                # A late commit may have fulfilled it meanwhile
                if stored is not None and stored.status in _SWEEPABLE:
                    stored.mark(IntentStatus.RECONCILED)
        return True
