"""
Celery Tasks

Periodic maintenance run by the worker under Celery beat.
"""

import asyncio
import traceback
from datetime import timedelta
from typing import Any, Dict, Optional

from event_gallery.core.celery_app import celery_app
from event_gallery.core.config import settings
from event_gallery.core.database import Database
from event_gallery.core.logging import get_logger
from event_gallery.core.storage import build_storage
from event_gallery.pipeline.reconciliation import OrphanReconciler

logger = get_logger(__name__)


async def _sweep(older_than: timedelta) -> Dict[str, Any]:
    database = Database(settings.DATABASE_URL)
    storage = build_storage(settings)
    try:
        report = await OrphanReconciler(database.session_maker, storage).sweep(older_than)
        return report.to_dict()
    finally:
        await storage.aclose()
        await database.dispose()


@celery_app.task(
    bind=True,
    name="event_gallery.pipeline.tasks.reconcile_orphaned_assets",
    max_retries=0,
    acks_late=True
)
def reconcile_orphaned_assets(self, older_than_seconds: Optional[int] = None) -> Dict[str, Any]:
    """Delete remote objects left behind by failed or abandoned batches."""
    older_than = timedelta(seconds=older_than_seconds or settings.ORPHAN_TIMEOUT_SECONDS)
    logger.info("task_reconcile_started", older_than_seconds=older_than.total_seconds())

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        report = loop.run_until_complete(_sweep(older_than))
    except Exception as e:
        logger.error("task_reconcile_failed", error=str(e), traceback=traceback.format_exc())
        raise
    finally:
        loop.close()

    logger.info("task_reconcile_completed", **report)
    return report
