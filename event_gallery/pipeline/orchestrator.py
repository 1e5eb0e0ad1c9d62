"""
Ingestion Orchestrator

Runs a batch-create request end to end:

    IDLE -> TRANSCODING -> UPLOADING -> ALL_TRANSCODED_AND_UPLOADED
         -> COMMITTING -> DONE            (FAILED from any of them)

1. Validate every file before any side effect.
2. Record an upload intent listing every storage key the batch will create.
3. Fan out one pipeline per file (probe -> overlay -> transcode -> two
   uploads), capped per request; CPU work runs in the shared executor.
4. First failure cancels the in-flight pipelines and fails the batch.
5. Results are collected by input position and committed in one transaction.

Uploaded objects are never deleted here. A failed batch's intent is marked
ABANDONED and the reconciliation sweep removes its objects later.
"""

import asyncio
import contextvars
import functools
import time
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from event_gallery.core.config import Settings
from event_gallery.core.exceptions import (
    EmptyBatchError,
    FileTooLargeError,
    GalleryBaseException,
    InvalidInputError,
    NotFoundError,
    PersistenceError,
    UnsupportedMediaTypeError,
)
from event_gallery.core.logging import LogContext, get_logger
from event_gallery.core.metrics import (
    record_batch_finished,
    record_batch_started,
    record_orphaned_assets,
)
from event_gallery.core.storage import IStorage
from event_gallery.modules.events.models import Event, IntentStatus, UploadIntent
from event_gallery.pipeline.coordinator import EventFields, FileResult, MetadataTransactionCoordinator
from event_gallery.pipeline.transcoder import render_renditions
from event_gallery.pipeline.uploader import RemoteAssetUploader, UploadReceipt
from event_gallery.pipeline.watermark import build_watermark_label

logger = get_logger(__name__)


class BatchState(str, Enum):
    """Batch-level ingestion states."""
    IDLE = "IDLE"
    TRANSCODING = "TRANSCODING"
    UPLOADING = "UPLOADING"
    ALL_TRANSCODED_AND_UPLOADED = "ALL_TRANSCODED_AND_UPLOADED"
    COMMITTING = "COMMITTING"
    DONE = "DONE"
    FAILED = "FAILED"


class PipelineStage(str, Enum):
    """Per-file stages."""
    VALIDATE = "validate"
    PROBE = "probe"
    WATERMARK = "watermark"
    TRANSCODE = "transcode"
    UPLOAD = "upload"
    COMMIT = "commit"


_TERMINAL_STATES = {BatchState.DONE, BatchState.FAILED}


@dataclass
class IncomingFile:
    """One raw file of a batch as received from the client."""
    filename: str
    content_type: str
    data: bytes
    description: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class BatchTracker:
    """State of one batch; also the source of the failure report."""
    batch_id: str
    file_count: int
    state: BatchState = BatchState.IDLE
    file_stages: Dict[int, PipelineStage] = field(default_factory=dict)
    uploaded_keys: List[str] = field(default_factory=list)
    failed_stage: Optional[str] = None
    failed_index: Optional[int] = None

    def transition(self, state: BatchState):
        if self.state in _TERMINAL_STATES:
            raise RuntimeError(f"Batch {self.batch_id} already finished in state {self.state.value}")
        logger.debug("batch_state_changed", from_state=self.state.value, to_state=state.value)
        self.state = state

    def enter_file_stage(self, index: int, stage: PipelineStage):
        self.file_stages[index] = stage
        if stage is PipelineStage.UPLOAD and self.state is BatchState.TRANSCODING:
            self.transition(BatchState.UPLOADING)

    def fail(self, stage: Optional[str], index: Optional[int]):
        if self.state in _TERMINAL_STATES:
            return
        self.failed_stage = stage
        self.failed_index = index
        self.transition(BatchState.FAILED)


@dataclass(frozen=True)
class IngestionResult:
    event_id: int
    batch_id: str
    image_count: int
    message: str = "Event created successfully"


@dataclass(frozen=True)
class SingleImageResult:
    event_id: int
    batch_id: str
    original_id: int
    watermark_id: int
    order: int
    message: str = "Image uploaded successfully"


def validate_batch(
    files: Sequence[IncomingFile],
    allowed_media_types: frozenset,
    max_size_bytes: int
):
    """
    Reject the batch before any processing begins.

    Raises:
        EmptyBatchError: If there are no files
        UnsupportedMediaTypeError: If a file's media type is not allowed
        FileTooLargeError: If a file exceeds the size cap
        InvalidInputError: If a file is empty
    """
    if not files:
        raise EmptyBatchError()

    for index, file in enumerate(files):
        media_type = (file.content_type or "").split(";")[0].strip().lower()
        if media_type not in allowed_media_types:
            raise UnsupportedMediaTypeError(file.content_type or "unknown", batch_index=index)
        if file.size > max_size_bytes:
            raise FileTooLargeError(file.filename, file.size, max_size_bytes, batch_index=index)
        if file.size == 0:
            raise InvalidInputError(f"Empty file: {file.filename}", batch_index=index)


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """
    Await all awaitables concurrently; on the first failure cancel the rest.

    Results are returned in argument order. When several fail before
    cancellation takes effect, the lowest-positioned failure is raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failed = [task for task in tasks if task.done() and not task.cancelled() and task.exception() is not None]
    if failed:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        raise failed[0].exception()

    return [task.result() for task in tasks]


class IngestionOrchestrator:
    """Sequences transcode, upload and commit for event image batches."""

    def __init__(
        self,
        storage: IStorage,
        session_maker: async_sessionmaker,
        executor: Optional[Executor],
        settings: Settings
    ):
        self.storage = storage
        self.session_maker = session_maker
        self.executor = executor
        self.settings = settings
        self.uploader = RemoteAssetUploader(storage)
        self.coordinator = MetadataTransactionCoordinator(session_maker)

    # =========================================================================
    # Public operations
    # =========================================================================

    async def ingest_event(
        self,
        fields: EventFields,
        user_id: int,
        files: Sequence[IncomingFile]
    ) -> IngestionResult:
        """Create an event from a batch of image files."""
        batch_id = str(uuid.uuid4())
        tracker = BatchTracker(batch_id=batch_id, file_count=len(files))

        with LogContext(batch_id=batch_id, stage=PipelineStage.VALIDATE.value):
            logger.info("batch_received", file_count=len(files), user_id=user_id)

            async def commit(results: List[FileResult]) -> int:
                return await self.coordinator.commit_event(fields, user_id, results, intent_id=batch_id)

            event_id = await self._run(
                tracker,
                files,
                max_size_bytes=self.settings.MAX_IMAGE_SIZE_BYTES,
                commit=commit
            )

        return IngestionResult(event_id=event_id, batch_id=batch_id, image_count=len(files))

    async def ingest_image(
        self,
        event_id: int,
        file: IncomingFile
    ) -> SingleImageResult:
        """Add one image pair to an existing event (single-image upload path)."""
        batch_id = str(uuid.uuid4())
        tracker = BatchTracker(batch_id=batch_id, file_count=1)
        appended: Dict[str, int] = {}

        with LogContext(batch_id=batch_id, stage=PipelineStage.VALIDATE.value):
            logger.info("single_image_received", event_id=event_id)

            async def commit(results: List[FileResult]) -> int:
                original_id, watermark_id, order = await self.coordinator.append_to_event(
                    event_id, results[0], intent_id=batch_id
                )
                appended.update(original_id=original_id, watermark_id=watermark_id, order=order)
                return event_id

            await self._run(
                tracker,
                [file],
                max_size_bytes=self.settings.MAX_SINGLE_IMAGE_SIZE_BYTES,
                commit=commit,
                require_event_id=event_id
            )

        return SingleImageResult(event_id=event_id, batch_id=batch_id, **appended)

    # =========================================================================
    # Batch execution
    # =========================================================================

    async def _run(
        self,
        tracker: BatchTracker,
        files: Sequence[IncomingFile],
        max_size_bytes: int,
        commit,
        require_event_id: Optional[int] = None
    ) -> int:
        start = time.time()
        intent_opened = False
        record_batch_started()

        try:
            validate_batch(files, self.settings.allowed_media_types, max_size_bytes)
            if require_event_id is not None:
                await self._require_event(require_event_id)

            label = build_watermark_label(self.settings.WATERMARK_BRAND, datetime.now(timezone.utc).year)

            await self._open_intent(tracker.batch_id, len(files))
            intent_opened = True

            tracker.transition(BatchState.TRANSCODING)
            results = await self._run_pipelines(tracker, files, label)
            tracker.transition(BatchState.ALL_TRANSCODED_AND_UPLOADED)

            tracker.transition(BatchState.COMMITTING)
            event_id = await commit(results)
            tracker.transition(BatchState.DONE)

        except GalleryBaseException as e:
            tracker.fail(e.stage, e.batch_index)
            await self._handle_failure(tracker, intent_opened, e.message)
            record_batch_finished("failed", time.time() - start, failure_stage=e.stage or "unknown")
            raise
        except BaseException as e:
            tracker.fail("internal", None)
            await self._handle_failure(tracker, intent_opened, f"{type(e).__name__}: {e}")
            record_batch_finished("failed", time.time() - start, failure_stage="internal")
            raise

        record_batch_finished("success", time.time() - start)
        logger.info(
            "batch_completed",
            event_id=event_id,
            file_count=len(files),
            duration_ms=int((time.time() - start) * 1000)
        )
        return event_id

    async def _run_pipelines(
        self,
        tracker: BatchTracker,
        files: Sequence[IncomingFile],
        label: str
    ) -> List[FileResult]:
        semaphore = asyncio.Semaphore(max(1, self.settings.INGEST_MAX_CONCURRENCY))
        # Slot per input position; completion order must not leak into `order`
        results: List[Optional[FileResult]] = [None] * len(files)

        async def run(index: int, file: IncomingFile):
            async with semaphore:
                results[index] = await self._process_file(tracker, index, file, label)

        await gather_or_cancel(*(run(index, file) for index, file in enumerate(files)))
        return [result for result in results if result is not None]

    async def _process_file(
        self,
        tracker: BatchTracker,
        index: int,
        file: IncomingFile,
        label: str
    ) -> FileResult:
        loop = asyncio.get_running_loop()

        tracker.enter_file_stage(index, PipelineStage.TRANSCODE)
        context = contextvars.copy_context()
        renditions = await loop.run_in_executor(
            self.executor,
            functools.partial(
                context.run,
                render_renditions,
                file.data,
                label,
                index,
                self.settings.ORIGINAL_JPEG_QUALITY,
                self.settings.WATERMARK_JPEG_QUALITY,
                self.settings.WATERMARK_FONT_PATH
            )
        )

        tracker.enter_file_stage(index, PipelineStage.UPLOAD)
        filename = self._filename(index)
        original, watermark = await gather_or_cancel(
            self._upload(tracker, renditions.original, self._category(tracker.batch_id, "originals"), filename, index),
            self._upload(tracker, renditions.watermark, self._category(tracker.batch_id, "watermarks"), filename, index),
        )

        return FileResult(
            order=index,
            original_url=original.url,
            watermark_url=watermark.url,
            original_key=original.key,
            watermark_key=watermark.key,
            description=file.description
        )

    async def _upload(
        self,
        tracker: BatchTracker,
        buffer: bytes,
        category: str,
        filename: str,
        index: int
    ) -> UploadReceipt:
        receipt = await self.uploader.upload(buffer, category, filename, batch_index=index)
        tracker.uploaded_keys.append(receipt.key)
        return receipt

    # =========================================================================
    # Upload intent bookkeeping
    # =========================================================================

    @staticmethod
    def _category(batch_id: str, kind: str) -> str:
        return f"events/{batch_id}/{kind}"

    @staticmethod
    def _filename(index: int) -> str:
        return f"{index:04d}.jpg"

    def planned_keys(self, batch_id: str, file_count: int) -> List[str]:
        keys = []
        for index in range(file_count):
            for kind in ("originals", "watermarks"):
                keys.append(self.uploader.planned_key(self._category(batch_id, kind), self._filename(index)))
        return keys

    async def _require_event(self, event_id: int):
        async with self.session_maker() as session:
            if await session.get(Event, event_id) is None:
                raise NotFoundError(f"Event with ID {event_id} not found", stage=PipelineStage.VALIDATE.value)

    async def _open_intent(self, batch_id: str, file_count: int):
        intent = UploadIntent(id=batch_id, storage_keys=self.planned_keys(batch_id, file_count))
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    session.add(intent)
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to record upload intent",
                stage="intent",
                details={"error_type": type(e).__name__}
            ) from e

    async def _handle_failure(self, tracker: BatchTracker, intent_opened: bool, reason: str):
        logger.error(
            "batch_failed",
            state=tracker.state.value,
            failed_stage=tracker.failed_stage,
            batch_index=tracker.failed_index,
            reason=reason
        )

        if tracker.uploaded_keys:
            record_orphaned_assets(len(tracker.uploaded_keys))
            logger.warning(
                "orphaned_assets_left",
                count=len(tracker.uploaded_keys),
                storage_keys=list(tracker.uploaded_keys)
            )

        if not intent_opened:
            return

        try:
            async with self.session_maker() as session:
                async with session.begin():
                    intent = await session.get(UploadIntent, tracker.batch_id)
                    if intent is not None and intent.status is IntentStatus.PENDING:
                        intent.mark(IntentStatus.ABANDONED, error_message=reason[:500])
        except SQLAlchemyError as e:
            # The sweep still picks the intent up once it times out
            logger.error("intent_abandon_failed", error=str(e))
