"""
Events Endpoint

POST   /api/v1/events       - Create an event from a batch of images
GET    /api/v1/events/{id}  - Event with its images
PATCH  /api/v1/events/{id}  - Partial update
DELETE /api/v1/events/{id}  - Delete event and its image rows
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from event_gallery.api.dependencies import get_event_repo, get_orchestrator
from event_gallery.modules.events.repositories import EventRepository
from event_gallery.modules.events.schemas import EventCreatedResponse, EventUpdateRequest, to_naive_utc
from event_gallery.pipeline.coordinator import EventFields
from event_gallery.pipeline.orchestrator import IncomingFile, IngestionOrchestrator

router = APIRouter()


async def read_uploads(
    files: List[UploadFile],
    descriptions: Optional[List[str]] = None
) -> List[IncomingFile]:
    """Buffer multipart uploads; descriptions pair with files by position."""
    descriptions = descriptions or []
    incoming = []
    for index, upload in enumerate(files):
        incoming.append(IncomingFile(
            filename=upload.filename or f"file-{index}",
            content_type=upload.content_type or "",
            data=await upload.read(),
            description=descriptions[index] if index < len(descriptions) else None
        ))
    return incoming


@router.post("", response_model=EventCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    title: str = Form(..., min_length=1, max_length=255),
    date: datetime = Form(...),
    location: str = Form(..., min_length=1, max_length=255),
    user_id: int = Form(...),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None, max_length=64),
    descriptions: Optional[List[str]] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator)
):
    """
    Create an event with its images.

    Every file is stored twice (original and watermarked). Either the event
    and all image rows are committed, or nothing is.
    """
    incoming = await read_uploads(files or [], descriptions)
    fields = EventFields(
        title=title,
        date=to_naive_utc(date),
        location=location,
        description=description,
        category=category
    )

    result = await orchestrator.ingest_event(fields, user_id, incoming)

    return EventCreatedResponse(
        event_id=result.event_id,
        batch_id=result.batch_id,
        image_count=result.image_count,
        message=result.message
    )


@router.get("/{event_id}")
async def get_event(
    event_id: int,
    repo: EventRepository = Depends(get_event_repo)
) -> Dict[str, Any]:
    event, images = await repo.get_with_images(event_id)
    return event.to_response_dict(images=images)


@router.patch("/{event_id}")
async def update_event(
    event_id: int,
    body: EventUpdateRequest,
    repo: EventRepository = Depends(get_event_repo)
) -> Dict[str, Any]:
    """Apply only the fields present in the body; an explicit null clears a nullable field."""
    await repo.update(event_id, body.to_patch())
    event, images = await repo.get_with_images(event_id)
    return event.to_response_dict(images=images)


@router.delete("/{event_id}")
async def delete_event(
    event_id: int,
    repo: EventRepository = Depends(get_event_repo)
) -> Dict[str, Any]:
    await repo.delete(event_id)
    return {"status": "success", "event_id": event_id, "message": "Event deleted"}
