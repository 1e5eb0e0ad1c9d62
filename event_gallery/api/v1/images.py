"""
Images Endpoint

POST   /api/v1/images       - Add one image (original + watermark) to an event
GET    /api/v1/images/{id}  - Image row
PATCH  /api/v1/images/{id}  - Partial update (mirrored onto the paired original)
DELETE /api/v1/images/{id}  - Delete the image together with its pair
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from event_gallery.api.dependencies import get_image_repo, get_orchestrator
from event_gallery.api.v1.events import read_uploads
from event_gallery.modules.events.repositories import ImageRepository
from event_gallery.modules.events.schemas import ImageCreatedResponse, ImageUpdateRequest
from event_gallery.pipeline.orchestrator import IngestionOrchestrator

router = APIRouter()


@router.post("", response_model=ImageCreatedResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    event_id: int = Form(...),
    description: Optional[str] = Form(None),
    file: UploadFile = File(...),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator)
):
    """Append one image pair to an existing event at the next free position."""
    incoming = await read_uploads([file], [description] if description is not None else None)
    result = await orchestrator.ingest_image(event_id, incoming[0])

    return ImageCreatedResponse(
        event_id=result.event_id,
        batch_id=result.batch_id,
        original_id=result.original_id,
        watermark_id=result.watermark_id,
        order=result.order,
        message=result.message
    )


@router.get("/{image_id}")
async def get_image(
    image_id: int,
    repo: ImageRepository = Depends(get_image_repo)
) -> Dict[str, Any]:
    image = await repo.get(image_id)
    return image.to_response_dict()


@router.patch("/{image_id}")
async def update_image(
    image_id: int,
    body: ImageUpdateRequest,
    repo: ImageRepository = Depends(get_image_repo)
) -> Dict[str, Any]:
    image = await repo.update(image_id, body.to_patch())
    return image.to_response_dict()


@router.delete("/{image_id}")
async def delete_image(
    image_id: int,
    repo: ImageRepository = Depends(get_image_repo)
) -> Dict[str, Any]:
    removed = await repo.delete(image_id)
    return {"status": "success", "deleted_ids": removed}
