"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- /api/v1/events - Batch event creation and event management
- /api/v1/images - Single-image upload and image management
- /api/v1/metrics - Prometheus metrics
"""

from fastapi import APIRouter

from event_gallery.api.v1.events import router as events_router
from event_gallery.api.v1.images import router as images_router
from event_gallery.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(events_router, prefix="/events", tags=["events"])
api_v1_router.include_router(images_router, prefix="/images", tags=["images"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
