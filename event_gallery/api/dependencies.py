"""
FastAPI Dependencies

Everything is taken from app.state, where the lifespan placed it:
- Ingestion orchestrator (one per process, shares the transcode pool)
- Event/Image repositories (per-request with session)
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from event_gallery.core.database import get_session
from event_gallery.modules.events.repositories import EventRepository, ImageRepository
from event_gallery.pipeline.orchestrator import IngestionOrchestrator


# =============================================================================
# Process-wide components
# =============================================================================

def get_orchestrator(request: Request) -> IngestionOrchestrator:
    """Returns the ingestion orchestrator created at startup."""
    return request.app.state.orchestrator


# =============================================================================
# Database Repositories
# =============================================================================

def get_event_repo(session: AsyncSession = Depends(get_session)) -> EventRepository:
    """Returns event repository with async session."""
    return EventRepository(session)


def get_image_repo(session: AsyncSession = Depends(get_session)) -> ImageRepository:
    """Returns image repository with async session."""
    return ImageRepository(session)
