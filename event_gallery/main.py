"""
Event Gallery Ingestion Service - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Storage abstraction (local + Cloudinary)
- Shared transcode worker pool
"""

import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from event_gallery.core.config import settings
from event_gallery.core.database import Database
from event_gallery.core.logging import setup_logging, get_logger
from event_gallery.core.exceptions import register_exception_handlers
from event_gallery.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from event_gallery.core.storage import LocalStorage, build_storage
from event_gallery.api.v1 import api_v1_router
from event_gallery.pipeline.orchestrator import IngestionOrchestrator


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    # Initialize database
    app.state.database = Database(settings.DATABASE_URL, echo=False)
    await app.state.database.create_db_and_tables()
    logger.info("database_initialized")

    # Storage backend and transcode pool are shared by all requests
    app.state.storage = build_storage(settings)
    app.state.executor = ThreadPoolExecutor(
        max_workers=max(1, settings.TRANSCODE_WORKERS),
        thread_name_prefix="transcode"
    )
    app.state.orchestrator = IngestionOrchestrator(
        storage=app.state.storage,
        session_maker=app.state.database.session_maker,
        executor=app.state.executor,
        settings=settings
    )
    logger.info(
        "ingestion_ready",
        storage_backend=settings.STORAGE_BACKEND,
        transcode_workers=settings.TRANSCODE_WORKERS,
        max_concurrency=settings.INGEST_MAX_CONCURRENCY
    )

    # Set Prometheus app info
    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    startup_time = time.time() - startup_start
    logger.info("application_ready", startup_time_seconds=startup_time)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    app.state.executor.shutdown(wait=True)
    await app.state.storage.aclose()
    await app.state.database.dispose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Event image ingestion service:

    - **Batch create**: an event plus N images in one request
    - **Renditions**: every image stored as an original and a watermarked copy
    - **Atomic metadata**: the event and all image rows commit together, or not at all
    - **Orphan reconciliation**: remote objects of failed batches are swept later
    - **Observability**: Structured logging, Prometheus metrics

    ## API Versioning

    All endpoints are versioned under `/api/v1/`
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

# CORS
cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps ids out of the label set
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    # Add timing header
    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)


# =============================================================================
# Static Files
# =============================================================================

# Serve locally stored renditions in development
if settings.STORAGE_BACKEND.lower() == "local":
    app.mount(
        settings.LOCAL_STORAGE_BASE_URL,
        StaticFiles(directory=settings.LOCAL_STORAGE_PATH, check_dir=False),
        name="storage"
    )


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - verifies dependencies are available."""
    checks = {
        "database": False,
        "storage": False
    }

    try:
        async with request.app.state.database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_database_failed", error=str(e))

    storage = getattr(request.app.state, "storage", None)
    if isinstance(storage, LocalStorage):
        checks["storage"] = storage.base_path.is_dir()
    else:
        checks["storage"] = storage is not None

    all_ready = all(checks.values())

    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "ready": all_ready,
            "checks": checks,
            "storage_backend": settings.STORAGE_BACKEND
        }
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "event_gallery.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
