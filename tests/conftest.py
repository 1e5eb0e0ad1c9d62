import io
from concurrent.futures import ThreadPoolExecutor
from typing import AsyncGenerator, Tuple

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image as PILImage

from event_gallery.core.config import settings
from event_gallery.core.database import Database
from event_gallery.core.storage import LocalStorage


def make_image_bytes(
    size: Tuple[int, int] = (64, 48),
    fmt: str = "PNG",
    color=(200, 40, 40),
    mode: str = "RGB"
) -> bytes:
    """Encode a solid-color image in memory."""
    buffer = io.BytesIO()
    PILImage.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def image_factory():
    return make_image_bytes


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'gallery.db'}")
    await db.create_db_and_tables()
    yield db
    await db.dispose()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_path=str(tmp_path / "storage"), base_url="/static/storage")


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=2)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
async def client(tmp_path, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "LOCAL_STORAGE_PATH", str(tmp_path / "storage"))

    from event_gallery.main import app

    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
