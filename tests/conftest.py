import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from yumrun_api import models  # noqa: E402,F401
from yumrun_api.app import create_app  # noqa: E402
from yumrun_api.db.base import Base  # noqa: E402
from yumrun_api.db.session import get_session  # noqa: E402
from yumrun_api.observability.loyalty import get_loyalty_store  # noqa: E402
from yumrun_api.observability.scheduler import get_scheduler_store  # noqa: E402
from yumrun_api.services.notifications import InMemoryEmailBackend, NotificationService  # noqa: E402


@pytest.fixture(autouse=True)
def email_backend(monkeypatch) -> InMemoryEmailBackend:
    """Every NotificationService built during a test sends into one in-memory outbox."""

    backend = InMemoryEmailBackend()
    monkeypatch.setattr(NotificationService, "_build_default_backend", lambda self: backend)
    return backend


@pytest.fixture(autouse=True)
def reset_observability() -> None:
    get_loyalty_store().reset()
    get_scheduler_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app_with_db):
    app, _ = app_with_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
