import os
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

os.environ.setdefault("HVACOPS_DB_NAME", "hvacops_test")
os.environ.setdefault("HVACOPS_CRON_SECRET", "test-cron-secret")

from hvacops.api.main import app  # noqa: E402
from hvacops.models.database import close_db, get_session_maker, init_db  # noqa: E402

# Set once the schema is created so DB-backed fixtures can skip cleanly
# when PostgreSQL is not reachable.
_db_available = False


@pytest.fixture(scope="session", autouse=True)
async def setup_db() -> AsyncGenerator[None]:
    global _db_available
    try:
        await init_db()
        _db_available = True
    except Exception:
        _db_available = False
    yield
    await close_db()


def _require_db() -> None:
    """Raise ``pytest.skip`` when the database is unreachable."""
    if not _db_available:
        pytest.skip("PostgreSQL is not available")


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession]:
    _require_db()
    session_maker = get_session_maker()
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
