"""Integration-test fixtures.

All integration tests share a single event-loop so that the module-level
SQLAlchemy async engine pool and Redis pool (both created at import time)
remain valid across the entire test session.

Requires PostgreSQL + Redis reachable at DATABASE_URL / REDIS_URL with
migrations applied (alembic upgrade head); otherwise the suite is skipped.
"""

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config.settings import settings
from src.main import app
from src.pm_common.database import engine
from src.pm_common.redis_client import get_redis
from src.pm_gateway.auth.jwt_handler import create_access_token

ADMIN_ID = "integration-admin"


@pytest_asyncio.fixture(loop_scope="session", scope="session", autouse=True)
async def live_stack() -> None:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1 FROM mobile_payments LIMIT 1"))
        await (await get_redis()).ping()
    except (OSError, SQLAlchemyError, RedisError) as e:
        pytest.skip(f"live stack unavailable: {e}")


@pytest_asyncio.fixture(loop_scope="session", scope="session")
async def client() -> AsyncClient:  # type: ignore[override]
    """Session-scoped async HTTP client — keeps the engine pool alive."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def bearer(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def user_headers() -> dict[str, str]:
    """A fresh user with no account row yet."""
    return bearer(f"it-user-{uuid.uuid4().hex[:8]}")


@pytest.fixture
def admin_headers(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    monkeypatch.setattr(settings, "ADMIN_USER_IDS", [ADMIN_ID])
    return bearer(ADMIN_ID)
