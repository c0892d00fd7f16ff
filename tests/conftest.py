"""Shared test fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient

from src.pm_gateway.auth.jwt_handler import create_access_token
from src.main import app


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('user-1')}"}
