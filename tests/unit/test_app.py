"""App-level checks that need neither Postgres nor Redis."""

from httpx import AsyncClient


async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_missing_token_uses_error_envelope(client: AsyncClient) -> None:
    resp = await client.get("/api/v1/account/balance")
    assert resp.status_code == 401
    body = resp.json()
    assert body["code"] == 9005
    assert body["data"] is None
    assert body["request_id"] == resp.headers["X-Request-ID"]


async def test_invalid_token(client: AsyncClient) -> None:
    resp = await client.get(
        "/api/v1/account/balance", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert resp.status_code == 401


async def test_cron_requires_secret(client: AsyncClient) -> None:
    resp = await client.post("/api/v1/cron/reconcile")
    assert resp.status_code == 401


async def test_admin_requires_admin(client: AsyncClient, auth_headers: dict[str, str]) -> None:
    resp = await client.post(
        "/api/v1/admin/markets/mkt-1/finalize", headers=auth_headers
    )
    assert resp.status_code == 403
