# tests/integration/test_market_flow.py
"""Integration tests for the market lifecycle over HTTP.

Admin creates a market, users quote and trade against it, admin resolves it,
and disputes are filed against the resolution.
Requires a migrated database (alembic upgrade head) and Redis.
"""

import uuid

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio(loop_scope="session")


async def _create_market(client: AsyncClient, admin_headers: dict[str, str]) -> dict:
    resp = await client.post(
        "/api/v1/admin/markets",
        json={
            "title": f"Integration market {uuid.uuid4().hex[:8]}",
            "liquidity_ngwee": 1_000_000,
            "initial_yes_price": "0.4",
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


class TestUnauthenticated:
    async def test_list_markets_requires_auth(self, client):
        resp = await client.get("/api/v1/markets")
        assert resp.status_code == 401

    async def test_admin_requires_admin(self, client, user_headers):
        resp = await client.post(
            "/api/v1/admin/markets",
            json={"title": "Nope", "liquidity_ngwee": 100},
            headers=user_headers,
        )
        assert resp.status_code == 403


class TestLifecycle:
    async def test_create_and_read(self, client, admin_headers, user_headers):
        market = await _create_market(client, admin_headers)
        assert market["status"] == "ACTIVE"
        assert market["yes_price"] == pytest.approx(0.4)

        resp = await client.get(f"/api/v1/markets/{market['id']}", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["title"] == market["title"]

        resp = await client.get("/api/v1/markets?status=ALL&limit=100", headers=user_headers)
        assert resp.status_code == 200

    async def test_quote_does_not_move_pool(self, client, admin_headers, user_headers):
        market = await _create_market(client, admin_headers)
        resp = await client.get(
            f"/api/v1/markets/{market['id']}/quote?outcome=YES&side=BUY&amount=10000",
            headers=user_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["fee_ngwee"] == 200

        after = await client.get(f"/api/v1/markets/{market['id']}", headers=user_headers)
        assert after.json()["data"]["pool_yes_shares"] == market["pool_yes_shares"]

    async def test_trade_without_funds(self, client, admin_headers, user_headers):
        market = await _create_market(client, admin_headers)
        resp = await client.post(
            "/api/v1/trade",
            json={"market_id": market["id"], "outcome": "YES", "side": "BUY", "amount": "5000"},
            headers=user_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == 2001

    async def test_resolve_then_finalize_waits_for_window(self, client, admin_headers):
        market = await _create_market(client, admin_headers)
        resp = await client.post(
            f"/api/v1/admin/markets/{market['id']}/resolve",
            json={"outcome": "NO"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["outcome"] == "NO"

        again = await client.post(
            f"/api/v1/admin/markets/{market['id']}/resolve",
            json={"outcome": "YES"},
            headers=admin_headers,
        )
        assert again.status_code == 422

        finalize = await client.post(
            f"/api/v1/admin/markets/{market['id']}/finalize", headers=admin_headers
        )
        assert finalize.status_code == 422
        assert finalize.json()["code"] == 3003


class TestDisputes:
    async def test_active_market_cannot_be_disputed(self, client, admin_headers, user_headers):
        market = await _create_market(client, admin_headers)
        resp = await client.post(
            f"/api/v1/markets/{market['id']}/dispute",
            json={"reason": "The market has not even been resolved yet."},
            headers=user_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == 3004

    async def test_dispute_requires_a_position(self, client, admin_headers, user_headers):
        market = await _create_market(client, admin_headers)
        await client.post(
            f"/api/v1/admin/markets/{market['id']}/resolve",
            json={"outcome": "YES"},
            headers=admin_headers,
        )
        resp = await client.post(
            f"/api/v1/markets/{market['id']}/dispute",
            json={"reason": "The official result was NO, not YES."},
            headers=user_headers,
        )
        assert resp.status_code == 403

        listed = await client.get(
            f"/api/v1/markets/{market['id']}/disputes", headers=user_headers
        )
        assert listed.status_code == 200
        assert listed.json()["data"]["items"] == []

    async def test_admin_lists_open_disputes(self, client, admin_headers):
        resp = await client.get("/api/v1/admin/disputes?status=OPEN", headers=admin_headers)
        assert resp.status_code == 200
        assert isinstance(resp.json()["data"]["items"], list)
