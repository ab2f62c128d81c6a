"""Tests for the REST facade."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest

from conftest import make_address
from pumpfun_creator_tracker.api import create_app
from pumpfun_creator_tracker.identity.models import CreatorIdentity
from pumpfun_creator_tracker.stats import CreatorStatsEngine
from pumpfun_creator_tracker.storage.database import DatabaseManager
from pumpfun_creator_tracker.storage.repos import (
    AlertRepository,
    CoinRepository,
    CreatorRepository,
    MigrationRepository,
)

OLD_MINT = make_address("MintApiX")
NEW_MINT = make_address("MintApiY")


@pytest.fixture
async def client(db: DatabaseManager, make_coin, creator_a) -> AsyncIterator[httpx.AsyncClient]:
    """Client over a store holding one social migrator with one alerted launch."""
    async with db.get_async_session() as session:
        await CreatorRepository(session).ensure(
            CreatorIdentity.social("@DevGuy", display_name="Dev Guy")
        )
        coins = CoinRepository(session)
        await coins.upsert(
            make_coin(OLD_MINT, creator_a, complete=True, created_timestamp=1_000, symbol="OLDX"),
            creator_key="devguy",
        )
        await coins.upsert(
            make_coin(NEW_MINT, creator_a, created_timestamp=2_000, symbol="NEWY"),
            creator_key="devguy",
        )
        await MigrationRepository(session).record(OLD_MINT, creator_key="devguy")
        await CreatorStatsEngine().recompute(session, "devguy")
        await AlertRepository(session).create_once(NEW_MINT, "devguy", {"migration_count": 1})

    transport = httpx.ASGITransport(app=create_app(db))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"

    @pytest.mark.asyncio
    async def test_unhealthy(self, tmp_path) -> None:
        db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/store.db")
        transport = httpx.ASGITransport(app=create_app(db))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            response = await http.get("/api/health")
        await db.dispose_async()

        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["database"] == "disconnected"


class TestCreators:
    @pytest.mark.asyncio
    async def test_list(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/creators", params={"limit": 10})

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["count"] == 1
        assert body["limit"] == 10
        assert body["data"][0]["creator_key"] == "devguy"
        assert body["data"][0]["success_rate"] == 50.0

    @pytest.mark.asyncio
    async def test_developers_alias(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/developers", params={"sort": "migrated_coins"})
        assert response.json()["count"] == 1

    @pytest.mark.asyncio
    async def test_invalid_sort(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/creators", params={"sort": "name"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_invalid_limit(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/creators", params={"limit": 0})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    @pytest.mark.asyncio
    async def test_detail_normalizes_handle(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/creators/@DevGuy")

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["creator"]["display_name"] == "Dev Guy"
        assert [c["symbol"] for c in data["coins"]] == ["NEWY", "OLDX"]

    @pytest.mark.asyncio
    async def test_unknown_creator(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/creators/nobody")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "data": None,
            "error": "Creator not found",
            "message": None,
        }


class TestCoins:
    @pytest.mark.asyncio
    async def test_recent(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/coins/recent")

        body = response.json()
        assert [c["mint"] for c in body["data"]] == [NEW_MINT, OLD_MINT]
        assert body["data"][0]["creator"]["display_name"] == "Dev Guy"

    @pytest.mark.asyncio
    async def test_detail(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"/api/coins/{OLD_MINT}")

        assert response.status_code == 200
        assert response.json()["data"]["is_migrated"] is True

    @pytest.mark.asyncio
    async def test_unknown_coin(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"/api/coins/{make_address('Nope')}")
        assert response.status_code == 404
        assert response.json()["error"] == "Coin not found"

    @pytest.mark.asyncio
    async def test_batch(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/coins/batch", json={"mints": [OLD_MINT, make_address("Nope")]}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["count"] == 1
        assert set(body["data"]) == {OLD_MINT}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"mints": []}, {"mints": "abc"}, {"mints": [1, 2]}])
    async def test_batch_rejects_bad_input(self, client: httpx.AsyncClient, payload) -> None:
        response = await client.post("/api/coins/batch", json=payload)

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_all(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/search", params={"q": "dev"})

        body = response.json()
        assert body["query"] == "dev"
        assert body["type"] == "all"
        assert [c["creator_key"] for c in body["data"]["creators"]] == ["devguy"]
        assert body["data"]["coins"] == []
        assert body["count"] == 1

    @pytest.mark.asyncio
    async def test_search_coins(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/search", params={"q": "newy", "type": "coin"})

        body = response.json()
        assert "creators" not in body["data"]
        assert [c["mint"] for c in body["data"]["coins"]] == [NEW_MINT]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{}, {"q": "  "}, {"q": "dev", "type": "wallet"}])
    async def test_search_rejects_bad_input(self, client: httpx.AsyncClient, params) -> None:
        response = await client.get("/api/search", params=params)
        assert response.status_code == 400


class TestAlerts:
    @pytest.mark.asyncio
    async def test_list_and_mark_read(self, client: httpx.AsyncClient) -> None:
        listing = (await client.get("/api/alerts", params={"unread_only": "true"})).json()
        assert listing["count"] == 1
        assert listing["unread_count"] == 1
        alert_id = listing["data"][0]["id"]
        assert listing["data"][0]["symbol"] == "NEWY"

        marked = await client.post(f"/api/alerts/{alert_id}/read")
        assert marked.status_code == 200
        assert marked.json()["message"] == "Alert marked as read"
        assert marked.json()["data"]["is_read"] is True

        unread = (await client.get("/api/alerts/unread/count")).json()
        assert unread == {"success": True, "count": 0}

    @pytest.mark.asyncio
    async def test_mark_unknown_alert(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/alerts/4242/read")

        assert response.status_code == 404
        assert response.json()["error"] == "Alert not found"


@pytest.mark.asyncio
async def test_stats(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/stats")

    data = response.json()["data"]
    assert data["total_coins"] == 2
    assert data["total_migrations"] == 1
    assert data["unread_alerts"] == 1


@pytest.mark.asyncio
async def test_unknown_route_uses_envelope(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.json()["success"] is False
