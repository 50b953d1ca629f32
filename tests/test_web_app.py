"""Тесты HTTP-оболочки."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

import smartnet.web.app as web_app
from smartnet.web.app import app, get_db_session, get_membership_service

from helpers import PAYER, jetton_tx


@pytest_asyncio.fixture
async def client(session, service):
    async def _session():
        yield session

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_membership_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestRoutes:
    """Маршруты и коды ответов."""

    @pytest.mark.asyncio
    async def test_healthz(self, client):
        response = await client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_purchase_accepts_camel_case(self, client, chain):
        chain["h1"] = jetton_tx()
        response = await client.post(
            "/api/referrals/purchase", json={"txHash": "h1", "walletAddress": PAYER}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["business_id"].startswith("IEPR")

    @pytest.mark.asyncio
    async def test_reused_hash_is_conflict(self, client, chain):
        chain["h1"] = jetton_tx()
        await client.post("/api/referrals/purchase", json={"tx_hash": "h1", "wallet_address": PAYER})
        response = await client.post(
            "/api/referrals/purchase", json={"tx_hash": "h1", "wallet_address": PAYER}
        )
        assert response.status_code == 409
        assert response.json()["reason"] == "tx_already_used"

    @pytest.mark.asyncio
    async def test_verification_failure_is_bad_request(self, client, chain):
        chain["h1"] = jetton_tx(amount="1")
        response = await client.post(
            "/api/referrals/purchase", json={"tx_hash": "h1", "wallet_address": PAYER}
        )
        assert response.status_code == 400
        assert response.json()["reason"] == "no_matching_transfer"

    @pytest.mark.asyncio
    async def test_pending_chain_is_bad_gateway(self, client):
        response = await client.post(
            "/api/referrals/purchase", json={"tx_hash": "unknown", "wallet_address": PAYER}
        )
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_unknown_account_is_not_found(self, client):
        response = await client.get("/api/referrals/404/stats")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_dashboard_by_wallet(self, client):
        response = await client.get("/api/referrals/dashboard", params={"walletAddress": PAYER})
        assert response.status_code == 200
        assert response.json()["profile"]["wallet_address"] == PAYER

    @pytest.mark.asyncio
    async def test_withdraw_validation(self, client, make_account):
        account = await make_account(wallet_address=PAYER, rewards_balance_usdt=1.0)
        response = await client.post(
            "/api/referrals/withdraw", json={"accountId": account.id, "amount": 5}
        )
        assert response.status_code == 400
        assert response.json()["reason"] == "insufficient_balance"


class TestUnexpectedErrors:
    @pytest.mark.asyncio
    async def test_generic_500_without_trace(self, session):
        broken = MagicMock()
        broken.stats = AsyncMock(side_effect=RuntimeError("db exploded"))

        async def _session():
            yield session

        app.dependency_overrides[get_db_session] = _session
        app.dependency_overrides[get_membership_service] = lambda: broken
        try:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/api/referrals/1/stats")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
        assert response.json() == {"ok": False, "reason": "internal_error"}


class TestLifespan:
    @pytest.mark.asyncio
    async def test_shutdown_closes_chain_reader(self, monkeypatch):
        close = AsyncMock()
        monkeypatch.setattr(web_app, "close_transaction_reader", close)
        async with web_app.lifespan(app):
            close.assert_not_awaited()
        close.assert_awaited_once()
