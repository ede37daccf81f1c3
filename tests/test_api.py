"""Tests for the HTTP API over the simulated stack."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from poolswap.api.app import create_app
from poolswap.config import Settings
from poolswap.factory import create_stack


@pytest.fixture
def stack():
    return create_stack(Settings(dry_run=True, debug=True))


@pytest_asyncio.fixture
async def client(stack):
    await stack.initialize()
    app = create_app(stack)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "poolswap"}

    @pytest.mark.asyncio
    async def test_detailed(self, client):
        response = await client.get("/health/detailed")

        data = response.json()
        assert data["quoting_service"] == {"name": "dry_run", "ready": True}
        assert data["config"]["dry_run"] is True
        assert data["config"]["signer"] == "(not set)"


class TestTokens:
    @pytest.mark.asyncio
    async def test_list(self, client):
        response = await client.get("/tokens")

        tokens = {t["symbol"]: t for t in response.json()["tokens"]}
        assert tokens["ETH"]["native"] is True
        assert tokens["USDT"]["requires_allowance_reset"] is True
        assert tokens["rUSDY"]["decimals"] == 18


class TestQuotes:
    @pytest.mark.asyncio
    async def test_direct_quote(self, client):
        response = await client.post(
            "/quotes", json={"from_asset": "ETH", "to_asset": "USDC", "amount": "1"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["route"] == "direct"
        assert data["path"] == ["ETH", "USDC"]
        assert data["slippage_bps"] == 50
        assert float(data["minimum_output"]) < float(data["output_amount"])
        assert data["legs"][0]["via_router"] is True

    @pytest.mark.asyncio
    async def test_multi_hop_quote(self, client):
        response = await client.post(
            "/quotes",
            json={"from_asset": "ETH", "to_asset": "rUSDY", "amount": "1", "slippage_bps": 100},
        )

        data = response.json()
        assert data["success"] is True
        assert data["route"] == "multi_hop"
        assert data["path"] == ["ETH", "USDC", "rUSDY"]
        assert len(data["legs"]) == 2
        assert data["legs"][1]["pools"] == ["factory-stable-ng-161"]
        assert data["legs"][0]["amount_out"] == data["legs"][1]["amount_in"]

    @pytest.mark.asyncio
    async def test_reverse_quote(self, client):
        response = await client.post(
            "/quotes",
            json={"from_asset": "USDC", "to_asset": "USDT", "amount": "100", "direction": "reverse"},
        )

        data = response.json()
        assert data["direction"] == "reverse"
        assert float(data["output_amount"]) >= 100 * 0.98

    @pytest.mark.asyncio
    async def test_tolerance_out_of_range(self, client):
        response = await client.post(
            "/quotes",
            json={"from_asset": "ETH", "to_asset": "USDC", "amount": "1", "slippage_bps": 9000},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, client):
        response = await client.post(
            "/quotes", json={"from_asset": "ETH", "to_asset": "USDC", "amount": "0"}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_token(self, client):
        response = await client.post(
            "/quotes", json={"from_asset": "ETH", "to_asset": "NOPE", "amount": "1"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_same_token(self, client):
        response = await client.post(
            "/quotes", json={"from_asset": "USDC", "to_asset": "usdc", "amount": "1"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_no_route(self, client, stack):
        del stack.chain.pools["factory-stable-ng-161"]

        response = await client.post(
            "/quotes", json={"from_asset": "ETH", "to_asset": "rUSDY", "amount": "1"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error"]
