"""API tests for chain, metrics and health endpoints."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from logibrew.audit import InMemoryAnchorSink
from logibrew.core.exceptions import ErrorCode
from logibrew.main import create_app, install_services
from logibrew.storage import InMemoryKeyValueStore

API = "/api/v1"


@pytest.fixture
def app_state():
    return {"kv": InMemoryKeyValueStore(), "anchor_sink": InMemoryAnchorSink()}


@pytest.fixture
def app(app_state):
    application = create_app()
    install_services(application, app_state["kv"], app_state["anchor_sink"])
    return application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await app.state.decision_logger.drain_anchors()


class TestChainEndpoints:
    """Tests for /chains."""

    @pytest.mark.asyncio
    async def test_log_decision(self, client):
        response = await client.post(
            f"{API}/chains/S1/records",
            json={"payload": {"outcome": "compliant", "delayCause": "weather"}},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["shipmentId"] == "S1"
        assert body["sequence"] == 0
        assert body["previousHash"] == "GENESIS"
        assert len(body["hash"]) == 64

    @pytest.mark.asyncio
    async def test_get_verified_chain(self, client):
        for i in range(3):
            await client.post(f"{API}/chains/S1/records", json={"payload": {"i": i}})

        response = await client.get(f"{API}/chains/S1")

        assert response.status_code == 200
        body = response.json()
        assert body["length"] == 3
        assert body["verification"]["valid"] is True
        assert body["verification"]["brokenAtSequence"] is None
        assert body["rootHash"] == body["records"][-1]["hash"]
        assert body["records"][1]["previousHash"] == body["records"][0]["hash"]

    @pytest.mark.asyncio
    async def test_tampered_chain_is_returned_as_data(self, client, app_state):
        for i in range(3):
            await client.post(f"{API}/chains/S1/records", json={"payload": {"i": i}})
        kv = app_state["kv"]
        shard = kv.raw("chain:S1#0")
        shard["records"][1]["payload"]["i"] = 99
        kv.overwrite("chain:S1#0", shard)

        response = await client.get(f"{API}/chains/S1")

        assert response.status_code == 200
        verification = response.json()["verification"]
        assert verification["valid"] is False
        assert verification["brokenAtSequence"] == 1
        assert verification["errorType"] == "record_tampered"

    @pytest.mark.asyncio
    async def test_schema_breaking_edit_is_returned_as_data(self, client, app_state):
        for i in range(3):
            await client.post(f"{API}/chains/S1/records", json={"payload": {"i": i}})
        kv = app_state["kv"]
        shard = kv.raw("chain:S1#0")
        shard["records"][2]["payload"] = ["not", "a", "mapping"]
        kv.overwrite("chain:S1#0", shard)

        response = await client.get(f"{API}/chains/S1")

        assert response.status_code == 200
        body = response.json()
        assert body["length"] == 2
        assert body["verification"]["valid"] is False
        assert body["verification"]["brokenAtSequence"] == 2
        assert body["verification"]["errorType"] == "record_unreadable"

    @pytest.mark.asyncio
    async def test_empty_chain(self, client):
        response = await client.get(f"{API}/chains/unknown")

        assert response.status_code == 200
        body = response.json()
        assert body["length"] == 0
        assert body["records"] == []
        assert body["verification"]["valid"] is True

    @pytest.mark.asyncio
    async def test_blank_shipment_id_is_rejected(self, client):
        response = await client.post(f"{API}/chains/%20/records", json={"payload": {}})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == ErrorCode.VALIDATION_ERROR.value
        assert set(response.json()) == {"error", "request_id", "timestamp"}

    @pytest.mark.asyncio
    async def test_anchor_check(self, app, client, app_state):
        for i in range(2):
            await client.post(f"{API}/chains/S1/records", json={"payload": {"i": i}})
        await app.state.decision_logger.drain_anchors()
        root = app_state["anchor_sink"].latest("shipment-S1")

        response = await client.post(
            f"{API}/chains/S1/anchor-check",
            json=root.model_dump(mode="json", by_alias=True),
        )

        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["recordsChecked"] == 2


class TestMetricsEndpoint:
    """Tests for /metrics/dashboard."""

    @pytest.mark.asyncio
    async def test_dashboard(self, client):
        for _ in range(3):
            await client.post(
                f"{API}/chains/S1/records",
                json={"payload": {"outcome": "compliant", "delayCause": "weather"}},
            )

        response = await client.get(
            f"{API}/metrics/dashboard",
            params={"shipment_ids": ["S1"], "window_days": 30},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["summary"]["complianceRate"] == 100.0
        assert body["summary"]["delayRate"] == 100.0
        assert body["delayPatterns"] == [{"cause": "weather", "count": 3}]
        assert body["hasData"] is True
        assert body["forecast"]["predictions"]

    @pytest.mark.asyncio
    async def test_dashboard_without_data(self, client):
        response = await client.get(f"{API}/metrics/dashboard")

        assert response.status_code == 200
        body = response.json()
        assert body["hasData"] is False
        assert body["summary"]["totalShipments"] == 0
        assert body["forecast"]["severity"] == "low"

    @pytest.mark.asyncio
    async def test_window_out_of_range(self, client):
        response = await client.get(f"{API}/metrics/dashboard", params={"window_days": 0})

        assert response.status_code == 422


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get(f"{API}/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["storage_backend"] == "memory"
        assert body["components"][0]["name"] == "storage"

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "operational"
