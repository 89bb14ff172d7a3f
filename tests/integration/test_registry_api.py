"""
Integration tests for the registry and peer HTTP endpoints.
"""

from __future__ import annotations

import httpx
import pytest

from kairos.config import KairosConfig
from kairos.main import create_app
from kairos.service import KairosService
from kairos.systems.registry.records import build_record

CHIP = "04:12:34:56:78:9A:BC"


def make_app(**p2p_overrides):
    config = KairosConfig(
        central={"enabled": False},
        p2p={"gateways": [], "local_node_url": "", **p2p_overrides},
    )
    return create_app(config)


def make_client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://node.test")


def registration_body(pin: str = "1234") -> dict:
    record = build_record(CHIP, pin)
    return {
        "chipUID": record.chip_uid,
        "publicKey": list(record.public_key),
        "deviceID": record.device_id,
        "did": record.did,
    }


# ─── Registry ────────────────────────────────────────────────────


class TestRegistryEndpoints:
    @pytest.mark.asyncio
    async def test_register_and_lookup(self):
        async with make_client(make_app()) as client:
            body = registration_body()
            response = await client.post("/api/registry/register", json=body)
            assert response.status_code == 200
            assert response.json() == {
                "success": True,
                "message": "Public key registered successfully",
                "chipUID": CHIP,
                "did": body["did"],
            }

            response = await client.get(f"/api/registry/lookup/{CHIP}")
            data = response.json()
            assert response.status_code == 200
            assert data["success"] is True
            assert data["publicKey"] == body["publicKey"]
            assert data["deviceID"] == body["deviceID"]
            assert {"registeredAt", "lastSeen"} <= set(data)

    @pytest.mark.asyncio
    async def test_reregistration_updates(self):
        async with make_client(make_app()) as client:
            await client.post("/api/registry/register", json=registration_body("1234"))
            updated = registration_body("5678")
            response = await client.post("/api/registry/register", json=updated)
            assert response.json()["message"] == "Public key updated"

            data = (await client.get(f"/api/registry/lookup/{CHIP}")).json()
            assert data["publicKey"] == updated["publicKey"]

    @pytest.mark.asyncio
    async def test_missing_fields_rejected(self):
        async with make_client(make_app()) as client:
            response = await client.post("/api/registry/register", json={"chipUID": CHIP})
            assert response.status_code == 400
            assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_bad_key_rejected(self):
        async with make_client(make_app()) as client:
            body = {**registration_body(), "publicKey": [1] * 31}
            response = await client.post("/api/registry/register", json=body)
            assert response.status_code == 400
            assert response.json()["error"] == "Invalid public key format - must be 32-byte array"

    @pytest.mark.asyncio
    async def test_unknown_chip_is_404(self):
        async with make_client(make_app()) as client:
            response = await client.get("/api/registry/lookup/04:00:00:00:00:00:00")
            assert response.status_code == 404
            assert response.json() == {
                "success": False,
                "error": "Public key not found",
                "chipUID": "04:00:00:00:00:00:00",
            }

    @pytest.mark.asyncio
    async def test_batch_lookup_shape(self):
        async with make_client(make_app()) as client:
            await client.post("/api/registry/register", json=registration_body())
            response = await client.post(
                "/api/registry/lookup", json={"chipUIDs": [CHIP, "missing"]},
            )
            data = response.json()
            assert data["success"] is True
            assert data["updated"] == 1
            assert data["total"] == 2
            assert isinstance(data["syncTimestamp"], int)
            assert data["entries"][0]["chipUID"] == CHIP

    @pytest.mark.asyncio
    async def test_batch_lookup_requires_array(self):
        async with make_client(make_app()) as client:
            response = await client.post("/api/registry/lookup", json={"chipUIDs": CHIP})
            assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_listing_truncates_keys(self):
        async with make_client(make_app()) as client:
            body = registration_body()
            await client.post("/api/registry/register", json=body)
            data = (await client.get("/api/registry")).json()

            assert data["totalEntries"] == 1
            entry = data["entries"][0]
            assert entry["publicKeyHash"] == bytes(body["publicKey"][:4]).hex() + "..."
            assert "publicKey" not in entry


# ─── Peer Endpoints ──────────────────────────────────────────────


class TestPeerEndpoints:
    @pytest.mark.asyncio
    async def test_serves_local_record_and_content(self):
        app = make_app()
        service: KairosService = app.state.service
        record = build_record(CHIP, "1234")
        await service.p2p.register_identity(record)

        async with make_client(app) as client:
            response = await client.get(f"/api/p2p/identity/{CHIP}")
            assert response.json() == record.to_wire()

            response = await client.get(f"/api/p2p/content/{record.content_hash}")
            assert response.json() == record.to_wire()

            response = await client.get("/api/p2p/content/QmMissing")
            assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_status_and_health(self):
        async with make_client(make_app(peer_id="peer-status")) as client:
            status = (await client.get("/api/p2p/status")).json()
            assert status["status"] == "ok"
            assert status["data"]["peerId"] == "peer-status"

            health = (await client.get("/health")).json()
            assert health["status"] == "healthy"
            assert health["registryEntries"] == 0
