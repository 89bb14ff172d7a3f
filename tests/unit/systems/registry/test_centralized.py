"""
Unit tests for CentralizedRegistry.

The happy paths run against the real registry router through
httpx.ASGITransport; failure paths use httpx.MockTransport.
"""

from __future__ import annotations

import httpx
import pytest

from kairos.config import KairosConfig
from kairos.errors import TransportError
from kairos.main import create_app
from kairos.systems.registry.centralized import CentralizedRegistry
from kairos.systems.registry.records import build_record

API = "http://registry.test/api"
CHIP = "04:C0:FF:EE:00:11:22"


# ─── Fixtures ────────────────────────────────────────────────────


def make_server_config() -> KairosConfig:
    return KairosConfig(p2p={"enabled": False}, central={"enabled": False})


def make_registry() -> CentralizedRegistry:
    app = create_app(make_server_config())
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
    return CentralizedRegistry(api_url=API, client=client)


def make_failing_registry(handler) -> CentralizedRegistry:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CentralizedRegistry(api_url=API, client=client)


# ─── Against the Router ──────────────────────────────────────────


class TestRegisterAndLookup:
    @pytest.mark.asyncio
    async def test_register_then_lookup(self):
        registry = make_registry()
        record = build_record(CHIP, "1234")

        assert await registry.register_identity(record) == CHIP
        assert await registry.lookup_public_key(CHIP) == record.public_key

        entry = await registry.lookup_entry(CHIP)
        assert entry.did == record.did
        assert entry.device_id == record.device_id

    @pytest.mark.asyncio
    async def test_unknown_chip_is_none(self):
        registry = make_registry()
        assert await registry.lookup_public_key("04:00:00:00:00:00:00") is None

    @pytest.mark.asyncio
    async def test_reregistration_replaces_key(self):
        registry = make_registry()
        await registry.register_identity(build_record(CHIP, "1234"))
        updated = build_record(CHIP, "5678")
        await registry.register_identity(updated)
        assert await registry.lookup_public_key(CHIP) == updated.public_key

    @pytest.mark.asyncio
    async def test_batch_lookup(self):
        registry = make_registry()
        first = build_record(CHIP, "1234")
        second = build_record("04:C0:FF:EE:00:11:33", "1234")
        await registry.register_identity(first)
        await registry.register_identity(second)

        entries = await registry.batch_lookup([CHIP, second.chip_uid, "missing"])
        assert {e.chip_uid for e in entries} == {CHIP, second.chip_uid}

    @pytest.mark.asyncio
    async def test_batch_lookup_respects_last_sync(self):
        registry = make_registry()
        await registry.register_identity(build_record(CHIP, "1234"))
        assert await registry.batch_lookup([CHIP], last_sync=2**53) == []


# ─── Failure Handling ────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_register_connection_error_raises_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        registry = make_failing_registry(handler)
        with pytest.raises(TransportError):
            await registry.register_identity(build_record(CHIP, "1234"))

    @pytest.mark.asyncio
    async def test_register_server_error_raises_transport_error(self):
        registry = make_failing_registry(lambda request: httpx.Response(500))
        with pytest.raises(TransportError):
            await registry.register_identity(build_record(CHIP, "1234"))

    @pytest.mark.asyncio
    async def test_lookup_connection_error_is_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        registry = make_failing_registry(handler)
        assert await registry.lookup_public_key(CHIP) is None
        assert registry.stats["failures"] == 1

    @pytest.mark.asyncio
    async def test_lookup_short_key_is_none(self):
        registry = make_failing_registry(
            lambda request: httpx.Response(
                200, json={"success": True, "chipUID": CHIP, "publicKey": [1, 2, 3]},
            )
        )
        assert await registry.lookup_public_key(CHIP) is None

    @pytest.mark.asyncio
    async def test_batch_lookup_failure_is_empty(self):
        registry = make_failing_registry(lambda request: httpx.Response(503))
        assert await registry.batch_lookup([CHIP]) == []

    @pytest.mark.asyncio
    async def test_lookup_sends_chip_in_path(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(404, json={"success": False})

        registry = make_failing_registry(handler)
        await registry.lookup_public_key(CHIP)
        assert seen == [f"/api/registry/lookup/{CHIP}"]


class TestMalformedApiUrl:
    def make_registry(self) -> CentralizedRegistry:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        return CentralizedRegistry(api_url="http://registry.test:abc/api", client=client)

    @pytest.mark.asyncio
    async def test_register_raises_transport_error(self):
        registry = self.make_registry()
        with pytest.raises(TransportError):
            await registry.register_identity(build_record(CHIP, "1234"))
        assert registry.stats["failures"] == 1

    @pytest.mark.asyncio
    async def test_lookups_are_misses(self):
        registry = self.make_registry()
        assert await registry.lookup_public_key(CHIP) is None
        assert await registry.batch_lookup([CHIP]) == []
