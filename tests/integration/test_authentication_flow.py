"""
Integration tests: enrollment and authentication across two nodes.

Both nodes share one discovery bus and one centralized registry (the real
FastAPI router served through httpx.ASGITransport). No real network.
"""

from __future__ import annotations

import httpx
import pytest

from kairos.config import KairosConfig
from kairos.main import create_app
from kairos.primitives.identity import AuthState, KeySource
from kairos.service import KairosService
from kairos.systems.discovery.bus import DiscoveryBus
from kairos.systems.identity.authenticator import (
    INVALID_SIGNATURE_ERROR,
    LOOKUP_FAILED_ERROR,
    RATE_LIMITED_ERROR,
)

CHIP = "04:AA:BB:CC:DD:EE:FF"
PIN = "1234"
API = "http://registry.test/api"


# ─── Fixtures ────────────────────────────────────────────────────


def make_node_config(node_id: str, *, p2p: bool = True, central: bool = True) -> KairosConfig:
    return KairosConfig(
        node_id=node_id,
        central={"enabled": central, "api_url": API},
        p2p={
            "enabled": p2p,
            "gateways": [],
            "local_node_url": "",
            "broadcast_timeout_s": 0.3,
            "announce_interval_s": 3600,
        },
    )


def make_registry_client() -> httpx.AsyncClient:
    server = create_app(KairosConfig(p2p={"enabled": False}, central={"enabled": False}))
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=server))


def make_node(
    node_id: str,
    bus: DiscoveryBus,
    registry_client: httpx.AsyncClient,
    **kwargs,
) -> KairosService:
    return KairosService(
        make_node_config(node_id, **kwargs),
        bus=bus,
        central_client=registry_client,
        p2p_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404))),
    )


# ─── Scenarios ───────────────────────────────────────────────────


class TestAuthenticationScenarios:
    @pytest.mark.asyncio
    async def test_enroll_then_authenticate_on_another_node(self):
        bus, registry_client = DiscoveryBus(), make_registry_client()
        async with make_node("enroller", bus, registry_client) as enroller, \
                make_node("verifier", bus, registry_client) as verifier:
            identity, pendant, registration = await enroller.enroll(CHIP, PIN)
            assert registration.success
            assert registration.channels == ["p2p", "centralized"]

            challenge = verifier.generate_challenge("door")
            result = await verifier.authenticate(pendant, PIN, challenge)

            assert result.authenticated is True
            assert result.state is AuthState.VERIFIED
            assert result.did == identity.did
            assert result.session_token.startswith(f"kairos_{CHIP}_")

    @pytest.mark.asyncio
    async def test_wrong_pin_is_rejected(self):
        bus, registry_client = DiscoveryBus(), make_registry_client()
        async with make_node("enroller", bus, registry_client) as enroller, \
                make_node("verifier", bus, registry_client) as verifier:
            _, pendant, _ = await enroller.enroll(CHIP, PIN)

            result = await verifier.authenticate(pendant, "4321")

            assert result.authenticated is False
            assert result.error == INVALID_SIGNATURE_ERROR
            assert result.to_response() == {
                "authenticated": False,
                "error": INVALID_SIGNATURE_ERROR,
            }

    @pytest.mark.asyncio
    async def test_unregistered_chip_fails_lookup(self):
        bus, registry_client = DiscoveryBus(), make_registry_client()
        async with make_node("verifier", bus, registry_client) as verifier:
            _, pendant, _ = await KairosService(
                make_node_config("offline", p2p=False, central=False),
            ).enroll("04:01:02:03:04:05:06", PIN)

            assert await verifier.registry.resolve("04:01:02:03:04:05:06") is None
            result = await verifier.authenticate(pendant, PIN)

            assert result.to_response() == {
                "authenticated": False,
                "error": LOOKUP_FAILED_ERROR,
            }
            assert result.state is AuthState.LOOKUP_FAILED


# ─── Fallbacks ───────────────────────────────────────────────────


class TestFallbacks:
    @pytest.mark.asyncio
    async def test_centralized_only_verifier(self):
        bus, registry_client = DiscoveryBus(), make_registry_client()
        async with make_node("enroller", bus, registry_client) as enroller, \
                make_node("legacy", DiscoveryBus(), registry_client, p2p=False) as legacy:
            identity, pendant, _ = await enroller.enroll(CHIP, PIN)

            resolved = await legacy.registry.resolve(CHIP)
            assert resolved.source is KeySource.CENTRALIZED
            assert resolved.did == identity.did

            result = await legacy.authenticate(pendant, PIN)
            assert result.authenticated is True

    @pytest.mark.asyncio
    async def test_second_authentication_uses_cache(self):
        bus, registry_client = DiscoveryBus(), make_registry_client()
        async with make_node("enroller", bus, registry_client) as enroller, \
                make_node("verifier", bus, registry_client) as verifier:
            _, pendant, _ = await enroller.enroll(CHIP, PIN)

            assert (await verifier.authenticate(pendant, PIN)).authenticated
            assert (await verifier.authenticate(pendant, PIN)).authenticated
            assert verifier.registry.stats["resolved"]["cache"] == 1

    @pytest.mark.asyncio
    async def test_exported_cache_authenticates_offline(self):
        bus, registry_client = DiscoveryBus(), make_registry_client()
        async with make_node("enroller", bus, registry_client) as enroller:
            _, pendant, _ = await enroller.enroll(CHIP, PIN)
            await enroller.registry.resolve(CHIP)
            exported = enroller.cache.export()

        isolated = KairosService(make_node_config("isolated", p2p=False, central=False))
        isolated.cache.import_(exported)
        result = await isolated.authenticate(pendant, PIN)
        assert result.authenticated is True


class TestAttemptLimit:
    @pytest.mark.asyncio
    async def test_pin_guessing_is_cut_off(self):
        bus, registry_client = DiscoveryBus(), make_registry_client()
        async with make_node("enroller", bus, registry_client) as enroller:
            _, pendant, _ = await enroller.enroll(CHIP, PIN)
            limit = enroller.auth_limiter.stats["max_events"]

            for n in range(limit):
                result = await enroller.authenticate(pendant, f"{n:04d}")
                assert result.error == INVALID_SIGNATURE_ERROR

            blocked = await enroller.authenticate(pendant, PIN)
            assert blocked.authenticated is False
            assert blocked.error == RATE_LIMITED_ERROR
