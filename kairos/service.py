"""
KairOS -- Identity Service

KairosService owns every stateful component of a node and wires them
together by reference:

  OfflineKeyCache      -- last-resort local keys
  P2PRegistry          -- content-addressed store + gossip discovery
  CentralizedRegistry  -- HTTP registry client
  RegistryCoordinator  -- registration / lookup fallback policies
  ChallengeLedger      -- issued challenges, single use
  RateLimiter          -- verification attempts per chipUID
  ChallengeAuthenticator, PendantEnrollment

Lifecycle:
  initialize()     -- start discovery
  enroll()         -- derive, sign, and publish a new pendant
  authenticate()   -- full challenge-response for a tapped pendant
  shutdown()       -- stop discovery, close HTTP clients
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from kairos.config import KairosConfig
from kairos.primitives.identity import (
    AuthResult,
    ChipIdentity,
    PendantData,
    RegistrationResult,
)
from kairos.systems.cache.offline import OfflineKeyCache
from kairos.systems.discovery.bus import DiscoveryBus
from kairos.systems.identity.authenticator import ChallengeAuthenticator
from kairos.systems.identity.challenge import ChallengeLedger
from kairos.systems.identity.enrollment import PendantEnrollment
from kairos.systems.registry.centralized import CentralizedRegistry
from kairos.systems.registry.p2p import P2PRegistry
from kairos.systems.registry.resolver import RegistryCoordinator
from kairos.systems.safety.rate_limit import RateLimiter

logger = structlog.get_logger("kairos.service")


class KairosService:
    """
    One KairOS node.

    Nodes that should gossip with each other are given the same
    DiscoveryBus. HTTP clients may be injected (tests pass clients built
    on httpx.MockTransport or ASGITransport).
    """

    def __init__(
        self,
        config: KairosConfig,
        bus: DiscoveryBus | None = None,
        central_client: httpx.AsyncClient | None = None,
        p2p_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._initialized = False
        self._logger = logger.bind(component="kairos_service", node_id=config.node_id)

        self.cache = OfflineKeyCache(
            max_size=config.cache.max_size,
            max_age_hours=config.cache.max_age_hours,
        )

        self.p2p: P2PRegistry | None = None
        if config.p2p.enabled:
            self.p2p = P2PRegistry(config.p2p, bus=bus, client=p2p_client)

        self.central: CentralizedRegistry | None = None
        if config.central.enabled:
            self.central = CentralizedRegistry(
                api_url=config.central.api_url,
                timeout_s=config.central.timeout_s,
                client=central_client,
            )

        self.registry = RegistryCoordinator(
            cache=self.cache,
            p2p=self.p2p,
            central=self.central,
        )
        self.ledger = ChallengeLedger(
            validity_window_s=config.challenge.validity_window_s,
            enforce_single_use=config.challenge.enforce_single_use,
            max_outstanding=config.challenge.max_outstanding,
        )
        self.auth_limiter: RateLimiter | None = None
        if config.challenge.max_attempts > 0:
            self.auth_limiter = RateLimiter(
                max_events=config.challenge.max_attempts,
                window_s=config.challenge.attempt_window_s,
                name="auth_limiter",
            )
        self.authenticator = ChallengeAuthenticator(
            config=config.identity,
            ledger=self.ledger,
            resolver=self.registry,
            limiter=self.auth_limiter,
        )
        self.enrollment = PendantEnrollment(config=config.identity, resolver=self.registry)

    # ─── Lifecycle ──────────────────────────────────────────────────

    async def initialize(self) -> None:
        if self._initialized:
            return
        if self.p2p is not None:
            await self.p2p.start()
        self._initialized = True
        self._logger.info(
            "kairos_service_initialized",
            p2p=self.p2p is not None,
            centralized=self.central is not None,
        )

    async def shutdown(self) -> None:
        if self.p2p is not None:
            await self.p2p.close()
        if self.central is not None:
            await self.central.close()
        self._initialized = False
        self._logger.info("kairos_service_shutdown", cache=self.cache.stats)

    async def __aenter__(self) -> KairosService:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    # ─── Operations ─────────────────────────────────────────────────

    async def enroll(
        self,
        chip_uid: str,
        pin: str,
    ) -> tuple[ChipIdentity, PendantData, RegistrationResult]:
        return await self.enrollment.initialize_pendant(chip_uid, pin)

    def generate_challenge(self, context: str | None = None) -> str:
        return self.authenticator.generate_challenge(context)

    async def authenticate(
        self,
        pendant: PendantData,
        pin: str,
        challenge: str | None = None,
    ) -> AuthResult:
        return await self.authenticator.authenticate(pendant, pin, challenge)

    async def sync_cache(self) -> int:
        return await self.registry.sync_cache()

    def network_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "nodeId": self._config.node_id,
            "p2pEnabled": self.p2p is not None,
            "centralizedEnabled": self.central is not None,
            "cachedKeys": len(self.cache),
        }
        if self.p2p is not None:
            status.update(self.p2p.network_status())
        return status

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "node_id": self._config.node_id,
            "initialized": self._initialized,
            "registry": self.registry.stats,
            "authenticator": self.authenticator.stats,
            "p2p": self.p2p.stats if self.p2p else None,
            "central": self.central.stats if self.central else None,
        }
