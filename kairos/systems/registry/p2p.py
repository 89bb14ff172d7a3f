"""
KairOS -- Peer-to-Peer Registry

Content-addressed record store plus gossip discovery. No central server is
needed: records are pinned locally (and to a local IPFS node when one is
running), announced to peers, and located on lookup through, in order:

  1. records this node already holds
  2. known peers over HTTP            GET {endpoint}/p2p/identity/{chipUID}
  3. IPFS gateways                    GET {gateway}{hash}
  4. a broadcast hash-request on the discovery bus

Every record, from every source, is verified before it is trusted, stored,
or returned. Anything that fails verification is a miss.
"""

from __future__ import annotations

import secrets
from collections import OrderedDict
from typing import Any, Callable
from urllib.parse import quote

import httpx
import structlog

from kairos.config import P2PConfig
from kairos.errors import InvalidInputError
from kairos.primitives.common import now_ms
from kairos.primitives.discovery import IdentityAnnouncementData
from kairos.primitives.identity import IdentityRecord
from kairos.systems.discovery.bus import DiscoveryBus
from kairos.systems.discovery.gossip import P2PDiscovery
from kairos.systems.registry.base import KeyRegistry
from kairos.systems.registry.records import (
    accept_record,
    candidate_hashes,
    canonical_json,
    compute_content_hash,
    is_content_hash,
    verify_record,
)

logger = structlog.get_logger("kairos.systems.registry.p2p")

# Raised by httpx for URLs it cannot build or send, on top of HTTPError
_FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL, ValueError)


class P2PRegistry(KeyRegistry):
    """
    Decentralized registry backend.

    Owns its record store, its discovery participant, and (unless one is
    injected) its HTTP client. Use start()/stop() or `async with`.
    """

    name = "p2p"

    def __init__(
        self,
        config: P2PConfig | None = None,
        bus: DiscoveryBus | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config or P2PConfig()
        self._peer_id = self._config.peer_id or f"peer-{secrets.token_hex(8)}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
        )

        # chipUID -> newest verified record; contentHash -> wire record
        self._records: dict[str, IdentityRecord] = {}
        self._content: dict[str, dict[str, Any]] = {}
        # chipUID -> content hash most recently announced by a peer, oldest first
        self._announced: OrderedDict[str, str] = OrderedDict()

        self._discovery = P2PDiscovery(
            bus=bus or DiscoveryBus(),
            peer_id=self._peer_id,
            node_endpoint=self._config.endpoint,
            announce_interval_s=self._config.announce_interval_s,
            peer_ttl_s=self._config.peer_ttl_s,
            inbox_size=self._config.inbox_size,
            record_provider=self.get_local_record,
            hashes_provider=lambda: list(self._content),
            on_identity_announced=self._on_identity_announced,
            max_messages_per_origin=self._config.max_messages_per_origin,
            origin_window_s=self._config.origin_window_s,
            dedupe_size=self._config.dedupe_size,
            max_peers=self._config.max_peers,
            clock=clock,
        )

        self._hits: dict[str, int] = {"local": 0, "peer": 0, "gateway": 0, "broadcast": 0}
        self._misses = 0
        self._logger = logger.bind(component="p2p_registry", peer_id=self._peer_id)

    # ─── Lifecycle ──────────────────────────────────────────────────

    @property
    def peer_id(self) -> str:
        return self._peer_id

    @property
    def discovery(self) -> P2PDiscovery:
        return self._discovery

    async def start(self) -> None:
        await self._discovery.start()
        self._logger.info("p2p_registry_started", gateways=len(self._config.gateways))

    async def stop(self) -> None:
        await self._discovery.stop()

    async def close(self) -> None:
        await self.stop()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> P2PRegistry:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ─── Registration ───────────────────────────────────────────────

    async def register_identity(self, record: IdentityRecord) -> str:
        """
        Store a signed record, pin it, and announce it. Returns the
        content hash. Raises InvalidInputError for an unverifiable record.
        """
        if not verify_record(record):
            raise InvalidInputError(
                f"Identity record for {record.chip_uid} failed verification"
            )
        if not record.content_hash:
            record = record.model_copy(update={"content_hash": compute_content_hash(record)})

        self._remember(record)
        await self._pin_to_local_node(record)
        self._discovery.announce_identity(record.chip_uid, record.content_hash)

        self._logger.info(
            "identity_published",
            chip_uid=record.chip_uid,
            content_hash=record.content_hash,
        )
        return record.content_hash

    def _remember(self, record: IdentityRecord) -> None:
        self._content[record.content_hash] = record.to_wire()
        current = self._records.get(record.chip_uid)
        if current is None or record.registered_at >= current.registered_at:
            self._records[record.chip_uid] = record

    async def _pin_to_local_node(self, record: IdentityRecord) -> None:
        if not self._config.local_node_url:
            return
        try:
            response = await self._client.post(
                f"{self._config.local_node_url.rstrip('/')}/api/v0/add",
                files={"file": (f"{record.content_hash}.json", canonical_json(record.to_wire()))},
                timeout=self._config.local_node_timeout_s,
            )
            response.raise_for_status()
            self._logger.debug("record_pinned_locally", content_hash=record.content_hash)
        except _FETCH_ERRORS as exc:
            self._logger.debug("local_node_unavailable", error=str(exc))

    # ─── Lookup ─────────────────────────────────────────────────────

    async def lookup_public_key(self, chip_uid: str) -> bytes | None:
        record = await self.lookup_record(chip_uid)
        return record.public_key if record else None

    async def lookup_record(self, chip_uid: str) -> IdentityRecord | None:
        local = self._records.get(chip_uid)
        if local is not None:
            self._hits["local"] += 1
            return local

        record = await self._lookup_from_peers(chip_uid)
        source = "peer"
        if record is None:
            record = await self._lookup_from_gateways(chip_uid)
            source = "gateway"
        if record is None:
            record = await self._discovery.search(
                chip_uid,
                accept=lambda raw: accept_record(raw, chip_uid),
                timeout_s=self._config.broadcast_timeout_s,
            )
            source = "broadcast"

        if record is None:
            self._misses += 1
            self._logger.debug("p2p_lookup_miss", chip_uid=chip_uid)
            return None

        self._hits[source] += 1
        self._remember(record)
        self._logger.debug("p2p_lookup_hit", chip_uid=chip_uid, source=source)
        return record

    async def _lookup_from_peers(self, chip_uid: str) -> IdentityRecord | None:
        for peer in self._discovery.peers.values():
            if not peer.endpoint:
                continue
            url = f"{peer.endpoint.rstrip('/')}/p2p/identity/{quote(chip_uid, safe=':')}"
            raw = await self._get_json(url, self._config.peer_timeout_s)
            record = accept_record(raw, chip_uid) if raw is not None else None
            if record is not None:
                return record
        return None

    async def _lookup_from_gateways(self, chip_uid: str) -> IdentityRecord | None:
        hashes = candidate_hashes(chip_uid)
        announced = self._announced.get(chip_uid)
        if announced:
            hashes.insert(0, announced)

        for content_hash in hashes:
            raw = await self.fetch_content(content_hash)
            record = accept_record(raw, chip_uid) if raw is not None else None
            if record is not None:
                return record
        return None

    async def fetch_content(self, content_hash: str) -> dict[str, Any] | None:
        """Raw content by hash: the local store first, then each gateway."""
        local = self._content.get(content_hash)
        if local is not None:
            return local
        for gateway in self._config.gateways:
            raw = await self._get_json(f"{gateway}{content_hash}", self._config.gateway_timeout_s)
            if raw is not None:
                return raw
        return None

    async def _get_json(self, url: str, timeout_s: float) -> dict[str, Any] | None:
        try:
            response = await self._client.get(url, timeout=timeout_s)
        except _FETCH_ERRORS as exc:
            self._logger.debug("p2p_fetch_failed", url=url, error=str(exc))
            return None
        if response.status_code != 200:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    # ─── Gossip Callbacks ───────────────────────────────────────────

    def get_local_record(self, chip_uid: str) -> dict[str, Any] | None:
        record = self._records.get(chip_uid)
        return record.to_wire() if record else None

    def get_content(self, content_hash: str) -> dict[str, Any] | None:
        return self._content.get(content_hash)

    async def _on_identity_announced(self, data: IdentityAnnouncementData) -> None:
        if not is_content_hash(data.content_hash):
            self._logger.debug("announcement_hash_rejected", chip_uid=data.chip_uid)
            return
        self._announced[data.chip_uid] = data.content_hash
        self._announced.move_to_end(data.chip_uid)
        while len(self._announced) > self._config.max_announced:
            self._announced.popitem(last=False)
        if data.content_hash in self._content or len(self._content) >= self._config.max_records:
            return

        raw = await self.fetch_content(data.content_hash)
        record = accept_record(raw, data.chip_uid) if raw is not None else None
        if record is not None:
            self._remember(record)
            self._logger.debug("announced_record_prefetched", chip_uid=data.chip_uid)

    # ─── Status ─────────────────────────────────────────────────────

    def network_status(self) -> dict[str, Any]:
        return {
            "peerId": self._peer_id,
            "connectedPeers": len(self._discovery.peers),
            "knownRecords": len(self._records),
            "ipfsGateways": len(self._config.gateways),
        }

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "peer_id": self._peer_id,
            "records": len(self._records),
            "content": len(self._content),
            "hits": dict(self._hits),
            "misses": self._misses,
            "discovery": self._discovery.stats,
        }
