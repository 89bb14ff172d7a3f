"""
KairOS -- P2P Discovery Protocol

Gossip over the local discovery bus. Four message variants:

  peer-announcement      {peerId, endpoint, timestamp, knownHashes}
                         periodic; receivers keep a peer table and prune
                         peers silent for longer than the peer TTL
  identity-announcement  {chipUID, contentHash, timestamp}
                         sent on registration so peers can prefetch
  hash-request           {chipUID, requestId, requesterId}
  hash-response          {chipUID, requestId, requesterId, record}
                         any peer holding the record answers; the requester
                         accepts the first response that verifies

Inbound messages are de-duplicated and rate limited per claimed origin
before dispatch. The peer table is bounded and only accepts http(s)
endpoints.

The announce/prune loop and the receive loop are background tasks owned by
this object and bound to start() / stop().
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import OrderedDict
from contextlib import suppress
from typing import Any, Awaitable, Callable, assert_never
from urllib.parse import urlsplit

import structlog
from pydantic import ValidationError

from kairos.primitives.common import new_id, now_ms
from kairos.primitives.discovery import (
    DiscoveryMessage,
    HashRequest,
    HashRequestData,
    HashResponse,
    HashResponseData,
    IdentityAnnouncement,
    IdentityAnnouncementData,
    PeerAnnouncement,
    PeerAnnouncementData,
    PeerNode,
    parse_message,
    serialize_message,
)
from kairos.primitives.identity import IdentityRecord
from kairos.systems.discovery.bus import BusEndpoint, DiscoveryBus
from kairos.systems.safety.rate_limit import RateLimiter

logger = structlog.get_logger("kairos.systems.discovery.gossip")

RecordProvider = Callable[[str], dict[str, Any] | None]
HashesProvider = Callable[[], list[str]]
AnnouncementHandler = Callable[[IdentityAnnouncementData], Awaitable[None]]
RecordAcceptor = Callable[[dict[str, Any]], IdentityRecord | None]


def is_http_endpoint(url: str) -> bool:
    """True for an absolute http(s) URL with a host and a usable port."""
    if not url.isprintable() or any(c.isspace() for c in url):
        return False
    try:
        parts = urlsplit(url)
        port_ok = parts.port is None or parts.port > 0
    except ValueError:
        return False
    return port_ok and parts.scheme in ("http", "https") and bool(parts.hostname)


def _origin(message: DiscoveryMessage) -> str | None:
    """The sender a message claims, for rate limiting. None is never limited."""
    match message:
        case PeerAnnouncement(data=data):
            return f"peer:{data.peer_id}"
        case HashRequest(data=data):
            return f"peer:{data.requester_id}"
        case IdentityAnnouncement(data=data):
            return f"chip:{data.chip_uid}"
        case HashResponse():
            # only ever matched against our own pending searches
            return None
        case _:
            assert_never(message)


class _PendingSearch:
    __slots__ = ("chip_uid", "accept", "future")

    def __init__(
        self,
        chip_uid: str,
        accept: RecordAcceptor,
        future: asyncio.Future[IdentityRecord | None],
    ) -> None:
        self.chip_uid = chip_uid
        self.accept = accept
        self.future = future


class P2PDiscovery:
    """
    Peer table plus request/response gossip for one node.

    The peer table is owned and mutated only by this instance.
    """

    def __init__(
        self,
        bus: DiscoveryBus,
        peer_id: str,
        node_endpoint: str = "",
        announce_interval_s: float = 30.0,
        peer_ttl_s: float = 300.0,
        inbox_size: int = 500,
        record_provider: RecordProvider | None = None,
        hashes_provider: HashesProvider | None = None,
        on_identity_announced: AnnouncementHandler | None = None,
        max_messages_per_origin: int = 50,
        origin_window_s: float = 60.0,
        dedupe_size: int = 1_000,
        max_peers: int = 256,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._bus = bus
        self._peer_id = peer_id
        self._node_endpoint = node_endpoint
        self._announce_interval_s = announce_interval_s
        self._peer_ttl_ms = int(peer_ttl_s * 1000)
        self._inbox_size = inbox_size
        self._record_provider = record_provider
        self._hashes_provider = hashes_provider
        self._on_identity_announced = on_identity_announced
        self._dedupe_size = dedupe_size
        self._max_peers = max_peers
        self._clock = clock

        self._endpoint: BusEndpoint | None = None
        self._peers: dict[str, PeerNode] = {}
        self._pending: dict[str, _PendingSearch] = {}
        # digests of recently handled messages, oldest first
        self._seen: OrderedDict[bytes, None] = OrderedDict()
        self._limiter = RateLimiter(
            max_events=max_messages_per_origin,
            window_s=origin_window_s,
            name="discovery_limiter",
            clock=clock,
        )
        self._receive_task: asyncio.Task[None] | None = None
        self._announce_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self._messages_received = 0
        self._duplicates_dropped = 0
        self._rate_limited = 0
        self._peers_rejected = 0
        self._responses_rejected = 0
        self._prefetch_failures = 0
        self._logger = logger.bind(component="p2p_discovery", peer_id=peer_id)

    # ─── Lifecycle ──────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._endpoint is not None

    @property
    def peer_id(self) -> str:
        return self._peer_id

    async def start(self) -> None:
        if self._endpoint is not None:
            return
        self._endpoint = self._bus.connect(inbox_size=self._inbox_size)
        self._receive_task = asyncio.create_task(
            self._receive_loop(self._endpoint), name=f"discovery-receive-{self._peer_id}",
        )
        self._announce_task = asyncio.create_task(
            self._announce_loop(), name=f"discovery-announce-{self._peer_id}",
        )
        self._logger.info("discovery_started", bus=self._bus.name)

    async def stop(self) -> None:
        if self._endpoint is None:
            return

        # finished tasks already reported through their done-callbacks
        tasks = [
            t for t in (self._announce_task, self._receive_task, *self._background)
            if t and not t.done()
        ]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._background.clear()
        self._announce_task = None
        self._receive_task = None

        for pending in self._pending.values():
            if not pending.future.done():
                pending.future.set_result(None)
        self._pending.clear()

        self._endpoint.close()
        self._endpoint = None
        self._logger.info("discovery_stopped", peers=len(self._peers))

    # ─── Peer Table ─────────────────────────────────────────────────

    @property
    def peers(self) -> dict[str, PeerNode]:
        return dict(self._peers)

    def prune_peers(self) -> int:
        """Drop peers unseen for longer than the TTL. Returns the number removed."""
        cutoff = self._clock() - self._peer_ttl_ms
        stale = [pid for pid, peer in self._peers.items() if peer.last_seen < cutoff]
        for pid in stale:
            del self._peers[pid]
        if stale:
            self._logger.debug("peers_pruned", count=len(stale), remaining=len(self._peers))
        return len(stale)

    # ─── Outbound ───────────────────────────────────────────────────

    def _publish(self, message: DiscoveryMessage) -> bool:
        if self._endpoint is None:
            return False
        self._endpoint.publish(message)
        return True

    def announce_peer(self) -> None:
        known = self._hashes_provider() if self._hashes_provider else []
        self._publish(PeerAnnouncement(data=PeerAnnouncementData(
            peer_id=self._peer_id,
            endpoint=self._node_endpoint,
            timestamp=self._clock(),
            known_hashes=known,
        )))

    def announce_identity(self, chip_uid: str, content_hash: str) -> None:
        sent = self._publish(IdentityAnnouncement(data=IdentityAnnouncementData(
            chip_uid=chip_uid,
            content_hash=content_hash,
            timestamp=self._clock(),
        )))
        if sent:
            self._logger.debug("identity_announced", chip_uid=chip_uid, content_hash=content_hash)

    async def search(
        self,
        chip_uid: str,
        accept: RecordAcceptor,
        timeout_s: float = 10.0,
    ) -> IdentityRecord | None:
        """
        Broadcast a hash-request and wait for the first response that
        `accept` turns into a verified record. None on timeout.
        """
        if self._endpoint is None:
            return None

        request_id = new_id()
        future: asyncio.Future[IdentityRecord | None] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingSearch(chip_uid, accept, future)

        self._publish(HashRequest(data=HashRequestData(
            chip_uid=chip_uid,
            request_id=request_id,
            requester_id=self._peer_id,
        )))

        try:
            return await asyncio.wait_for(future, timeout=timeout_s)
        except asyncio.TimeoutError:
            self._logger.debug("search_timed_out", chip_uid=chip_uid, request_id=request_id)
            return None
        finally:
            self._pending.pop(request_id, None)

    # ─── Inbound ────────────────────────────────────────────────────

    def _admit(self, message: DiscoveryMessage) -> bool:
        """Drop exact duplicates and messages over their origin's rate."""
        digest = hashlib.sha256(serialize_message(message)).digest()
        if digest in self._seen:
            self._duplicates_dropped += 1
            return False
        self._seen[digest] = None
        while len(self._seen) > self._dedupe_size:
            self._seen.popitem(last=False)

        origin = _origin(message)
        if origin is not None and not self._limiter.hit(origin):
            self._rate_limited += 1
            return False
        return True

    async def handle_message(self, message: DiscoveryMessage) -> None:
        self._messages_received += 1
        if not self._admit(message):
            return
        match message:
            case PeerAnnouncement(data=data):
                self._handle_peer_announcement(data)
            case IdentityAnnouncement(data=data):
                self._handle_identity_announcement(data)
            case HashRequest(data=data):
                self._handle_hash_request(data)
            case HashResponse(data=data):
                self._handle_hash_response(data)
            case _:
                assert_never(message)

    def _handle_peer_announcement(self, data: PeerAnnouncementData) -> None:
        if data.peer_id == self._peer_id:
            return
        if data.endpoint and not is_http_endpoint(data.endpoint):
            self._peers_rejected += 1
            self._logger.debug("peer_endpoint_rejected", peer=data.peer_id)
            return
        if data.peer_id not in self._peers and len(self._peers) >= self._max_peers:
            self.prune_peers()
            if len(self._peers) >= self._max_peers:
                self._peers_rejected += 1
                self._logger.debug("peer_table_full", peer=data.peer_id)
                return
        self._peers[data.peer_id] = PeerNode(
            peer_id=data.peer_id,
            endpoint=data.endpoint,
            last_seen=self._clock(),
            known_hashes=list(data.known_hashes),
        )

    def _handle_identity_announcement(self, data: IdentityAnnouncementData) -> None:
        if self._on_identity_announced is None:
            return
        task = asyncio.create_task(self._on_identity_announced(data))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._prefetch_failures += 1
            self._logger.warning("identity_prefetch_failed", error=str(exc))

    def _handle_hash_request(self, data: HashRequestData) -> None:
        if data.requester_id == self._peer_id or self._record_provider is None:
            return
        record = self._record_provider(data.chip_uid)
        if record is None:
            return
        self._publish(HashResponse(data=HashResponseData(
            chip_uid=data.chip_uid,
            request_id=data.request_id,
            requester_id=data.requester_id,
            record=record,
        )))

    def _handle_hash_response(self, data: HashResponseData) -> None:
        pending = self._pending.get(data.request_id)
        if pending is None or pending.future.done() or data.chip_uid != pending.chip_uid:
            return
        record = pending.accept(data.record)
        if record is None:
            self._responses_rejected += 1
            self._logger.debug("search_response_rejected", chip_uid=data.chip_uid)
            return
        pending.future.set_result(record)

    # ─── Background Loops ───────────────────────────────────────────

    async def _receive_loop(self, endpoint: BusEndpoint) -> None:
        while True:
            raw = await endpoint.receive()
            try:
                message = parse_message(raw)
            except ValidationError:
                self._logger.debug("discovery_message_malformed")
                continue
            try:
                await self.handle_message(message)
            except Exception as exc:
                self._logger.error(
                    "discovery_message_failed", type=message.type, error=str(exc),
                )

    async def _announce_loop(self) -> None:
        while True:
            self.announce_peer()
            self.prune_peers()
            await asyncio.sleep(self._announce_interval_s)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "peer_id": self._peer_id,
            "running": self.running,
            "peers": len(self._peers),
            "pending_searches": len(self._pending),
            "messages_received": self._messages_received,
            "duplicates_dropped": self._duplicates_dropped,
            "rate_limited": self._rate_limited,
            "peers_rejected": self._peers_rejected,
            "responses_rejected": self._responses_rejected,
            "prefetch_failures": self._prefetch_failures,
        }
