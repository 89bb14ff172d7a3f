"""
KairOS -- Local Discovery Bus

An in-process broadcast channel. Every participant connects an endpoint;
a message published on one endpoint is delivered, as JSON bytes, to every
other endpoint on the same bus (never back to the sender).

Each endpoint has a bounded inbox. A slow consumer never blocks a
publisher: when the inbox is full the oldest message is dropped.
"""

from __future__ import annotations

import asyncio

import structlog

from kairos.primitives.discovery import DiscoveryMessage, serialize_message

logger = structlog.get_logger("kairos.systems.discovery.bus")


class BusEndpoint:
    """One participant's connection to a DiscoveryBus."""

    def __init__(self, bus: DiscoveryBus, inbox_size: int = 500) -> None:
        self._bus = bus
        self._inbox: asyncio.Queue[bytes] = asyncio.Queue(maxsize=inbox_size)
        self._closed = False
        self._dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> int:
        return self._dropped

    def publish(self, message: DiscoveryMessage) -> None:
        """Broadcast a message to every other endpoint."""
        if self._closed:
            raise RuntimeError("Cannot publish on a closed discovery endpoint")
        self._bus._broadcast(self, serialize_message(message))

    async def receive(self) -> bytes:
        return await self._inbox.get()

    def _deliver(self, payload: bytes) -> None:
        if self._closed:
            return
        try:
            self._inbox.put_nowait(payload)
        except asyncio.QueueFull:
            # Inbox is full -- drop oldest entry and retry
            self._dropped += 1
            self._inbox.get_nowait()
            self._inbox.put_nowait(payload)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._bus._disconnect(self)


class DiscoveryBus:
    """A named broadcast channel shared by the nodes that hold a reference to it."""

    def __init__(self, name: str = "kairos-p2p-discovery") -> None:
        self.name = name
        self._endpoints: list[BusEndpoint] = []

    def connect(self, inbox_size: int = 500) -> BusEndpoint:
        endpoint = BusEndpoint(self, inbox_size=inbox_size)
        self._endpoints.append(endpoint)
        logger.debug("bus_endpoint_connected", bus=self.name, endpoints=len(self._endpoints))
        return endpoint

    @property
    def endpoint_count(self) -> int:
        return len(self._endpoints)

    def _disconnect(self, endpoint: BusEndpoint) -> None:
        try:
            self._endpoints.remove(endpoint)
        except ValueError:
            pass

    def _broadcast(self, sender: BusEndpoint, payload: bytes) -> None:
        for endpoint in list(self._endpoints):
            if endpoint is not sender:
                endpoint._deliver(payload)
