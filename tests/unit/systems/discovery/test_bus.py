"""
Unit tests for the in-process discovery bus.
"""

from __future__ import annotations

import pytest

from kairos.primitives.discovery import (
    PeerAnnouncement,
    PeerAnnouncementData,
    parse_message,
)
from kairos.systems.discovery.bus import DiscoveryBus


def announcement(peer_id: str) -> PeerAnnouncement:
    return PeerAnnouncement(data=PeerAnnouncementData(peer_id=peer_id, endpoint="", timestamp=1))


class TestDiscoveryBus:
    @pytest.mark.asyncio
    async def test_broadcast_reaches_others_not_sender(self):
        bus = DiscoveryBus()
        a, b, c = bus.connect(), bus.connect(), bus.connect()

        a.publish(announcement("a"))

        for endpoint in (b, c):
            message = parse_message(await endpoint.receive())
            assert isinstance(message, PeerAnnouncement)
            assert message.data.peer_id == "a"
        assert a._inbox.empty()

    @pytest.mark.asyncio
    async def test_wire_form_uses_type_and_camel_case(self):
        bus = DiscoveryBus()
        a, b = bus.connect(), bus.connect()
        a.publish(announcement("a"))

        raw = await b.receive()
        assert b'"type":"peer-announcement"' in raw
        assert b'"peerId":"a"' in raw
        assert b'"knownHashes":[]' in raw

    @pytest.mark.asyncio
    async def test_full_inbox_drops_oldest(self):
        bus = DiscoveryBus()
        a, b = bus.connect(), bus.connect(inbox_size=2)
        for peer in ("p1", "p2", "p3"):
            a.publish(announcement(peer))

        received = [parse_message(await b.receive()).data.peer_id for _ in range(2)]
        assert received == ["p2", "p3"]
        assert b.dropped == 1

    def test_closed_endpoint_disconnects(self):
        bus = DiscoveryBus()
        a = bus.connect()
        bus.connect()
        a.close()

        assert bus.endpoint_count == 1
        with pytest.raises(RuntimeError):
            a.publish(announcement("a"))
