"""
KairOS -- P2P Discovery System

Peer announcements and record search over a local broadcast bus.
"""

from kairos.systems.discovery.bus import DiscoveryBus
from kairos.systems.discovery.gossip import P2PDiscovery

__all__ = ["DiscoveryBus", "P2PDiscovery"]
