"""
KairOS -- Key Registry System

Where public keys are published and looked up: a centralized HTTP API, a
peer-to-peer content-addressed store, and a blockchain placeholder, tied
together by the RegistryCoordinator's fallback policies.
"""

from kairos.systems.registry.base import KeyRegistry
from kairos.systems.registry.blockchain import BlockchainRegistry
from kairos.systems.registry.centralized import CentralizedRegistry
from kairos.systems.registry.p2p import P2PRegistry
from kairos.systems.registry.resolver import RegistryCoordinator

__all__ = [
    "BlockchainRegistry",
    "CentralizedRegistry",
    "KeyRegistry",
    "P2PRegistry",
    "RegistryCoordinator",
]
