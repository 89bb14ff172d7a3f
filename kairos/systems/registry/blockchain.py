"""
KairOS -- Blockchain Registry

Extension point for on-chain storage of chipUID -> publicKey mappings.
Both operations raise NotImplementedError until a contract integration
exists; the coordinator never wires this backend in by default.
"""

from __future__ import annotations

from typing import Any

import structlog

from kairos.primitives.identity import IdentityRecord
from kairos.systems.registry.base import KeyRegistry

logger = structlog.get_logger("kairos.systems.registry.blockchain")


class BlockchainRegistry(KeyRegistry):
    """On-chain registry. Defined, not yet implemented."""

    name = "blockchain"

    def __init__(self, contract_address: str) -> None:
        self._contract_address = contract_address
        self._logger = logger.bind(component="blockchain_registry", contract=contract_address)

    @property
    def contract_address(self) -> str:
        return self._contract_address

    async def register_identity(self, record: IdentityRecord) -> str:
        raise NotImplementedError("Blockchain registry not yet implemented")

    async def lookup_public_key(self, chip_uid: str) -> bytes | None:
        raise NotImplementedError("Blockchain registry not yet implemented")

    @property
    def stats(self) -> dict[str, Any]:
        return {"name": self.name, "contract_address": self._contract_address, "implemented": False}
