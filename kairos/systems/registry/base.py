"""
KairOS -- Key Registry Contract

Every registry backend (centralized HTTP, blockchain, peer-to-peer) answers
the same two questions: "store this record" and "what is this chip's public
key". Lookups are fail-soft: a genuine miss and a transport failure both
come back as None, the latter with a logged warning.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from kairos.primitives.identity import IdentityRecord


class KeyRegistry(ABC):
    """Common contract for public-key registry backends."""

    name: str = "registry"

    @abstractmethod
    async def register_identity(self, record: IdentityRecord) -> str:
        """Store a signed record. Returns a backend-specific identifier."""

    @abstractmethod
    async def lookup_public_key(self, chip_uid: str) -> bytes | None:
        """Return the chip's 32-byte public key, or None when not found."""

    async def lookup_record(self, chip_uid: str) -> IdentityRecord | None:
        """
        Return the full record when the backend can supply one.
        Backends that only know keys return None.
        """
        return None

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""

    @property
    def stats(self) -> dict[str, Any]:
        return {"name": self.name}
