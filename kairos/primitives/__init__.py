"""
KairOS -- Shared Primitives

Every system exchanges these types.
"""

from kairos.primitives.common import KairosBaseModel, new_id, now_ms
from kairos.primitives.discovery import (
    HashRequest,
    HashResponse,
    IdentityAnnouncement,
    PeerAnnouncement,
    PeerNode,
)
from kairos.primitives.identity import (
    AuthResult,
    AuthState,
    CacheEntry,
    ChipIdentity,
    IdentityRecord,
    KeySource,
    PendantData,
    RegistrationResult,
    RegistryEntry,
    ResolvedKey,
    SignatureProof,
)

__all__ = [
    "AuthResult",
    "AuthState",
    "CacheEntry",
    "ChipIdentity",
    "HashRequest",
    "HashResponse",
    "IdentityAnnouncement",
    "IdentityRecord",
    "KairosBaseModel",
    "KeySource",
    "PeerAnnouncement",
    "PeerNode",
    "PendantData",
    "RegistrationResult",
    "RegistryEntry",
    "ResolvedKey",
    "SignatureProof",
    "new_id",
    "now_ms",
]
