"""
KairOS -- Identity Primitives

Chip identities, signed registry records, ephemeral proofs, cache entries,
and the typed results handed back to callers.

Field names are snake_case in Python and camelCase on the wire
(chipUID, publicKey, deviceID, registeredAt, contentHash), matching the
registry HTTP API and the discovery messages.
"""

from __future__ import annotations

import enum
from typing import Annotated, Any, ClassVar

from pydantic import AfterValidator, Field

from kairos.primitives.common import KairosBaseModel, WireBytes, now_ms

ED25519_KEY_LENGTH = 32
ED25519_SIGNATURE_LENGTH = 64


def _check_key_length(value: bytes) -> bytes:
    if len(value) != ED25519_KEY_LENGTH:
        raise ValueError(
            f"public key must be {ED25519_KEY_LENGTH} bytes, got {len(value)}"
        )
    return value


Ed25519Key = Annotated[WireBytes, AfterValidator(_check_key_length)]


# ─── Enums ────────────────────────────────────────────────────────


class AuthState(str, enum.Enum):
    """
    Progress of a single authentication attempt.

    WAITING -> PROOF_GENERATED -> KEY_RESOLVED -> VERIFIED | REJECTED
    Lookup failure short-circuits to LOOKUP_FAILED. No implicit retries.
    """

    WAITING = "waiting"
    PROOF_GENERATED = "proof_generated"
    KEY_RESOLVED = "key_resolved"
    VERIFIED = "verified"
    REJECTED = "rejected"
    LOOKUP_FAILED = "lookup_failed"

    @property
    def terminal(self) -> bool:
        return self in (AuthState.VERIFIED, AuthState.REJECTED, AuthState.LOOKUP_FAILED)


class KeySource(str, enum.Enum):
    """Where a resolved public key came from."""

    CACHE = "cache"
    P2P = "p2p"
    CENTRALIZED = "centralized"


# ─── Identities ───────────────────────────────────────────────────


class ChipIdentity(KairosBaseModel):
    """
    The enrolled identity of one pendant. Created once at enrollment.

    public_key is the PIN-dependent Ed25519 key; the private half is
    re-derived on demand and never lives on this object.
    """

    chip_uid: str = Field(alias="chipUID")
    device_id: str = Field(alias="deviceID")
    did: str
    public_key: Ed25519Key = Field(alias="publicKey")


class PendantData(KairosBaseModel):
    """Public payload written to the tag and read back at authentication."""

    chip_uid: str = Field(alias="chipUID")
    public_key: str = Field(alias="publicKey")  # hex
    device_id: str = Field(alias="deviceID")
    auth_url: str = Field(default="", alias="authURL")
    registry_hash: str = Field(default="", alias="registryHash")


class SignatureProof(KairosBaseModel):
    """A signed challenge. Lives only for one authentication call."""

    signature: WireBytes
    public_key: WireBytes = Field(alias="publicKey")
    chip_uid: str = Field(alias="chipUID")
    timestamp: int = Field(default_factory=now_ms)


class IdentityRecord(KairosBaseModel):
    """
    A registry entry binding a chipUID to its public key.

    signature is a hex Ed25519 signature, made with the chip's own derived
    key, over the canonical JSON of the signable fields. content_hash
    addresses the signed record in content-addressed storage.
    """

    chip_uid: str = Field(alias="chipUID", min_length=1)
    public_key: Ed25519Key = Field(alias="publicKey")
    device_id: str = Field(alias="deviceID")
    did: str
    registered_at: int = Field(default_factory=now_ms, alias="registeredAt")
    signature: str = ""
    content_hash: str = Field(default="", alias="contentHash")

    SIGNABLE_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"chip_uid", "public_key", "device_id", "did", "registered_at"}
    )

    def signable_payload(self) -> dict[str, Any]:
        """The fields covered by the self-signature, in wire form."""
        return self.model_dump(mode="json", by_alias=True, include=set(self.SIGNABLE_FIELDS))

    def addressable_payload(self) -> dict[str, Any]:
        """The fields covered by the content hash (everything but the hash)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"content_hash"})

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CacheEntry(KairosBaseModel):
    """One offline-cache slot."""

    chip_uid: str = Field(alias="chipUID")
    public_key: WireBytes = Field(alias="publicKey")
    did: str
    cached_at: int = Field(default_factory=now_ms, alias="cachedAt")
    verified: bool = True


# ─── Results ──────────────────────────────────────────────────────


class ResolvedKey(KairosBaseModel):
    """A public key located by the lookup chain."""

    chip_uid: str
    public_key: bytes
    did: str
    source: KeySource
    verified: bool = False


class AuthResult(KairosBaseModel):
    """Outcome of one authentication attempt, handed to the caller."""

    authenticated: bool
    did: str | None = None
    session_token: str | None = Field(default=None, alias="sessionToken")
    error: str | None = None
    state: AuthState = AuthState.WAITING

    def to_response(self) -> dict[str, Any]:
        """Caller-facing dict: {authenticated, did?, sessionToken?, error?}."""
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"state"},
        )


class RegistrationResult(KairosBaseModel):
    """Outcome of registering a record across the registry backends."""

    success: bool
    identifier: str = ""
    channels: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class RegistryEntry(KairosBaseModel):
    """A centralized-registry row: a key binding without a self-signature."""

    chip_uid: str = Field(alias="chipUID", min_length=1)
    public_key: Ed25519Key = Field(alias="publicKey")
    device_id: str = Field(default="", alias="deviceID")
    did: str = ""
    registered_at: int = Field(default_factory=now_ms, alias="registeredAt")
    last_seen: int = Field(default_factory=now_ms, alias="lastSeen")
