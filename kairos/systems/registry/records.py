"""
KairOS -- Identity Record Integrity

Signing, verification, and content addressing of IdentityRecords.

A record is trusted only when:
  1. its Ed25519 self-signature verifies, with its own public key, over the
     canonical (sorted-key, compact) JSON of the signable fields,
  2. its DID is the did:key of that public key, and
  3. its content hash, when present, matches a fresh recomputation.

The canonical serialization is shared by creation and verification so the
hash is reproduced byte-for-byte on every node.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any

import orjson
import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from pydantic import ValidationError

from kairos.primitives.common import now_ms
from kairos.primitives.identity import IdentityRecord
from kairos.systems.identity.derivation import (
    DEFAULT_MIN_PIN_LENGTH,
    device_id_for_chip,
    did_from_public_key,
    public_key_bytes,
    signing_key,
)

logger = structlog.get_logger("kairos.systems.registry.records")

CONTENT_HASH_PREFIX = "Qm"
_CONTENT_HASH_RE = re.compile(r"^Qm[0-9a-f]{44}\Z")


def canonical_json(payload: dict[str, Any]) -> bytes:
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)


def hash_to_address(data: bytes) -> str:
    """IPFS-style address: 'Qm' + the first 44 hex chars of SHA-512."""
    return CONTENT_HASH_PREFIX + hashlib.sha512(data).hexdigest()[:44]


def compute_content_hash(record: IdentityRecord) -> str:
    return hash_to_address(canonical_json(record.addressable_payload()))


def is_content_hash(value: str) -> bool:
    """True when value has the shape hash_to_address produces."""
    return bool(_CONTENT_HASH_RE.match(value))


def candidate_hashes(chip_uid: str) -> list[str]:
    """Deterministic addresses a publisher may have pinned a chip's record under."""
    patterns = [f"identity-{chip_uid}", f"kairos-{chip_uid}", chip_uid]
    return [hash_to_address(p.encode()) for p in patterns]


# ─── Signing ─────────────────────────────────────────────────────


def sign_record(record: IdentityRecord, private_key: Ed25519PrivateKey) -> IdentityRecord:
    """Return a copy of the record carrying a fresh signature and content hash."""
    signature = private_key.sign(canonical_json(record.signable_payload()))
    signed = record.model_copy(update={"signature": signature.hex(), "content_hash": ""})
    return signed.model_copy(update={"content_hash": compute_content_hash(signed)})


def build_record(
    chip_uid: str,
    pin: str,
    *,
    device_id: str | None = None,
    registered_at: int | None = None,
    min_pin_length: int = DEFAULT_MIN_PIN_LENGTH,
) -> IdentityRecord:
    """Derive the chip's key, build its record, and self-sign it."""
    private_key = signing_key(chip_uid, pin, min_pin_length=min_pin_length)
    public_key = public_key_bytes(private_key)
    record = IdentityRecord(
        chip_uid=chip_uid,
        public_key=public_key,
        device_id=device_id or device_id_for_chip(chip_uid),
        did=did_from_public_key(public_key),
        registered_at=registered_at if registered_at is not None else now_ms(),
    )
    return sign_record(record, private_key)


# ─── Verification ────────────────────────────────────────────────


def verify_record(record: IdentityRecord) -> bool:
    """Check self-signature, DID binding, and content hash. Never raises."""
    try:
        signature = bytes.fromhex(record.signature)
        public_key = Ed25519PublicKey.from_public_bytes(bytes(record.public_key))
        public_key.verify(signature, canonical_json(record.signable_payload()))
    except (ValueError, TypeError, InvalidSignature):
        return False

    try:
        if record.did != did_from_public_key(bytes(record.public_key)):
            return False
    except ValueError:
        return False

    if record.content_hash and record.content_hash != compute_content_hash(record):
        return False

    return True


def parse_record(raw: Any) -> IdentityRecord | None:
    """Parse a wire record. Malformed input is a miss, not an error."""
    if isinstance(raw, IdentityRecord):
        return raw
    if not isinstance(raw, dict):
        return None
    try:
        return IdentityRecord.model_validate(raw)
    except ValidationError:
        return None


def accept_record(raw: Any, chip_uid: str | None = None) -> IdentityRecord | None:
    """
    Parse and verify a record from any untrusted source. Returns None, and
    logs at debug, for anything that fails; unverifiable records are
    silently discarded.
    """
    record = parse_record(raw)
    if record is None:
        logger.debug("record_malformed", chip_uid=chip_uid)
        return None
    if chip_uid is not None and record.chip_uid != chip_uid:
        logger.debug("record_chip_mismatch", expected=chip_uid, got=record.chip_uid)
        return None
    if not verify_record(record):
        logger.debug("record_unverified", chip_uid=record.chip_uid)
        return None
    return record
