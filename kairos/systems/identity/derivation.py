"""
KairOS -- Identity Derivation

The pendant never stores a private key. The signing key is recomputed on
demand from the chip's hardware UID and the bearer's PIN:

  seed  = "KairOS-Secure-v2:<chipUID>:pin:<pin>"
  key   = clamp(HKDF-SHA512(seed, salt="KairOS-Auth-Salt-2025",
                            info="device:<chipUID>", length=32))

Identical inputs reproduce the identical key; any change to the PIN yields
an unrelated key. The clamped 32 bytes are used as the Ed25519 seed.

A second, PIN-independent derivation exists only as a placeholder tag
identifier and is never published to a registry.
"""

from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from kairos.errors import InvalidInputError, LengthError
from kairos.primitives.identity import ED25519_KEY_LENGTH

DEFAULT_MIN_PIN_LENGTH = 4

_AUTH_SALT = b"KairOS-Auth-Salt-2025"
_PUBLIC_SALT = b"KairOS-Public-Salt-2025"

# multicodec prefix for an Ed25519 public key
_ED25519_MULTICODEC = b"\xed\x01"
_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


# ─── Validation ──────────────────────────────────────────────────


def validate_chip_uid(chip_uid: str) -> str:
    if not isinstance(chip_uid, str) or not chip_uid.strip():
        raise InvalidInputError("chipUID must be a non-empty string")
    return chip_uid


def validate_pin(pin: str, min_length: int = DEFAULT_MIN_PIN_LENGTH) -> str:
    if not isinstance(pin, str) or len(pin) < min_length:
        raise InvalidInputError(f"PIN must be at least {min_length} characters")
    return pin


# ─── Key Derivation ──────────────────────────────────────────────


def _hkdf_sha512(seed: bytes, salt: bytes, info: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA512(),
        length=ED25519_KEY_LENGTH,
        salt=salt,
        info=info,
    ).derive(seed)


def _clamp(key: bytes) -> bytes:
    """Ed25519 scalar clamping: clear bits 0-2 and 255, set bit 254."""
    clamped = bytearray(key)
    clamped[0] &= 248
    clamped[31] &= 127
    clamped[31] |= 64
    return bytes(clamped)


def derive_private_key(
    chip_uid: str,
    pin: str,
    *,
    min_pin_length: int = DEFAULT_MIN_PIN_LENGTH,
) -> bytes:
    """Derive the 32-byte Ed25519 private key for a chip and PIN."""
    validate_chip_uid(chip_uid)
    validate_pin(pin, min_pin_length)

    seed = f"KairOS-Secure-v2:{chip_uid}:pin:{pin}".encode()
    info = f"device:{chip_uid}".encode()
    return _clamp(_hkdf_sha512(seed, _AUTH_SALT, info))


def signing_key(
    chip_uid: str,
    pin: str,
    *,
    min_pin_length: int = DEFAULT_MIN_PIN_LENGTH,
) -> Ed25519PrivateKey:
    """The derived key as a signing object. Callers must not retain it."""
    return Ed25519PrivateKey.from_private_bytes(
        derive_private_key(chip_uid, pin, min_pin_length=min_pin_length)
    )


def public_key_bytes(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def derive_public_key(
    chip_uid: str,
    pin: str,
    *,
    min_pin_length: int = DEFAULT_MIN_PIN_LENGTH,
) -> bytes:
    """The PIN-dependent public key. This is what gets registered."""
    return public_key_bytes(signing_key(chip_uid, pin, min_pin_length=min_pin_length))


def derive_public_key_for_chip(chip_uid: str) -> bytes:
    """
    PIN-independent public key, usable only as a placeholder tag identifier.

    It does not match the key that signs challenges and is never registered.
    """
    validate_chip_uid(chip_uid)

    seed = f"KairOS-Public-v2:{chip_uid}:public-derivation".encode()
    info = f"public:{chip_uid}".encode()
    placeholder = Ed25519PrivateKey.from_private_bytes(
        _clamp(_hkdf_sha512(seed, _PUBLIC_SALT, info))
    )
    return public_key_bytes(placeholder)


# ─── Identifiers ─────────────────────────────────────────────────


def _b58encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out: list[str] = []
    while n:
        n, rem = divmod(n, 58)
        out.append(_B58_ALPHABET[rem])
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading_zeros + "".join(reversed(out))


def did_from_public_key(public_key: bytes) -> str:
    """did:key for an Ed25519 key: multicodec 0xed01 prefix, base58btc, 'z' multibase."""
    if len(public_key) != ED25519_KEY_LENGTH:
        raise LengthError(
            f"Invalid Ed25519 public key length: {len(public_key)}"
        )
    return "did:key:z" + _b58encode(_ED25519_MULTICODEC + bytes(public_key))


def device_id_for_chip(chip_uid: str) -> str:
    return f"kairos-pendant-{chip_uid.replace(':', '')}"


def registry_hash(chip_uid: str, public_key_hex: str, device_id: str) -> str:
    """Tag integrity hash: first 16 bytes of SHA-512 over the tag fields, hex."""
    digest = hashlib.sha512(f"{chip_uid}:{public_key_hex}:{device_id}".encode()).digest()
    return digest[:16].hex()
