"""
KairOS -- Identity System

Key derivation from chipUID + PIN, pendant enrollment, and Ed25519
challenge-response authentication.

The authenticator and enrollment depend on the registry system and are
imported from their own modules.
"""

from kairos.systems.identity.challenge import ChallengeLedger
from kairos.systems.identity.derivation import (
    derive_private_key,
    derive_public_key,
    derive_public_key_for_chip,
    device_id_for_chip,
    did_from_public_key,
)

__all__ = [
    "ChallengeLedger",
    "derive_private_key",
    "derive_public_key",
    "derive_public_key_for_chip",
    "device_id_for_chip",
    "did_from_public_key",
]
