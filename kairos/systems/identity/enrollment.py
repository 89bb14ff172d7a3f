"""
KairOS -- Pendant Enrollment

Turns a blank NFC tag plus a chosen PIN into a registered identity: derive
the PIN-dependent key, build and self-sign the identity record, publish it
through the registry coordinator, and produce the public payload to write
onto the tag.
"""

from __future__ import annotations

import structlog

from kairos.config import IdentityConfig
from kairos.primitives.identity import (
    ChipIdentity,
    PendantData,
    RegistrationResult,
)
from kairos.systems.identity.derivation import device_id_for_chip, registry_hash
from kairos.systems.registry.records import build_record
from kairos.systems.registry.resolver import RegistryCoordinator

logger = structlog.get_logger("kairos.systems.identity.enrollment")


class PendantEnrollment:
    def __init__(self, config: IdentityConfig, resolver: RegistryCoordinator) -> None:
        self._config = config
        self._resolver = resolver
        self._logger = logger.bind(component="pendant_enrollment")

    def build_pendant_data(self, identity: ChipIdentity) -> PendantData:
        public_key_hex = identity.public_key.hex()
        return PendantData(
            chip_uid=identity.chip_uid,
            public_key=public_key_hex,
            device_id=identity.device_id,
            auth_url=(
                f"{self._config.auth_base_url}"
                f"?chip={identity.chip_uid}&device={identity.device_id}"
            ),
            registry_hash=registry_hash(identity.chip_uid, public_key_hex, identity.device_id),
        )

    async def initialize_pendant(
        self,
        chip_uid: str,
        pin: str,
    ) -> tuple[ChipIdentity, PendantData, RegistrationResult]:
        """
        Enroll one pendant. Raises InvalidInputError for a malformed chipUID
        or PIN; registry trouble is reported in the RegistrationResult.
        """
        record = build_record(
            chip_uid,
            pin,
            device_id=device_id_for_chip(chip_uid),
            min_pin_length=self._config.min_pin_length,
        )
        identity = ChipIdentity(
            chip_uid=record.chip_uid,
            device_id=record.device_id,
            did=record.did,
            public_key=record.public_key,
        )

        result = await self._resolver.register_identity(record)
        pendant = self.build_pendant_data(identity)

        self._logger.info(
            "pendant_enrolled",
            chip_uid=chip_uid,
            did=identity.did,
            registered=result.success,
            channels=result.channels,
        )
        return identity, pendant, result
