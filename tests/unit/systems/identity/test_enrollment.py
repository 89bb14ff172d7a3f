"""
Unit tests for PendantEnrollment.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from kairos.config import IdentityConfig
from kairos.errors import InvalidInputError
from kairos.primitives.identity import RegistrationResult
from kairos.systems.identity.derivation import (
    derive_public_key,
    derive_public_key_for_chip,
    registry_hash,
)
from kairos.systems.identity.enrollment import PendantEnrollment
from kairos.systems.registry.records import verify_record

CHIP = "04:5A:6B:7C:8D:9E:AF"


def make_resolver(success: bool = True) -> MagicMock:
    resolver = MagicMock()
    resolver.register_identity = AsyncMock(
        return_value=RegistrationResult(success=success, channels=["p2p"] if success else []),
    )
    return resolver


class TestInitializePendant:
    @pytest.mark.asyncio
    async def test_registers_pin_dependent_key(self):
        resolver = make_resolver()
        enrollment = PendantEnrollment(IdentityConfig(), resolver)

        identity, pendant, result = await enrollment.initialize_pendant(CHIP, "1234")

        assert result.success
        assert identity.public_key == derive_public_key(CHIP, "1234")
        assert identity.public_key != derive_public_key_for_chip(CHIP)

        record = resolver.register_identity.await_args.args[0]
        assert verify_record(record)
        assert record.public_key == identity.public_key

    @pytest.mark.asyncio
    async def test_pendant_payload(self):
        enrollment = PendantEnrollment(
            IdentityConfig(auth_base_url="https://auth.test/auth"), make_resolver(),
        )
        identity, pendant, _ = await enrollment.initialize_pendant(CHIP, "1234")

        assert pendant.chip_uid == CHIP
        assert bytes.fromhex(pendant.public_key) == identity.public_key
        assert pendant.device_id == "kairos-pendant-045A6B7C8D9EAF"
        assert pendant.auth_url == (
            f"https://auth.test/auth?chip={CHIP}&device=kairos-pendant-045A6B7C8D9EAF"
        )
        assert pendant.registry_hash == registry_hash(CHIP, pendant.public_key, pendant.device_id)

    @pytest.mark.asyncio
    async def test_registry_failure_is_reported_not_raised(self):
        enrollment = PendantEnrollment(IdentityConfig(), make_resolver(success=False))
        _, _, result = await enrollment.initialize_pendant(CHIP, "1234")
        assert result.success is False

    @pytest.mark.asyncio
    async def test_short_pin_raises(self):
        enrollment = PendantEnrollment(IdentityConfig(), make_resolver())
        with pytest.raises(InvalidInputError):
            await enrollment.initialize_pendant(CHIP, "1")
