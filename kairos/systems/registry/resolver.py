"""
KairOS -- Registry Coordinator

Runs the registration and lookup policies across the backends.

Registration: P2P first, then centralized for redundancy. If P2P raises,
centralized is the fallback. Transport failures never escape; they are
reported in RegistrationResult.errors.

Lookup: offline cache -> P2P -> centralized. The first hit wins and is
written back to the cache. Exhausting every source returns None.
"""

from __future__ import annotations

from typing import Any

import structlog

from kairos.errors import KairosError
from kairos.primitives.common import now_ms
from kairos.primitives.identity import (
    IdentityRecord,
    KeySource,
    RegistrationResult,
    ResolvedKey,
)
from kairos.systems.cache.offline import OfflineKeyCache
from kairos.systems.identity.derivation import did_from_public_key
from kairos.systems.registry.centralized import CentralizedRegistry
from kairos.systems.registry.p2p import P2PRegistry

logger = structlog.get_logger("kairos.systems.registry.resolver")


class RegistryCoordinator:
    """
    Front door to every key registry.

    Either backend may be None (disabled by config); the policies simply
    skip it.
    """

    def __init__(
        self,
        cache: OfflineKeyCache,
        p2p: P2PRegistry | None = None,
        central: CentralizedRegistry | None = None,
    ) -> None:
        self._cache = cache
        self._p2p = p2p
        self._central = central
        self._last_sync: int | None = None
        self._resolved: dict[KeySource, int] = {source: 0 for source in KeySource}
        self._unresolved = 0
        self._logger = logger.bind(component="registry_coordinator")

    @property
    def cache(self) -> OfflineKeyCache:
        return self._cache

    @property
    def p2p(self) -> P2PRegistry | None:
        return self._p2p

    @property
    def central(self) -> CentralizedRegistry | None:
        return self._central

    # ─── Registration ───────────────────────────────────────────────

    async def register_identity(self, record: IdentityRecord) -> RegistrationResult:
        channels: list[str] = []
        errors: list[str] = []
        identifier = ""

        if self._p2p is not None:
            try:
                identifier = await self._p2p.register_identity(record)
                channels.append(self._p2p.name)
            except Exception as exc:
                errors.append(f"p2p: {exc}")
                self._logger.warning(
                    "p2p_registration_failed",
                    chip_uid=record.chip_uid,
                    error=str(exc),
                )

        if self._central is not None:
            try:
                central_id = await self._central.register_identity(record)
                channels.append(self._central.name)
                identifier = identifier or central_id
            except (KairosError, NotImplementedError) as exc:
                errors.append(f"centralized: {exc}")
                self._logger.warning(
                    "centralized_registration_failed",
                    chip_uid=record.chip_uid,
                    error=str(exc),
                    fallback=not channels,
                )

        success = bool(channels)
        if success:
            self._logger.info(
                "identity_registered",
                chip_uid=record.chip_uid,
                channels=channels,
            )
        else:
            self._logger.error("identity_registration_failed", chip_uid=record.chip_uid)

        return RegistrationResult(
            success=success,
            identifier=identifier,
            channels=channels,
            errors=errors,
        )

    # ─── Resolution ─────────────────────────────────────────────────

    async def resolve(self, chip_uid: str) -> ResolvedKey | None:
        """Locate a chip's public key, trying each source in order."""
        resolved = self._from_cache(chip_uid)
        if resolved is None:
            resolved = await self._from_p2p(chip_uid)
        if resolved is None:
            resolved = await self._from_central(chip_uid)

        if resolved is None:
            self._unresolved += 1
            self._logger.warning("key_unresolved", chip_uid=chip_uid)
            return None

        self._resolved[resolved.source] += 1
        if resolved.source is not KeySource.CACHE:
            self._cache.put(
                chip_uid,
                resolved.public_key,
                resolved.did,
                verified=resolved.verified,
            )
        self._logger.debug("key_resolved", chip_uid=chip_uid, source=resolved.source.value)
        return resolved

    async def lookup_public_key(self, chip_uid: str) -> bytes | None:
        resolved = await self.resolve(chip_uid)
        return resolved.public_key if resolved else None

    def _from_cache(self, chip_uid: str) -> ResolvedKey | None:
        entry = self._cache.get(chip_uid)
        if entry is None:
            return None
        return ResolvedKey(
            chip_uid=chip_uid,
            public_key=entry.public_key,
            did=entry.did,
            source=KeySource.CACHE,
            verified=entry.verified,
        )

    async def _from_p2p(self, chip_uid: str) -> ResolvedKey | None:
        if self._p2p is None:
            return None
        try:
            record = await self._p2p.lookup_record(chip_uid)
        except Exception as exc:
            self._logger.warning("p2p_lookup_failed", chip_uid=chip_uid, error=str(exc))
            return None
        if record is None:
            return None
        return ResolvedKey(
            chip_uid=chip_uid,
            public_key=record.public_key,
            did=record.did,
            source=KeySource.P2P,
            verified=True,
        )

    async def _from_central(self, chip_uid: str) -> ResolvedKey | None:
        if self._central is None:
            return None
        entry = await self._central.lookup_entry(chip_uid)
        if entry is None:
            return None
        return ResolvedKey(
            chip_uid=chip_uid,
            public_key=entry.public_key,
            did=entry.did or did_from_public_key(entry.public_key),
            source=KeySource.CENTRALIZED,
            verified=False,
        )

    # ─── Cache Sync ─────────────────────────────────────────────────

    async def sync_cache(self) -> int:
        """
        Refresh cached entries from the centralized batch endpoint.
        Returns the number of entries updated.
        """
        if self._central is None:
            return 0
        chip_uids = [entry.chip_uid for entry in self._cache.entries()]
        if not chip_uids:
            return 0

        started = now_ms()
        entries = await self._central.batch_lookup(chip_uids, last_sync=self._last_sync)
        for entry in entries:
            self._cache.put(
                entry.chip_uid,
                entry.public_key,
                entry.did or did_from_public_key(entry.public_key),
                verified=False,
            )
        self._last_sync = started
        self._logger.info("cache_synced", requested=len(chip_uids), updated=len(entries))
        return len(entries)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "resolved": {source.value: count for source, count in self._resolved.items()},
            "unresolved": self._unresolved,
            "last_sync": self._last_sync,
            "cache": self._cache.stats,
        }
