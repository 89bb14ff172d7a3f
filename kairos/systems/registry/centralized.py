"""
KairOS -- Centralized Registry Client

Phase 1 of the registry evolution and the availability-of-last-resort
backend: a plain HTTP API.

  POST /registry/register        {chipUID, publicKey: int[32], deviceID, did}
  GET  /registry/lookup/{chipUID} -> {success, publicKey: int[], ...}
  POST /registry/lookup          {chipUIDs, lastSync?} -> {entries: [...]}

Registration failures raise TransportError so the coordinator can fall back.
Lookups never raise: a 404 is a quiet miss, anything else is a warning and
a miss.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError

from kairos.errors import TransportError
from kairos.primitives.identity import IdentityRecord, RegistryEntry
from kairos.systems.registry.base import KeyRegistry

logger = structlog.get_logger("kairos.systems.registry.centralized")

# Raised by httpx for URLs it cannot build or send, on top of HTTPError
_REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL, ValueError)


class CentralizedRegistry(KeyRegistry):
    """
    HTTP registry client.

    Wraps an httpx.AsyncClient. When no client is supplied one is created
    and owned (closed by close()).
    """

    name = "centralized"

    def __init__(
        self,
        api_url: str = "https://kair-os.vercel.app/api",
        timeout_s: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout_s = timeout_s
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json"},
        )
        self._registrations = 0
        self._lookups = 0
        self._failures = 0
        self._logger = logger.bind(component="centralized_registry", api_url=self._api_url)

    # ─── Registration ───────────────────────────────────────────────

    async def register_identity(self, record: IdentityRecord) -> str:
        payload = {
            "chipUID": record.chip_uid,
            "publicKey": list(record.public_key),
            "deviceID": record.device_id,
            "did": record.did,
        }
        try:
            response = await self._client.post(
                f"{self._api_url}/registry/register",
                json=payload,
                timeout=self._timeout_s,
            )
        except _REQUEST_ERRORS as exc:
            self._failures += 1
            raise TransportError(f"Registry registration failed: {exc}") from exc

        if response.status_code != 200:
            self._failures += 1
            raise TransportError(
                f"Registry registration rejected with status {response.status_code}"
            )

        self._registrations += 1
        self._logger.info("identity_registered", chip_uid=record.chip_uid)
        return record.chip_uid

    # ─── Lookup ─────────────────────────────────────────────────────

    async def lookup_entry(self, chip_uid: str) -> RegistryEntry | None:
        """Fetch the full registry row for a chip, or None."""
        self._lookups += 1
        try:
            response = await self._client.get(
                f"{self._api_url}/registry/lookup/{quote(chip_uid, safe=':')}",
                timeout=self._timeout_s,
            )
        except _REQUEST_ERRORS as exc:
            self._failures += 1
            self._logger.warning("lookup_transport_error", chip_uid=chip_uid, error=str(exc))
            return None

        if response.status_code == 404:
            self._logger.debug("lookup_not_found", chip_uid=chip_uid)
            return None
        if response.status_code != 200:
            self._failures += 1
            self._logger.warning(
                "lookup_failed", chip_uid=chip_uid, status=response.status_code,
            )
            return None

        try:
            data = response.json()
        except ValueError:
            self._failures += 1
            self._logger.warning("lookup_bad_json", chip_uid=chip_uid)
            return None

        if not isinstance(data, dict) or not data.get("success") or not data.get("publicKey"):
            return None

        data.setdefault("chipUID", chip_uid)
        try:
            return RegistryEntry.model_validate(data)
        except ValidationError as exc:
            self._logger.warning("lookup_bad_entry", chip_uid=chip_uid, error=str(exc))
            return None

    async def lookup_public_key(self, chip_uid: str) -> bytes | None:
        entry = await self.lookup_entry(chip_uid)
        return entry.public_key if entry else None

    async def batch_lookup(
        self,
        chip_uids: list[str],
        last_sync: int | None = None,
    ) -> list[RegistryEntry]:
        """
        Fetch many rows at once (offline-cache sync). Only rows touched since
        last_sync are returned when it is given. Fail-soft: [] on any failure.
        """
        if not chip_uids:
            return []

        body: dict[str, Any] = {"chipUIDs": chip_uids}
        if last_sync is not None:
            body["lastSync"] = last_sync

        try:
            response = await self._client.post(
                f"{self._api_url}/registry/lookup",
                json=body,
                timeout=self._timeout_s,
            )
            response.raise_for_status()
            data = response.json()
        except _REQUEST_ERRORS as exc:
            self._failures += 1
            self._logger.warning("batch_lookup_failed", count=len(chip_uids), error=str(exc))
            return []

        entries: list[RegistryEntry] = []
        for raw in data.get("entries", []) if isinstance(data, dict) else []:
            try:
                entries.append(RegistryEntry.model_validate(raw))
            except ValidationError:
                self._logger.debug("batch_entry_skipped")
        return entries

    # ─── Lifecycle ──────────────────────────────────────────────────

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "api_url": self._api_url,
            "registrations": self._registrations,
            "lookups": self._lookups,
            "failures": self._failures,
        }
