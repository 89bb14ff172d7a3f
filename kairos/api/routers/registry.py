"""
KairOS -- Public Key Registry Router

The centralized registry as an HTTP service.

Endpoints:
  POST /api/registry/register       -- register or update a chip's public key
  GET  /api/registry/lookup/{chipUID} -- look up one key (404 when unknown)
  POST /api/registry/lookup         -- batch lookup for offline-cache sync
  GET  /api/registry                -- listing with truncated key prefixes

Entries live in a RegistryStore held on app.state.registry_store.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kairos.primitives.common import now_ms
from kairos.primitives.identity import ED25519_KEY_LENGTH, RegistryEntry
from kairos.systems.identity.derivation import did_from_public_key

logger = structlog.get_logger("kairos.api.registry")

router = APIRouter()


class RegistryStore:
    """In-memory chipUID -> RegistryEntry table for one registry server."""

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def upsert(
        self,
        chip_uid: str,
        public_key: bytes,
        device_id: str,
        did: str = "",
    ) -> tuple[RegistryEntry, bool]:
        """Store a binding. Returns (entry, created)."""
        now = self._clock()
        existing = self._entries.get(chip_uid)
        entry = RegistryEntry(
            chip_uid=chip_uid,
            public_key=public_key,
            device_id=device_id,
            did=did or did_from_public_key(public_key),
            registered_at=existing.registered_at if existing else now,
            last_seen=now,
        )
        self._entries[chip_uid] = entry
        return entry, existing is None

    def lookup(self, chip_uid: str) -> RegistryEntry | None:
        entry = self._entries.get(chip_uid)
        if entry is not None:
            entry.last_seen = self._clock()
        return entry

    def changed_since(self, chip_uids: list[str], last_sync: int | None) -> list[RegistryEntry]:
        return [
            entry
            for uid in chip_uids
            if (entry := self._entries.get(uid)) is not None
            and (not last_sync or entry.last_seen > last_sync)
        ]

    def entries(self) -> list[RegistryEntry]:
        return list(self._entries.values())


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def _is_key_array(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) == ED25519_KEY_LENGTH
        and all(isinstance(b, int) and 0 <= b <= 255 for b in value)
    )


@router.post("/registry/register", response_model=None)
async def register_public_key(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Request body must be JSON")
    if not isinstance(body, dict):
        return _error(400, "Request body must be a JSON object")

    chip_uid = body.get("chipUID")
    public_key = body.get("publicKey")
    device_id = body.get("deviceID")
    if not chip_uid or not public_key or not device_id:
        return _error(400, "Missing required fields: chipUID, publicKey, deviceID")
    if not _is_key_array(public_key):
        return _error(400, "Invalid public key format - must be 32-byte array")

    store: RegistryStore = request.app.state.registry_store
    entry, created = store.upsert(
        str(chip_uid), bytes(public_key), str(device_id), str(body.get("did") or ""),
    )

    logger.info("registry_key_stored", chip_uid=entry.chip_uid, created=created)
    return {
        "success": True,
        "message": "Public key registered successfully" if created else "Public key updated",
        "chipUID": entry.chip_uid,
        "did": entry.did,
    }


@router.get("/registry/lookup/{chip_uid}", response_model=None)
async def lookup_public_key(chip_uid: str, request: Request) -> dict[str, Any] | JSONResponse:
    store: RegistryStore = request.app.state.registry_store
    entry = store.lookup(chip_uid)
    if entry is None:
        return _error(404, "Public key not found", chipUID=chip_uid)
    return {"success": True, **entry.model_dump(mode="json", by_alias=True)}


@router.post("/registry/lookup", response_model=None)
async def batch_lookup(request: Request) -> dict[str, Any] | JSONResponse:
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Request body must be JSON")

    chip_uids = body.get("chipUIDs") if isinstance(body, dict) else None
    if not isinstance(chip_uids, list):
        return _error(400, "chipUIDs must be an array")
    last_sync = body.get("lastSync")
    if last_sync is not None and not isinstance(last_sync, int):
        return _error(400, "lastSync must be a millisecond timestamp")

    store: RegistryStore = request.app.state.registry_store
    entries = store.changed_since([str(uid) for uid in chip_uids], last_sync)
    return {
        "success": True,
        "updated": len(entries),
        "total": len(chip_uids),
        "syncTimestamp": now_ms(),
        "entries": [
            e.model_dump(mode="json", by_alias=True, exclude={"registered_at"})
            for e in entries
        ],
    }


@router.get("/registry")
async def list_registry(request: Request) -> dict[str, Any]:
    """Debug listing. Keys are shown only as a 4-byte prefix."""
    store: RegistryStore = request.app.state.registry_store
    return {
        "success": True,
        "totalEntries": len(store),
        "entries": [
            {
                "chipUID": e.chip_uid,
                "deviceID": e.device_id,
                "did": e.did,
                "registeredAt": e.registered_at,
                "lastSeen": e.last_seen,
                "publicKeyHash": e.public_key[:4].hex() + "...",
            }
            for e in store.entries()
        ],
    }
