"""
KairOS -- Offline Key Cache

Bounded local map chipUID -> public key so authentication keeps working
when every registry is unreachable.

  - capacity bound (default 1,000); inserting into a full cache evicts the
    entry with the oldest cached_at, ties broken by insertion order
  - entries older than max_age are treated as absent by get() but are only
    removed by prune()
  - export/import as compact JSON: [{"uid", "key": [int x 32], "ts"}]
"""

from __future__ import annotations

from typing import Any, Callable

import orjson
import structlog

from kairos.errors import InvalidInputError, LengthError
from kairos.primitives.common import now_ms
from kairos.primitives.identity import ED25519_KEY_LENGTH, CacheEntry
from kairos.systems.identity.derivation import did_from_public_key

logger = structlog.get_logger("kairos.systems.cache.offline")

_MS_PER_HOUR = 3_600_000


class OfflineKeyCache:
    """
    In-memory key cache. Not thread-safe; owned by a single service.
    """

    def __init__(
        self,
        max_size: int = 1_000,
        max_age_hours: float = 24.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if max_size < 1:
            raise InvalidInputError("Cache capacity must be at least 1")
        self._max_size = max_size
        self._max_age_ms = int(max_age_hours * _MS_PER_HOUR)
        self._clock = clock
        # Dict order is insertion/update order; updates are re-inserted
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._logger = logger.bind(component="offline_cache")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, chip_uid: object) -> bool:
        return chip_uid in self._entries

    @property
    def capacity(self) -> int:
        return self._max_size

    def _is_fresh(self, entry: CacheEntry, now: int) -> bool:
        return now - entry.cached_at <= self._max_age_ms

    # ─── Read / Write ───────────────────────────────────────────────

    def put(
        self,
        chip_uid: str,
        public_key: bytes,
        did: str,
        cached_at: int | None = None,
        verified: bool = True,
    ) -> CacheEntry:
        if len(public_key) != ED25519_KEY_LENGTH:
            raise LengthError(
                f"Invalid Ed25519 public key length: {len(public_key)}"
            )

        entry = CacheEntry(
            chip_uid=chip_uid,
            public_key=bytes(public_key),
            did=did,
            cached_at=cached_at if cached_at is not None else self._clock(),
            verified=verified,
        )

        if chip_uid in self._entries:
            del self._entries[chip_uid]
        elif len(self._entries) >= self._max_size:
            self._evict_oldest()

        self._entries[chip_uid] = entry
        return entry

    def get(self, chip_uid: str) -> CacheEntry | None:
        """The entry if present and fresh. A stale entry is reported absent."""
        entry = self._entries.get(chip_uid)
        if entry is None or not self._is_fresh(entry, self._clock()):
            self._misses += 1
            return None
        self._hits += 1
        return entry

    def remove(self, chip_uid: str) -> bool:
        return self._entries.pop(chip_uid, None) is not None

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    def _evict_oldest(self) -> None:
        # min() returns the first minimum, so equal timestamps evict in insertion order
        oldest = min(self._entries.values(), key=lambda e: e.cached_at)
        del self._entries[oldest.chip_uid]
        self._evictions += 1
        self._logger.debug("cache_evicted", chip_uid=oldest.chip_uid)

    def prune(self) -> int:
        """Delete stale entries. Returns the number removed."""
        now = self._clock()
        stale = [uid for uid, e in self._entries.items() if not self._is_fresh(e, now)]
        for uid in stale:
            del self._entries[uid]
        if stale:
            self._logger.info("cache_pruned", removed=len(stale), remaining=len(self._entries))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    # ─── Persistence ────────────────────────────────────────────────

    def export(self) -> str:
        rows = [
            {"uid": e.chip_uid, "key": list(e.public_key), "ts": e.cached_at}
            for e in self._entries.values()
        ]
        return orjson.dumps(rows).decode()

    def import_(self, data: str | bytes) -> int:
        """
        Load entries produced by export(). Existing entries for the same
        chips are replaced. DIDs are regenerated from the stored keys. The
        export carries no provenance, so imported entries are unverified.

        Raises InvalidInputError on malformed data and LengthError on a
        key of the wrong length. Returns the number of entries loaded.
        """
        try:
            rows = orjson.loads(data)
        except orjson.JSONDecodeError as exc:
            raise InvalidInputError(f"Cache import is not valid JSON: {exc}") from exc
        if not isinstance(rows, list):
            raise InvalidInputError("Cache import must be a JSON array")

        parsed: list[tuple[str, bytes, int]] = []
        for row in rows:
            try:
                uid = row["uid"]
                if not isinstance(row["key"], list):
                    raise TypeError("key must be a byte array")
                key = bytes(row["key"])
                ts = int(row["ts"])
            except (KeyError, TypeError, ValueError) as exc:
                raise InvalidInputError(f"Malformed cache row: {row!r}") from exc
            if not isinstance(uid, str) or not uid:
                raise InvalidInputError(f"Malformed cache row: {row!r}")
            if len(key) != ED25519_KEY_LENGTH:
                raise LengthError(f"Invalid Ed25519 public key length: {len(key)}")
            parsed.append((uid, key, ts))

        for uid, key, ts in parsed:
            self.put(uid, key, did_from_public_key(key), cached_at=ts, verified=False)

        self._logger.info("cache_imported", count=len(parsed))
        return len(parsed)

    @property
    def stats(self) -> dict[str, Any]:
        now = self._clock()
        fresh = sum(1 for e in self._entries.values() if self._is_fresh(e, now))
        return {
            "size": len(self._entries),
            "capacity": self._max_size,
            "fresh": fresh,
            "stale": len(self._entries) - fresh,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }
