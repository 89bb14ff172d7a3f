"""
KairOS -- Challenge Ledger

Anti-replay for challenge-response authentication. A verifier issues every
challenge itself and accepts each one exactly once, within a bounded
validity window. A signature captured from an earlier session is useless
because its challenge has already been consumed or has expired.

Challenge format: "KairOS-Auth-<context>-<timestamp_ms>-<nonce>"
"""

from __future__ import annotations

import secrets
from collections import OrderedDict
from typing import Any, Callable

import structlog

from kairos.primitives.common import now_ms

logger = structlog.get_logger("kairos.systems.identity.challenge")

CHALLENGE_PREFIX = "KairOS-Auth"


class ChallengeLedger:
    """
    Tracks outstanding challenges for one verifier.

    Thread-safety: NOT thread-safe. Single-threaded asyncio like every
    KairOS component.
    """

    def __init__(
        self,
        validity_window_s: float = 60.0,
        enforce_single_use: bool = True,
        max_outstanding: int = 10_000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._window_ms = int(validity_window_s * 1000)
        self._enforce = enforce_single_use
        self._max_outstanding = max_outstanding
        self._clock = clock
        # challenge -> issued_at (ms); insertion order == issue order
        self._outstanding: OrderedDict[str, int] = OrderedDict()
        self._consumed = 0
        self._rejected = 0
        self._logger = logger.bind(component="challenge_ledger")

    @property
    def enforcing(self) -> bool:
        return self._enforce

    def issue(self, context: str | None = None) -> str:
        """Mint a fresh challenge: random nonce plus timestamp, unique per call."""
        issued_at = self._clock()
        nonce = secrets.token_hex(16)
        challenge = f"{CHALLENGE_PREFIX}-{context or 'any'}-{issued_at}-{nonce}"

        self._outstanding[challenge] = issued_at
        while len(self._outstanding) > self._max_outstanding:
            self._outstanding.popitem(last=False)
        return challenge

    def consume(self, challenge: str) -> bool:
        """
        Accept a challenge once. Returns False for unknown, expired, or
        already-consumed challenges. Always True when enforcement is off.
        """
        if not self._enforce:
            return True

        issued_at = self._outstanding.pop(challenge, None)
        if issued_at is None:
            self._rejected += 1
            self._logger.warning("challenge_unknown_or_replayed")
            return False

        if self._clock() - issued_at > self._window_ms:
            self._rejected += 1
            self._logger.warning("challenge_expired", age_ms=self._clock() - issued_at)
            return False

        self._consumed += 1
        return True

    def prune(self) -> int:
        """Drop expired challenges. Returns the number removed."""
        cutoff = self._clock() - self._window_ms
        expired = [c for c, issued_at in self._outstanding.items() if issued_at < cutoff]
        for challenge in expired:
            del self._outstanding[challenge]
        if expired:
            self._logger.debug("challenges_pruned", count=len(expired))
        return len(expired)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "outstanding": len(self._outstanding),
            "consumed": self._consumed,
            "rejected": self._rejected,
            "enforcing": self._enforce,
        }
