"""
KairOS -- Rate Limiting

Sliding-window limiter shared by the authentication guard (attempts per
chipUID) and the discovery protocol (messages per origin).
"""

from __future__ import annotations

from collections import OrderedDict, deque
from typing import Any, Callable

import structlog

from kairos.primitives.common import now_ms

logger = structlog.get_logger("kairos.systems.safety.rate_limit")


class RateLimiter:
    """
    Sliding-window rate limiter keyed by an arbitrary string.

    Each key gets its own window of event timestamps (ms). Timestamps older
    than the window are evicted before every check. The number of tracked
    keys is bounded; the least recently active key is forgotten first.

    Thread-safety: NOT thread-safe. Single-threaded asyncio.
    """

    def __init__(
        self,
        max_events: int,
        window_s: float,
        max_keys: int = 10_000,
        name: str = "rate_limiter",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._max_events = max_events
        self._window_ms = int(window_s * 1000)
        self._max_keys = max_keys
        self._clock = clock
        self._windows: OrderedDict[str, deque[int]] = OrderedDict()
        self._allowed = 0
        self._denied = 0
        self._logger = logger.bind(component=name)

    def _window(self, key: str, now: int) -> deque[int]:
        window = self._windows.get(key)
        if window is None:
            window = deque()
            self._windows[key] = window
            while len(self._windows) > self._max_keys:
                self._windows.popitem(last=False)
        else:
            self._windows.move_to_end(key)

        cutoff = now - self._window_ms
        while window and window[0] <= cutoff:
            window.popleft()
        return window

    def check(self, key: str) -> bool:
        """True if one more event for `key` fits the window. Records nothing."""
        return len(self._window(key, self._clock())) < self._max_events

    def record(self, key: str) -> None:
        now = self._clock()
        self._window(key, now).append(now)

    def hit(self, key: str) -> bool:
        """Check and, when allowed, record in one step."""
        now = self._clock()
        window = self._window(key, now)
        if len(window) >= self._max_events:
            self._denied += 1
            self._logger.warning(
                "rate_limit_exceeded",
                key=key,
                current_count=len(window),
                max_events=self._max_events,
                window_ms=self._window_ms,
            )
            return False
        window.append(now)
        self._allowed += 1
        return True

    def remaining(self, key: str) -> int:
        return max(0, self._max_events - len(self._window(key, self._clock())))

    def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "keys": len(self._windows),
            "allowed": self._allowed,
            "denied": self._denied,
            "max_events": self._max_events,
            "window_ms": self._window_ms,
        }
