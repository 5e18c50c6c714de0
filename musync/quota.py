"""YouTube Data API quota tracking.

Each operation is charged its documented cost against a rolling 24-hour
window.  An operation that would push usage past ``limit * safety`` is
refused with ``QuotaExceeded`` before any request is sent.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum
from functools import lru_cache
from typing import Callable, Deque, Tuple

from musync.config import get_settings
from reconcile.errors import QuotaExceeded

logger = logging.getLogger(__name__)

_WINDOW = 24 * 60 * 60  # seconds


class QuotaOperation(str, Enum):
    READ_LIGHT = "read_light"  # list calls
    SEARCH = "search"
    WRITE = "write"
    DELETE = "delete"


QUOTA_COSTS = {
    QuotaOperation.READ_LIGHT: 1,
    QuotaOperation.SEARCH: 100,
    QuotaOperation.WRITE: 50,
    QuotaOperation.DELETE: 50,
}


class QuotaTracker:
    """In-process usage ledger shared by every YouTube adapter."""

    def __init__(
        self,
        daily_quota: int,
        safety: float = 0.9,
        clock: Callable[[], float] = time.time,
    ):
        self.daily_quota = daily_quota
        self.safety = safety
        self._clock = clock
        self._entries: Deque[Tuple[float, int]] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - _WINDOW
        while self._entries and self._entries[0][0] < cutoff:
            self._entries.popleft()

    def used(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return sum(units for _, units in self._entries)

    def remaining(self) -> int:
        return max(0, self.daily_quota - self.used())

    def would_exceed(self, operation: QuotaOperation, count: int = 1) -> bool:
        required = QUOTA_COSTS[operation] * count
        return self.used() + required > self.daily_quota * self.safety

    def charge(self, operation: QuotaOperation, count: int = 1) -> int:
        """Record *count* operations, or raise ``QuotaExceeded`` without recording."""
        units = QUOTA_COSTS[operation] * count
        with self._lock:
            now = self._clock()
            self._prune(now)
            used = sum(u for _, u in self._entries)
            if used + units > self.daily_quota * self.safety:
                percent = used / self.daily_quota * 100 if self.daily_quota else 100.0
                logger.warning(
                    "YouTube quota guard refused %s (%d units, %.1f%% used)",
                    operation.value, units, percent,
                )
                raise QuotaExceeded(
                    f"YouTube API quota limit reached ({percent:.1f}% used)",
                    platform="youtube",
                )
            self._entries.append((now, units))
        return units

    def stats(self) -> dict:
        used = self.used()
        return {
            "used": used,
            "remaining": max(0, self.daily_quota - used),
            "total": self.daily_quota,
            "percent_used": round(used / self.daily_quota * 100, 2) if self.daily_quota else 100.0,
            "safety_threshold": self.safety,
        }


@lru_cache
def get_quota_tracker() -> QuotaTracker:
    """Process-wide tracker built from settings."""
    settings = get_settings()
    return QuotaTracker(settings.youtube_daily_quota, settings.youtube_quota_safety)
