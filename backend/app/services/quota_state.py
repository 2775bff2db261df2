from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from threading import Lock
from zoneinfo import ZoneInfo

LOGGER = logging.getLogger("subfeed.quota")

# YouTube Data API daily quota rolls over at midnight Pacific time.
DEFAULT_QUOTA_RESET_TIMEZONE = "America/Los_Angeles"


class QuotaExceededError(Exception):
    def __init__(self, message: str = "YouTube API quota exceeded") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class QuotaSnapshot:
    exceeded: bool
    reset_at: datetime | None


def _utc_now() -> datetime:
    return datetime.now(UTC)


def next_midnight_after(now: datetime, tz: ZoneInfo) -> datetime:
    local_now = now.astimezone(tz)
    next_day = local_now.date() + timedelta(days=1)
    local_midnight = datetime.combine(next_day, time(0, 0), tzinfo=tz)
    return local_midnight.astimezone(UTC)


class QuotaState:
    def __init__(
        self,
        *,
        reset_timezone: str = DEFAULT_QUOTA_RESET_TIMEZONE,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._tz = ZoneInfo(reset_timezone)
        self._clock = clock
        self._lock = Lock()
        self._exceeded = False
        self._reset_at: datetime | None = None

    def is_exceeded(self) -> bool:
        with self._lock:
            if not self._exceeded:
                return False
            if self._reset_at is not None and self._clock() >= self._reset_at:
                self._clear_locked()
                return False
            return True

    def mark_exceeded(self) -> datetime:
        reset_at = next_midnight_after(self._clock(), self._tz)
        with self._lock:
            self._exceeded = True
            self._reset_at = reset_at
        LOGGER.warning("youtube quota exceeded reset_at=%s", reset_at.isoformat())
        return reset_at

    def reset(self) -> None:
        with self._lock:
            self._clear_locked()

    def reset_at(self) -> datetime | None:
        with self._lock:
            return self._reset_at

    def seconds_until_reset(self) -> float | None:
        reset_at = self.reset_at()
        if reset_at is None:
            return None
        return max(0.0, (reset_at - self._clock()).total_seconds())

    def snapshot(self) -> QuotaSnapshot:
        exceeded = self.is_exceeded()
        return QuotaSnapshot(exceeded=exceeded, reset_at=self.reset_at())

    def _clear_locked(self) -> None:
        if self._exceeded:
            LOGGER.info("youtube quota window cleared")
        self._exceeded = False
        self._reset_at = None
