from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from backend.app.services.quota_state import QuotaExceededError, QuotaState

LOGGER = logging.getLogger("subfeed.youtube.retry")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
QUOTA_EXCEEDED_REASONS: frozenset[str] = frozenset({"quotaExceeded", "dailyLimitExceeded"})

T = TypeVar("T")


class RetryExecutor:
    """
    Runs one upstream call with linear backoff.

    A quota-exhausted signal is never retried: it records the exhaustion window on
    the shared `QuotaState` and surfaces as `QuotaExceededError`. Any other failure is
    retried after `attempt * base_delay` seconds; the last failure propagates unchanged.
    """

    def __init__(
        self,
        quota_state: QuotaState,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._quota_state = quota_state
        self._max_attempts = max(1, max_attempts)
        self._base_delay_seconds = max(0.0, base_delay_seconds)
        self._sleep = sleep

    @property
    def quota_state(self) -> QuotaState:
        return self._quota_state

    def execute(self, operation: Callable[[], T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return operation()
            except QuotaExceededError:
                self._quota_state.mark_exceeded()
                raise
            except Exception as exc:
                if _is_quota_exceeded_error(exc):
                    self._quota_state.mark_exceeded()
                    raise QuotaExceededError() from exc
                if attempt >= self._max_attempts:
                    raise
                delay = attempt * self._base_delay_seconds
                LOGGER.debug(
                    "youtube call failed attempt=%s/%s retry_in=%.1fs error=%s",
                    attempt,
                    self._max_attempts,
                    delay,
                    type(exc).__name__,
                )
                if delay > 0:
                    self._sleep(delay)
        raise AssertionError("unreachable")


def _is_quota_exceeded_error(exc: Exception) -> bool:
    reason = getattr(exc, "reason", None)
    return isinstance(reason, str) and reason in QUOTA_EXCEEDED_REASONS
