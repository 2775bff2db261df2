from __future__ import annotations

import errno
import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.repositories.channel_repository import ChannelRepository, StoredChannel
from backend.app.repositories.common import utc_now_iso
from backend.app.services.cache import TtlCache
from backend.app.services.channel_sync import ChannelSyncer, ChannelSyncResult
from backend.app.services.initial_setup import InitialSetup
from backend.app.services.livestream_monitor import LivestreamMonitor
from backend.app.services.quota_state import QuotaState
from backend.app.services.token_provider import TokenProvider
from backend.app.services.video_ingestor import SHORTS_CACHE_PREFIX, VideoIngestor
from backend.app.services.youtube_feed import FeedChecker
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("subfeed.scheduler")

NORMAL_CYCLE_SECONDS = 30 * 60
FAST_CYCLE_SECONDS = 10 * 60
SUBSCRIPTION_SYNC_INTERVAL_SECONDS = 10 * 60
IDLE_RETRY_SECONDS = 60

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX fallback
    fcntl = None


@dataclass(frozen=True)
class PollingLane:
    name: str
    cycle_seconds: float
    fast_lane: bool
    post_step: Callable[[str], None] | None = None
    on_cycle_complete: Callable[[], None] | None = None


@dataclass
class LaneState:
    index: int = 0
    ticks: int = 0
    errors: int = 0
    last_channel_id: str | None = None
    last_outcome: str | None = None


class PollingScheduler:
    """
    Owns the two round-robin polling lanes and the subscription sync timer.

    Each lane and the sync timer run on their own daemon thread, so a lane never has
    more than one tick in flight. All waits go through one stop event.
    """

    def __init__(
        self,
        *,
        channel_repository: ChannelRepository,
        feed_checker: FeedChecker,
        token_provider: TokenProvider,
        quota_state: QuotaState,
        video_ingestor: VideoIngestor,
        livestream_monitor: LivestreamMonitor,
        channel_syncer: ChannelSyncer,
        cache: TtlCache,
        initial_setup: InitialSetup | None = None,
        normal_cycle_seconds: float = NORMAL_CYCLE_SECONDS,
        fast_cycle_seconds: float = FAST_CYCLE_SECONDS,
        sync_interval_seconds: float = SUBSCRIPTION_SYNC_INTERVAL_SECONDS,
        idle_retry_seconds: float = IDLE_RETRY_SECONDS,
        telemetry: TelemetryClient | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self._channels = channel_repository
        self._feed_checker = feed_checker
        self._token_provider = token_provider
        self._quota_state = quota_state
        self._ingestor = video_ingestor
        self._livestream_monitor = livestream_monitor
        self._syncer = channel_syncer
        self._cache = cache
        self._initial_setup = initial_setup
        self._sync_interval_seconds = max(1.0, sync_interval_seconds)
        self._idle_retry_seconds = max(0.0, idle_retry_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

        self.normal_lane = PollingLane(
            name="normal",
            cycle_seconds=max(1.0, normal_cycle_seconds),
            fast_lane=False,
            on_cycle_complete=self._clear_shorts_cache,
        )
        self.fast_lane = PollingLane(
            name="fast",
            cycle_seconds=max(1.0, fast_cycle_seconds),
            fast_lane=True,
            post_step=self._check_livestreams,
        )
        self._lane_states: dict[str, LaneState] = {
            self.normal_lane.name: LaneState(),
            self.fast_lane.name: LaneState(),
        }

        self._stop_event = threading.Event()
        self._bootstrap_done = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock_path = lock_path
        self._lock_file: Any | None = None
        self._lock_acquired = False

    def start(self) -> None:
        if any(thread.is_alive() for thread in self._threads):
            return

        if not self._try_acquire_process_lock():
            return

        self._stop_event.clear()
        self._bootstrap_done.clear()
        self._threads = [
            threading.Thread(
                target=self._run_sync_loop,
                name="subfeed-subscription-sync",
                daemon=True,
            ),
            threading.Thread(
                target=self._run_lane_loop,
                args=(self.normal_lane,),
                name="subfeed-lane-normal",
                daemon=True,
            ),
            threading.Thread(
                target=self._run_lane_loop,
                args=(self.fast_lane,),
                name="subfeed-lane-fast",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        LOGGER.info(
            "polling started normal_cycle=%ss fast_cycle=%ss sync_interval=%ss",
            int(self.normal_lane.cycle_seconds),
            int(self.fast_lane.cycle_seconds),
            int(self._sync_interval_seconds),
        )

    def stop(self) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=3)
        self._threads = []
        self._release_process_lock()

    def lane_state(self, lane_name: str) -> LaneState:
        return self._lane_states[lane_name]

    def status(self) -> dict[str, object]:
        quota = self._quota_state.snapshot()
        return {
            "running": any(thread.is_alive() for thread in self._threads),
            "quota_exceeded": quota.exceeded,
            "quota_reset_at": quota.reset_at.isoformat() if quota.reset_at else None,
            "lanes": {
                name: {
                    "index": state.index,
                    "ticks": state.ticks,
                    "errors": state.errors,
                    "last_channel_id": state.last_channel_id,
                    "last_outcome": state.last_outcome,
                }
                for name, state in self._lane_states.items()
            },
        }

    def run_lane_tick(self, lane: PollingLane) -> float:
        """Polls one channel of `lane` and returns the delay before its next tick."""
        state = self._lane_states[lane.name]
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(scheduler_lane=lane.name, scheduler_tick_id=tick_id)
        started_at = time.perf_counter()
        count: int | None = None
        try:
            channels = self._channels.list_lane_channels(fast_lane=lane.fast_lane)
            count = len(channels)
            if count == 0:
                state.index = 0
                return self._idle_retry_seconds

            state.index %= count
            channel = channels[state.index]
            state.last_channel_id = channel.channel_id
            self._telemetry.lane_tick_started(
                lane=lane.name,
                tick_id=tick_id,
                channel_id=channel.channel_id,
            )

            outcome = self._poll_channel(lane, channel)
            state.last_outcome = outcome
            self._advance(lane, state, count)
            self._telemetry.lane_tick_finished(
                lane=lane.name,
                tick_id=tick_id,
                channel_id=channel.channel_id,
                outcome=outcome,
                channel_count=count,
                started_at=started_at,
            )
            return lane.cycle_seconds / count
        except Exception as exc:
            state.errors += 1
            state.last_outcome = "error"
            if count:
                self._advance(lane, state, count)
            self._telemetry.lane_tick_failed(
                lane=lane.name,
                tick_id=tick_id,
                channel_id=state.last_channel_id if count else None,
                error=exc,
                started_at=started_at,
            )
            LOGGER.warning("%s lane tick failed", lane.name, exc_info=True)
            return self._idle_retry_seconds
        finally:
            state.ticks += 1
            reset_contextvars(**tick_tokens)

    def run_subscription_sync(self) -> ChannelSyncResult | None:
        access_token = self.wait_for_token()
        if access_token is None or not self.wait_for_quota():
            return None

        started_at = time.perf_counter()
        try:
            result = self._syncer.sync(access_token)
        except Exception as exc:
            self._telemetry.subscription_sync_failed(error=exc, started_at=started_at)
            LOGGER.warning("subscription sync failed", exc_info=True)
            return None

        self._telemetry.subscription_sync_finished(
            added=result.added,
            removed=result.removed,
            started_at=started_at,
        )
        return result

    def wait_for_token(self) -> str | None:
        while not self._stop_event.is_set():
            access_token = self._token_provider.get_valid_token()
            if access_token is not None:
                return access_token
            LOGGER.info("no valid token; retrying in %ss", int(self._idle_retry_seconds))
            self._stop_event.wait(self._idle_retry_seconds)
        return None

    def wait_for_quota(self) -> bool:
        while self._quota_state.is_exceeded():
            remaining = self._quota_state.seconds_until_reset()
            wait_seconds = self._idle_retry_seconds
            if remaining is not None:
                wait_seconds = max(1.0, remaining)
            LOGGER.info("quota exhausted; waiting %smin", int(wait_seconds // 60) + 1)
            if self._stop_event.wait(wait_seconds):
                return False
        return not self._stop_event.is_set()

    def _poll_channel(self, lane: PollingLane, channel: StoredChannel) -> str:
        if channel.last_fetched_at is not None:
            feed_check = self._feed_checker.check_for_new_videos(channel.channel_id)
            if not feed_check.has_new_videos:
                self._channels.set_last_fetched_at(channel.channel_id, utc_now_iso())
                if lane.post_step is not None:
                    self._run_post_step(lane, self._token_provider.get_valid_token())
                return "feed_unchanged"

        access_token = self.wait_for_token()
        if access_token is None or not self.wait_for_quota():
            return "stopped"

        new_video_ids = self._ingestor.ingest(
            channel.channel_id,
            access_token,
            notify=channel.last_fetched_at is not None,
        )
        if new_video_ids:
            LOGGER.info(
                "%s lane found new videos channel_id=%s count=%s",
                lane.name,
                channel.channel_id,
                len(new_video_ids),
            )
        self._run_post_step(lane, access_token)
        return "ingested"

    def _run_post_step(self, lane: PollingLane, access_token: str | None) -> None:
        if lane.post_step is None or access_token is None:
            return
        if self._quota_state.is_exceeded():
            return
        try:
            lane.post_step(access_token)
        except Exception:
            LOGGER.warning("%s lane post-step failed", lane.name, exc_info=True)

    def _advance(self, lane: PollingLane, state: LaneState, count: int) -> None:
        state.index += 1
        if state.index >= count:
            state.index = 0
            if lane.on_cycle_complete is not None:
                lane.on_cycle_complete()

    def _clear_shorts_cache(self) -> None:
        cleared = self._cache.clear_prefix(SHORTS_CACHE_PREFIX)
        LOGGER.debug("normal lane cycle complete; cleared %s shorts cache entries", cleared)

    def _check_livestreams(self, access_token: str) -> None:
        self._livestream_monitor.check_open_livestreams(access_token)

    def _run_lane_loop(self, lane: PollingLane) -> None:
        while not self._bootstrap_done.is_set():
            if self._stop_event.wait(0.5):
                return
        LOGGER.info("%s lane started cycle=%ss", lane.name, int(lane.cycle_seconds))
        while not self._stop_event.is_set():
            delay = self.run_lane_tick(lane)
            self._stop_event.wait(max(0.0, delay))

    def _run_sync_loop(self) -> None:
        try:
            if self._initial_setup is not None:
                self._initial_setup.run()
        except Exception:
            LOGGER.warning("initial setup failed", exc_info=True)
        finally:
            self._bootstrap_done.set()

        while not self._stop_event.is_set():
            self.run_subscription_sync()
            self._stop_event.wait(self._sync_interval_seconds)

    def _try_acquire_process_lock(self) -> bool:
        if self._lock_path is None:
            return True

        if fcntl is None:
            LOGGER.warning("scheduler lock unavailable on this platform; starting without it")
            return True

        lock_path = self._lock_path
        lock_file: Any | None = None
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = lock_path.open("a+", encoding="utf-8")
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if lock_file is not None:
                try:
                    lock_file.close()
                except OSError:
                    pass
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                LOGGER.info(
                    "polling not started; another process owns the quota budget path=%s",
                    lock_path,
                )
                return False
            LOGGER.warning(
                "scheduler lock acquisition failed path=%s; starting anyway",
                lock_path,
                exc_info=True,
            )
            return True

        try:
            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(f"{os.getpid()}\n")
            lock_file.flush()
        except OSError:
            LOGGER.debug("scheduler lock pid write failed path=%s", lock_path, exc_info=True)

        self._lock_file = lock_file
        self._lock_acquired = True
        return True

    def _release_process_lock(self) -> None:
        lock_file = self._lock_file
        if lock_file is None:
            self._lock_acquired = False
            return

        try:
            if self._lock_acquired and fcntl is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError:
            LOGGER.debug("scheduler lock release failed path=%s", self._lock_path, exc_info=True)
        finally:
            try:
                lock_file.close()
            except OSError:
                pass
            self._lock_file = None
            self._lock_acquired = False
