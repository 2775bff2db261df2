from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "subfeed.telemetry"

LANE_TICK_START = "lane.tick.start"
LANE_TICK_FINISH = "lane.tick.finish"
LANE_TICK_ERROR = "lane.tick.error"
SUBSCRIPTIONS_SYNC_FINISH = "subscriptions.sync.finish"
SUBSCRIPTIONS_SYNC_ERROR = "subscriptions.sync.error"
HTTP_REQUEST_FINISH = "http.request.finish"
HTTP_REQUEST_ERROR = "http.request.error"

# OAuth material and the webhook url never leave the process.
_CREDENTIAL_KEY_PARTS: tuple[str, ...] = ("token", "secret", "authorization", "webhook")
# Upstream titles are free text; keep them short in the event stream.
_TITLE_MAX_LENGTH = 80
_DEFAULT_MAX_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    """
    Emits polling and host events to a sink.

    Callers use the typed helpers; each one takes the `time.perf_counter()` value
    captured when the work began and reports the elapsed milliseconds.
    """

    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def lane_tick_started(self, *, lane: str, tick_id: str, channel_id: str) -> None:
        self.emit(LANE_TICK_START, lane=lane, tick_id=tick_id, channel_id=channel_id)

    def lane_tick_finished(
        self,
        *,
        lane: str,
        tick_id: str,
        channel_id: str,
        outcome: str,
        channel_count: int,
        started_at: float,
    ) -> None:
        self.emit(
            LANE_TICK_FINISH,
            lane=lane,
            tick_id=tick_id,
            channel_id=channel_id,
            outcome=outcome,
            channel_count=channel_count,
            duration_ms=_elapsed_ms(started_at),
        )

    def lane_tick_failed(
        self,
        *,
        lane: str,
        tick_id: str,
        channel_id: str | None,
        error: BaseException,
        started_at: float,
    ) -> None:
        self.emit(
            LANE_TICK_ERROR,
            lane=lane,
            tick_id=tick_id,
            channel_id=channel_id,
            error_type=type(error).__name__,
            duration_ms=_elapsed_ms(started_at),
        )

    def subscription_sync_finished(self, *, added: int, removed: int, started_at: float) -> None:
        self.emit(
            SUBSCRIPTIONS_SYNC_FINISH,
            added=added,
            removed=removed,
            duration_ms=_elapsed_ms(started_at),
        )

    def subscription_sync_failed(self, *, error: BaseException, started_at: float) -> None:
        self.emit(
            SUBSCRIPTIONS_SYNC_ERROR,
            error_type=type(error).__name__,
            duration_ms=_elapsed_ms(started_at),
        )

    def http_request_finished(
        self,
        *,
        method: str,
        path: str,
        status_code: int,
        started_at: float,
    ) -> None:
        self.emit(
            HTTP_REQUEST_FINISH,
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=_elapsed_ms(started_at),
        )

    def http_request_failed(
        self,
        *,
        method: str,
        path: str,
        error: BaseException,
        started_at: float,
    ) -> None:
        self.emit(
            HTTP_REQUEST_ERROR,
            method=method,
            path=path,
            error_type=type(error).__name__,
            duration_ms=_elapsed_ms(started_at),
        )

    def emit(self, event_name: str, **attributes: object) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=sanitize_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, object]) -> dict[str, TelemetryValue]:
    """
    Redacts credential-like keys and clips free text.

    Channel and video ids pass through untouched; `*title` values are clipped harder
    than other strings. Anything that is not a scalar is reduced to its type name.
    """
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(part in key for part in _CREDENTIAL_KEY_PARTS):
            sanitized[key] = "[redacted]"
        elif value is None or isinstance(value, bool | int | float):
            sanitized[key] = value
        elif isinstance(value, str):
            limit = _TITLE_MAX_LENGTH if key.endswith("title") else _DEFAULT_MAX_LENGTH
            sanitized[key] = _clip(value, limit)
        else:
            sanitized[key] = type(value).__name__
    return sanitized


def _clip(value: str, limit: int) -> str:
    compact = " ".join(value.split())
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _elapsed_ms(started_at: float) -> int:
    return max(0, int((time.perf_counter() - started_at) * 1000))
