from __future__ import annotations

import json
import types
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

import pytest
from googleapiclient.errors import HttpError

from backend.app.services.quota_state import QuotaExceededError, QuotaState, next_midnight_after
from backend.app.services.youtube_api import (
    PlaylistNotFoundError,
    YouTubeApiClient,
    YouTubeApiError,
    shorts_playlist_id_for,
)
from backend.app.services.youtube_retry import RetryExecutor


class _FakeYouTubeResource:
    """Replays queued responses (or exceptions) and records every list() call."""

    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, dict[str, object]]] = []
        self._resource = ""

    def subscriptions(self) -> _FakeYouTubeResource:
        self._resource = "subscriptions"
        return self

    def playlistItems(self) -> _FakeYouTubeResource:  # noqa: N802
        self._resource = "playlistItems"
        return self

    def videos(self) -> _FakeYouTubeResource:
        self._resource = "videos"
        return self

    def list(self, **kwargs: object) -> _FakeYouTubeResource:
        self.calls.append((self._resource, kwargs))
        return self

    def execute(self) -> Any:
        next_response = self._responses.pop(0)
        if isinstance(next_response, Exception):
            raise next_response
        return next_response


class _FakeCredentials:
    def __init__(self, token: str) -> None:
        self.token = token


def _http_error(status: int, reason: str) -> HttpError:
    body = json.dumps(
        {"error": {"code": status, "message": reason, "errors": [{"reason": reason}]}}
    ).encode("utf-8")
    return HttpError(types.SimpleNamespace(status=status, reason=reason), body)


def _client(
    monkeypatch: pytest.MonkeyPatch,
    responses: list[Any],
    *,
    quota_state: QuotaState | None = None,
) -> tuple[YouTubeApiClient, _FakeYouTubeResource, list[float], list[dict[str, Any]]]:
    resource = _FakeYouTubeResource(responses)
    builds: list[dict[str, Any]] = []
    sleeps: list[float] = []

    def _build(service_name: str, version: str, **kwargs: Any) -> _FakeYouTubeResource:
        builds.append({"service": (service_name, version), **kwargs})
        return resource

    def fake_import_module(name: str) -> object:
        if name == "google.oauth2.credentials":
            return types.SimpleNamespace(Credentials=_FakeCredentials)
        if name == "googleapiclient.discovery":
            return types.SimpleNamespace(build=_build)
        raise AssertionError(f"Unexpected module import: {name}")

    monkeypatch.setattr("backend.app.services.youtube_api.import_module", fake_import_module)
    executor = RetryExecutor(
        quota_state or QuotaState(),
        max_attempts=3,
        base_delay_seconds=1.0,
        sleep=sleeps.append,
    )
    client = YouTubeApiClient(executor, base_url="https://api.test/v3")
    return client, resource, sleeps, builds


def test_list_subscriptions_follows_pagination(monkeypatch: pytest.MonkeyPatch) -> None:
    client, resource, _, builds = _client(
        monkeypatch,
        [
            {
                "items": [
                    {
                        "snippet": {
                            "title": "Alpha",
                            "resourceId": {"channelId": "UCalpha"},
                            "thumbnails": {"default": {"url": "https://img/a.jpg"}},
                        }
                    }
                ],
                "nextPageToken": "page-2",
            },
            {
                "items": [
                    {"snippet": {"title": "Beta", "resourceId": {"channelId": "UCbeta"}}},
                    {"snippet": {"title": "No id"}},
                ]
            },
        ],
    )

    subscriptions = client.list_subscriptions("token-1")

    assert [subscription.channel_id for subscription in subscriptions] == ["UCalpha", "UCbeta"]
    assert subscriptions[0].thumbnail_url == "https://img/a.jpg"
    assert subscriptions[1].thumbnail_url is None
    first_call, second_call = resource.calls
    assert first_call[0] == "subscriptions"
    assert first_call[1]["mine"] is True
    assert "pageToken" not in first_call[1]
    assert second_call[1]["pageToken"] == "page-2"
    assert len(builds) == 1
    assert builds[0]["service"] == ("youtube", "v3")
    assert builds[0]["credentials"].token == "token-1"
    assert builds[0]["cache_discovery"] is False
    assert builds[0]["client_options"] == {"api_endpoint": "https://api.test/v3/"}


def test_list_recent_uploads_prefers_medium_thumbnail(monkeypatch: pytest.MonkeyPatch) -> None:
    client, resource, _, _ = _client(
        monkeypatch,
        [
            {
                "items": [
                    {
                        "snippet": {
                            "title": "First",
                            "publishedAt": "2024-03-01T10:00:00Z",
                            "resourceId": {"videoId": "vid1"},
                            "thumbnails": {
                                "default": {"url": "https://img/d.jpg"},
                                "medium": {"url": "https://img/m.jpg"},
                            },
                        }
                    },
                    {
                        "snippet": {
                            "title": "Second",
                            "resourceId": {"videoId": "vid2"},
                            "thumbnails": {"default": {"url": "https://img/d2.jpg"}},
                        }
                    },
                ]
            }
        ],
    )

    items = client.list_recent_uploads("UUchan", "token", 10)

    assert [item.video_id for item in items] == ["vid1", "vid2"]
    assert items[0].thumbnail_url == "https://img/m.jpg"
    assert items[0].published_at == "2024-03-01T10:00:00Z"
    assert items[1].thumbnail_url == "https://img/d2.jpg"
    assert resource.calls == [
        ("playlistItems", {"part": "snippet", "playlistId": "UUchan", "maxResults": 10})
    ]


def test_list_video_details_batches_and_reads_live_state(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    video_ids = [f"vid{index}" for index in range(51)]
    client, resource, _, _ = _client(
        monkeypatch,
        [
            {
                "items": [
                    {"id": "vid0", "contentDetails": {"duration": "PT45S"}},
                    {
                        "id": "vid1",
                        "contentDetails": {"duration": "PT1H2M"},
                        "liveStreamingDetails": {"actualEndTime": "2024-03-01T12:00:00Z"},
                    },
                    {"id": "vid2", "liveStreamingDetails": {}},
                ]
            },
            {"items": [{"id": "vid50", "contentDetails": {"duration": "PT3M"}}]},
        ],
    )

    details = client.list_video_details(video_ids, "token")

    assert len(resource.calls) == 2
    assert all(call[0] == "videos" for call in resource.calls)
    assert len(str(resource.calls[0][1]["id"]).split(",")) == 50
    assert resource.calls[1][1]["id"] == "vid50"
    by_id = {detail.video_id: detail for detail in details}
    assert by_id["vid0"].is_livestream is False
    assert by_id["vid1"].is_livestream is True
    assert by_id["vid1"].livestream_ended_at == "2024-03-01T12:00:00Z"
    assert by_id["vid2"].duration == "PT0S"
    assert by_id["vid2"].livestream_ended_at is None


def test_list_video_details_skips_request_for_empty_input(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    client, resource, _, builds = _client(monkeypatch, [])

    assert client.list_video_details([], "token") == []
    assert resource.calls == []
    assert builds == []


def test_missing_upload_playlist_raises_playlist_not_found(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    # Not a quota signal, so the executor still retries before surfacing it.
    client, resource, sleeps, _ = _client(
        monkeypatch,
        [_http_error(404, "playlistNotFound") for _ in range(3)],
    )

    with pytest.raises(PlaylistNotFoundError) as exc_info:
        client.list_recent_uploads("UUgone", "token")
    assert exc_info.value.status == 404
    assert len(resource.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_quota_error_is_not_retried_and_marks_quota(monkeypatch: pytest.MonkeyPatch) -> None:
    quota_state = QuotaState()
    client, resource, sleeps, _ = _client(
        monkeypatch,
        [_http_error(403, "quotaExceeded")],
        quota_state=quota_state,
    )

    with pytest.raises(QuotaExceededError):
        client.list_subscriptions("token")
    assert len(resource.calls) == 1
    assert sleeps == []
    assert quota_state.is_exceeded() is True


def test_transport_error_is_retried_then_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    client, resource, sleeps, _ = _client(
        monkeypatch,
        [OSError("connection reset"), {"items": []}],
    )

    assert client.list_recent_uploads("UUchan", "token") == []
    assert len(resource.calls) == 2
    assert sleeps == [1.0]


def test_server_error_surfaces_after_max_attempts(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _, sleeps, _ = _client(
        monkeypatch,
        [_http_error(500, "backendError") for _ in range(3)],
    )

    with pytest.raises(YouTubeApiError) as exc_info:
        client.list_subscriptions("token")
    assert exc_info.value.status == 500
    assert exc_info.value.reason == "backendError"
    assert sleeps == [1.0, 2.0]


def test_shorts_collection_is_best_effort(monkeypatch: pytest.MonkeyPatch) -> None:
    client, resource, _, _ = _client(
        monkeypatch,
        [_http_error(404, "playlistNotFound") for _ in range(3)],
    )

    assert client.list_shorts_collection("UCchan", "token") == []
    assert resource.calls[0][1]["playlistId"] == "UUSHchan"


def test_shorts_playlist_id_for_swaps_only_the_channel_prefix() -> None:
    assert shorts_playlist_id_for("UCabc") == "UUSHabc"
    assert shorts_playlist_id_for("HCabc") == "HCabc"


def test_retry_executor_returns_first_success() -> None:
    calls: list[int] = []
    sleeps: list[float] = []
    executor = RetryExecutor(QuotaState(), sleep=sleeps.append)

    def _operation() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise YouTubeApiError(503, "unavailable")
        return "ok"

    assert executor.execute(_operation) == "ok"
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_retry_executor_reraises_quota_error_without_retry() -> None:
    quota_state = QuotaState()
    calls: list[int] = []
    executor = RetryExecutor(quota_state, sleep=lambda _: None)

    def _operation() -> None:
        calls.append(1)
        raise QuotaExceededError()

    with pytest.raises(QuotaExceededError):
        executor.execute(_operation)
    assert len(calls) == 1
    assert quota_state.is_exceeded() is True


def test_quota_state_resets_at_pacific_midnight() -> None:
    now = [datetime(2024, 7, 1, 18, 0, tzinfo=UTC)]
    quota_state = QuotaState(clock=lambda: now[0])

    reset_at = quota_state.mark_exceeded()

    # 11:00 PDT on July 1st; the next Pacific midnight is 07:00 UTC on July 2nd.
    assert reset_at == datetime(2024, 7, 2, 7, 0, tzinfo=UTC)
    assert quota_state.is_exceeded() is True
    assert quota_state.seconds_until_reset() == 13 * 3600

    now[0] = datetime(2024, 7, 2, 7, 0, tzinfo=UTC)
    assert quota_state.is_exceeded() is False
    assert quota_state.reset_at() is None
    assert quota_state.snapshot().exceeded is False


def test_next_midnight_after_uses_standard_time_in_winter() -> None:
    reset_at = next_midnight_after(
        datetime(2024, 1, 15, 9, 30, tzinfo=UTC),
        ZoneInfo("America/Los_Angeles"),
    )

    assert reset_at == datetime(2024, 1, 16, 8, 0, tzinfo=UTC)


def test_quota_state_manual_reset() -> None:
    quota_state = QuotaState()
    quota_state.mark_exceeded()

    quota_state.reset()

    assert quota_state.is_exceeded() is False
    assert quota_state.seconds_until_reset() is None
