from __future__ import annotations

import json
from typing import Any
from urllib.error import URLError
from urllib.request import Request

import pytest

from backend.app.services.cache import TtlCache
from backend.app.services.duration import (
    format_duration,
    is_short_duration,
    parse_iso8601_duration_seconds,
)
from backend.app.services.notifier import (
    DiscordWebhookNotifier,
    NewVideoNotice,
    NoOpNotifier,
    build_notifier,
    build_video_embed,
    build_video_url,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("PT45S", 45),
        ("PT1M", 60),
        ("PT1H2M3S", 3723),
        ("P0D", 0),
        ("", 0),
        (None, 0),
    ],
)
def test_parse_iso8601_duration_seconds(raw: object, expected: int) -> None:
    assert parse_iso8601_duration_seconds(raw) == expected


def test_is_short_duration_bounds() -> None:
    assert is_short_duration("PT45S") is True
    assert is_short_duration("PT60S") is True
    assert is_short_duration("PT61S") is False
    assert is_short_duration("PT0S") is False
    assert is_short_duration("garbage") is False


def test_format_duration() -> None:
    assert format_duration("PT45S") == "0:45"
    assert format_duration("PT12M5S") == "12:05"
    assert format_duration("PT1H2M3S") == "1:02:03"


def test_cache_entries_expire_lazily() -> None:
    clock = _Clock()
    cache = TtlCache(clock=clock)
    cache.set("shorts:UCa", frozenset({"v1"}), ttl_seconds=60)
    cache.set("forever", 1)

    clock.now += 59
    assert cache.get("shorts:UCa") == frozenset({"v1"})

    clock.now += 2
    assert cache.get("shorts:UCa") is None
    assert cache.get("forever") == 1


def test_cache_evicts_oldest_inserted_key_when_full() -> None:
    cache = TtlCache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_cache_clear_prefix_and_sweep() -> None:
    clock = _Clock()
    cache = TtlCache(clock=clock)
    cache.set("shorts:UCa", frozenset())
    cache.set("shorts:UCb", frozenset())
    cache.set("other", "keep")
    cache.set("stale", "x", ttl_seconds=1)

    assert cache.clear_prefix("shorts:") == 2
    clock.now += 5
    assert cache.sweep() == 1
    assert len(cache) == 1

    cache.delete("other")
    assert cache.get("other") is None


def test_video_url_depends_on_short_flag() -> None:
    assert build_video_url("abc", is_short=True) == "https://www.youtube.com/shorts/abc"
    assert build_video_url("abc", is_short=False) == "https://www.youtube.com/watch?v=abc"


def test_video_embed_includes_optional_fields_only_when_present() -> None:
    notice = NewVideoNotice(
        video_id="abc",
        title="A video",
        channel_title="A channel",
        thumbnail_url=None,
        published_at="2024-03-01T10:00:00Z",
        is_short=False,
    )

    embed = build_video_embed(notice)

    assert embed["author"] == {"name": "A channel"}
    assert embed["timestamp"] == "2024-03-01T10:00:00Z"
    assert "image" not in embed
    assert "footer" not in embed


def test_discord_notifier_posts_embed(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: list[Request] = []

    class _Response:
        def __enter__(self) -> _Response:
            return self

        def __exit__(self, *_: object) -> None:
            return None

        def read(self) -> bytes:
            return b""

    def _fake_urlopen(request: Request, timeout: float) -> Any:
        _ = timeout
        posted.append(request)
        return _Response()

    monkeypatch.setattr("backend.app.services.notifier.urlopen", _fake_urlopen)

    DiscordWebhookNotifier("https://discord.test/hook").notify_new_video(
        NewVideoNotice(
            video_id="abc",
            title="Short one",
            channel_title="Channel",
            thumbnail_url="https://img/abc.jpg",
            published_at=None,
            is_short=True,
            duration="PT45S",
        )
    )

    assert posted[0].get_method() == "POST"
    body = json.loads(posted[0].data or b"{}")  # type: ignore[arg-type]
    assert body["embeds"][0]["url"] == "https://www.youtube.com/shorts/abc"
    assert body["embeds"][0]["image"] == {"url": "https://img/abc.jpg"}
    assert body["embeds"][0]["footer"] == {"text": "0:45"}


def test_discord_notifier_swallows_delivery_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _failing_urlopen(request: Request, timeout: float) -> Any:
        _ = (request, timeout)
        raise URLError("unreachable")

    monkeypatch.setattr("backend.app.services.notifier.urlopen", _failing_urlopen)

    DiscordWebhookNotifier("https://discord.test/hook").notify_warning("title", "description")


def test_build_notifier_without_webhook_is_noop() -> None:
    assert isinstance(build_notifier(None), NoOpNotifier)
    assert isinstance(build_notifier("https://discord.test/hook"), DiscordWebhookNotifier)
