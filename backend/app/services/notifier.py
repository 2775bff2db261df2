from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from backend.app.services.duration import format_duration

LOGGER = logging.getLogger("subfeed.notifier")

NEW_VIDEO_COLOR = 0xD93025
SETUP_COMPLETE_COLOR = 0x00C853
WARNING_COLOR = 0xFFA000


@dataclass(frozen=True)
class NewVideoNotice:
    video_id: str
    title: str
    channel_title: str
    thumbnail_url: str | None
    published_at: str | None
    is_short: bool
    duration: str | None = None


class Notifier(Protocol):
    def notify_new_video(self, video: NewVideoNotice) -> None:
        ...

    def notify_setup_complete(self, channel_count: int, video_count: int) -> None:
        ...

    def notify_warning(self, title: str, description: str) -> None:
        ...


class NoOpNotifier:
    def notify_new_video(self, video: NewVideoNotice) -> None:
        _ = video

    def notify_setup_complete(self, channel_count: int, video_count: int) -> None:
        _ = (channel_count, video_count)

    def notify_warning(self, title: str, description: str) -> None:
        _ = (title, description)


def build_video_url(video_id: str, *, is_short: bool) -> str:
    if is_short:
        return f"https://www.youtube.com/shorts/{video_id}"
    return f"https://www.youtube.com/watch?v={video_id}"


def build_video_embed(video: NewVideoNotice) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "author": {"name": video.channel_title},
        "title": video.title,
        "url": build_video_url(video.video_id, is_short=video.is_short),
        "color": NEW_VIDEO_COLOR,
    }
    if video.thumbnail_url:
        embed["image"] = {"url": video.thumbnail_url}
    if video.published_at:
        embed["timestamp"] = video.published_at
    if video.duration:
        embed["footer"] = {"text": format_duration(video.duration)}
    return embed


class DiscordWebhookNotifier:
    """Posts embeds to a Discord webhook. Delivery is best-effort; failures are logged only."""

    def __init__(self, webhook_url: str, *, timeout_seconds: float = 10.0) -> None:
        self._webhook_url = webhook_url
        self._timeout_seconds = timeout_seconds

    def notify_new_video(self, video: NewVideoNotice) -> None:
        self._post({"embeds": [build_video_embed(video)]}, kind="new_video")

    def notify_setup_complete(self, channel_count: int, video_count: int) -> None:
        self._post(
            {
                "embeds": [
                    {
                        "title": "Initial setup complete",
                        "description": (
                            f"Fetched {video_count} videos from {channel_count} channels."
                        ),
                        "color": SETUP_COMPLETE_COLOR,
                        "timestamp": datetime.now(UTC).isoformat(),
                    }
                ]
            },
            kind="setup_complete",
        )

    def notify_warning(self, title: str, description: str) -> None:
        self._post(
            {
                "embeds": [
                    {
                        "title": title,
                        "description": description,
                        "color": WARNING_COLOR,
                        "timestamp": datetime.now(UTC).isoformat(),
                    }
                ]
            },
            kind="warning",
        )

    def _post(self, body: dict[str, Any], *, kind: str) -> None:
        request = Request(
            self._webhook_url,
            data=json.dumps(body).encode("utf-8"),
            headers={"content-type": "application/json", "user-agent": "subfeed/1.0"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                response.read()
        except (HTTPError, URLError, TimeoutError, OSError):
            LOGGER.warning("discord notification failed kind=%s", kind, exc_info=True)


def build_notifier(webhook_url: str | None) -> Notifier:
    if webhook_url:
        return DiscordWebhookNotifier(webhook_url)
    LOGGER.info("discord webhook not configured; notifications disabled")
    return NoOpNotifier()
