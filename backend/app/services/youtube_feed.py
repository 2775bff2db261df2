from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import feedparser

from backend.app.repositories.video_repository import VideoRepository

LOGGER = logging.getLogger("subfeed.youtube.feed")

YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml"
DEFAULT_FEED_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class FeedEntry:
    video_id: str
    title: str
    published: str


@dataclass(frozen=True)
class FeedCheckResult:
    has_new_videos: bool
    new_video_ids: list[str]


def parse_channel_feed(raw_document: bytes | str) -> list[FeedEntry]:
    parsed = feedparser.parse(raw_document)
    entries: list[FeedEntry] = []
    for entry in parsed.entries:
        video_id = entry.get("yt_videoid")
        if not isinstance(video_id, str) or not video_id.strip():
            continue
        title = entry.get("title")
        published = entry.get("published")
        entries.append(
            FeedEntry(
                video_id=video_id.strip(),
                title=title if isinstance(title, str) else "",
                published=published if isinstance(published, str) else "",
            )
        )
    return entries


class YouTubeFeedClient:
    """
    Unauthenticated per-channel Atom feed reader.

    Costs no API quota. Every failure mode returns an empty list, which callers must
    read as "unknown" rather than "no uploads".
    """

    def __init__(
        self,
        *,
        feed_url: str = YOUTUBE_FEED_URL,
        timeout_seconds: float = DEFAULT_FEED_TIMEOUT_SECONDS,
    ) -> None:
        self._feed_url = feed_url
        self._timeout_seconds = timeout_seconds

    def fetch_feed(self, channel_id: str) -> list[FeedEntry]:
        request = Request(
            f"{self._feed_url}?{urlencode({'channel_id': channel_id})}",
            headers={"user-agent": "subfeed/1.0"},
            method="GET",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                status_code = int(response.getcode() or 0)
                raw_document = response.read()
        except (HTTPError, URLError, TimeoutError, OSError):
            LOGGER.debug("channel feed fetch failed channel_id=%s", channel_id, exc_info=True)
            return []

        if not 200 <= status_code < 300:
            return []

        try:
            return parse_channel_feed(raw_document)
        except Exception:
            LOGGER.debug("channel feed parse failed channel_id=%s", channel_id, exc_info=True)
            return []


class FeedChecker:
    def __init__(
        self,
        video_repository: VideoRepository,
        fetch_feed: Callable[[str], list[FeedEntry]],
    ) -> None:
        self._videos = video_repository
        self._fetch_feed = fetch_feed

    def check_for_new_videos(self, channel_id: str) -> FeedCheckResult:
        entries = self._fetch_feed(channel_id)
        if not entries:
            # Inconclusive: fall back to the authenticated path.
            return FeedCheckResult(has_new_videos=True, new_video_ids=[])

        video_ids = [entry.video_id for entry in entries]
        existing = self._videos.existing_video_ids(video_ids)
        new_video_ids = [video_id for video_id in video_ids if video_id not in existing]
        return FeedCheckResult(has_new_videos=bool(new_video_ids), new_video_ids=new_video_ids)
