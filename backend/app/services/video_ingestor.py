from __future__ import annotations

import logging
from typing import cast

from backend.app.repositories.channel_repository import ChannelRepository, StoredChannel
from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.video_repository import VideoRepository
from backend.app.services.cache import TtlCache
from backend.app.services.duration import is_short_duration
from backend.app.services.notifier import NewVideoNotice, Notifier
from backend.app.services.youtube_api import PlaylistNotFoundError, VideoDetails, VideoSource

LOGGER = logging.getLogger("subfeed.ingest")

RECENT_UPLOADS_LIMIT = 10
SHORTS_CACHE_PREFIX = "shorts:"
SHORTS_CACHE_TTL_SECONDS = 3_600


def shorts_cache_key(channel_id: str) -> str:
    return f"{SHORTS_CACHE_PREFIX}{channel_id}"


class VideoIngestor:
    """
    Per-channel ingestion pass.

    Fetches the newest uploads, upserts them, classifies first-seen videos
    (duration, livestream state, short) and optionally announces them. Returns the ids
    of videos that were not stored before this pass.
    """

    def __init__(
        self,
        *,
        channel_repository: ChannelRepository,
        video_repository: VideoRepository,
        video_source: VideoSource,
        notifier: Notifier,
        cache: TtlCache,
        recent_uploads_limit: int = RECENT_UPLOADS_LIMIT,
        shorts_cache_ttl_seconds: int = SHORTS_CACHE_TTL_SECONDS,
    ) -> None:
        self._channels = channel_repository
        self._videos = video_repository
        self._source = video_source
        self._notifier = notifier
        self._cache = cache
        self._recent_uploads_limit = max(1, recent_uploads_limit)
        self._shorts_cache_ttl_seconds = max(1, shorts_cache_ttl_seconds)

    def ingest(self, channel_id: str, access_token: str, *, notify: bool = True) -> list[str]:
        channel = self._channels.get_channel(channel_id)
        if channel is None:
            return []

        try:
            items = self._source.list_recent_uploads(
                channel.upload_playlist_id,
                access_token,
                self._recent_uploads_limit,
            )
        except PlaylistNotFoundError:
            self._handle_missing_uploads(channel)
            return []

        if not items:
            return []

        fetched_ids = list(dict.fromkeys(item.video_id for item in items))
        existing_ids = self._videos.existing_video_ids(fetched_ids)

        for item in items:
            self._videos.upsert_video(
                video_id=item.video_id,
                channel_id=channel_id,
                title=item.title,
                thumbnail_url=item.thumbnail_url,
                published_at=item.published_at,
            )

        new_video_ids = [video_id for video_id in fetched_ids if video_id not in existing_ids]
        if new_video_ids:
            details = self._source.list_video_details(new_video_ids, access_token)
            for detail in details:
                self._videos.update_video_details(
                    video_id=detail.video_id,
                    duration=detail.duration,
                    is_livestream=detail.is_livestream,
                    livestream_ended_at=detail.livestream_ended_at,
                    is_short=self._resolve_is_short(channel_id, detail, access_token),
                )

        self._channels.set_last_fetched_at(channel_id, utc_now_iso())

        if notify and new_video_ids:
            self._announce(channel, new_video_ids)

        if new_video_ids:
            LOGGER.info(
                "channel ingested channel_id=%s fetched=%s new=%s",
                channel_id,
                len(fetched_ids),
                len(new_video_ids),
            )
        return new_video_ids

    def _resolve_is_short(
        self,
        channel_id: str,
        detail: VideoDetails,
        access_token: str,
    ) -> bool:
        if not is_short_duration(detail.duration):
            return False

        cache_key = shorts_cache_key(channel_id)
        cached = self._cache.get(cache_key)
        if cached is None:
            shorts_ids = frozenset(self._source.list_shorts_collection(channel_id, access_token))
            self._cache.set(cache_key, shorts_ids, self._shorts_cache_ttl_seconds)
        else:
            shorts_ids = cast(frozenset[str], cached)
        return detail.video_id in shorts_ids

    def _handle_missing_uploads(self, channel: StoredChannel) -> None:
        LOGGER.warning(
            "upload playlist missing; deleting channel channel_id=%s title=%s",
            channel.channel_id,
            channel.title,
        )
        self._channels.delete_channel(channel.channel_id)
        try:
            self._notifier.notify_warning(
                "Upload playlist not found",
                (
                    f"{channel.title} ({channel.channel_id}) has no upload playlist; "
                    "the channel was removed."
                ),
            )
        except Exception:
            LOGGER.warning("channel removal warning failed", exc_info=True)

    def _announce(self, channel: StoredChannel, new_video_ids: list[str]) -> None:
        for video_id in new_video_ids:
            video = self._videos.get_video(video_id)
            if video is None:
                continue
            try:
                self._notifier.notify_new_video(
                    NewVideoNotice(
                        video_id=video.video_id,
                        title=video.title,
                        channel_title=channel.title,
                        thumbnail_url=video.thumbnail_url,
                        published_at=video.published_at,
                        is_short=video.is_short,
                        duration=video.duration,
                    )
                )
            except Exception:
                LOGGER.warning("new video notification failed video_id=%s", video_id, exc_info=True)
