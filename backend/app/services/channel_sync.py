from __future__ import annotations

import logging
from dataclasses import dataclass

from backend.app.repositories.channel_repository import ChannelRepository
from backend.app.services.youtube_api import VideoSource

LOGGER = logging.getLogger("subfeed.sync")


@dataclass(frozen=True)
class ChannelSyncResult:
    added: int
    removed: int


class ChannelSyncer:
    """Mirrors the account's upstream subscription list into the channels table."""

    def __init__(self, channel_repository: ChannelRepository, video_source: VideoSource) -> None:
        self._channels = channel_repository
        self._source = video_source

    def sync(self, access_token: str) -> ChannelSyncResult:
        subscriptions = self._source.list_subscriptions(access_token)
        remote_ids = {subscription.channel_id for subscription in subscriptions}
        local_ids = set(self._channels.list_channel_ids())

        added = 0
        for subscription in subscriptions:
            if subscription.channel_id in local_ids:
                continue
            self._channels.upsert_channel(
                channel_id=subscription.channel_id,
                title=subscription.title,
                thumbnail_url=subscription.thumbnail_url,
            )
            local_ids.add(subscription.channel_id)
            added += 1

        removed = 0
        for channel_id in sorted(local_ids - remote_ids):
            if self._channels.delete_channel(channel_id):
                removed += 1

        LOGGER.info(
            "subscriptions synced added=%s removed=%s total=%s",
            added,
            removed,
            len(remote_ids),
        )
        return ChannelSyncResult(added=added, removed=removed)
