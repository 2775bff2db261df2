from __future__ import annotations

import logging

from backend.app.repositories.channel_repository import ChannelRepository
from backend.app.repositories.video_repository import VideoRepository
from backend.app.services.channel_sync import ChannelSyncer
from backend.app.services.notifier import Notifier
from backend.app.services.token_provider import TokenProvider
from backend.app.services.video_ingestor import VideoIngestor

LOGGER = logging.getLogger("subfeed.setup")


class InitialSetup:
    """First-run bootstrap: mirror subscriptions and backfill uploads without notifications."""

    def __init__(
        self,
        *,
        channel_repository: ChannelRepository,
        video_repository: VideoRepository,
        token_provider: TokenProvider,
        channel_syncer: ChannelSyncer,
        video_ingestor: VideoIngestor,
        notifier: Notifier,
    ) -> None:
        self._channels = channel_repository
        self._videos = video_repository
        self._token_provider = token_provider
        self._syncer = channel_syncer
        self._ingestor = video_ingestor
        self._notifier = notifier

    def run(self) -> bool:
        if self._channels.count_channels() > 0:
            LOGGER.info("initial setup skipped; channels already exist")
            return False

        access_token = self._token_provider.get_valid_token()
        if access_token is None:
            LOGGER.info("initial setup skipped; no valid token")
            return False

        LOGGER.info("initial setup started")
        self._syncer.sync(access_token)

        channel_ids = self._channels.list_channel_ids()
        for channel_id in channel_ids:
            try:
                self._ingestor.ingest(channel_id, access_token, notify=False)
            except Exception:
                LOGGER.warning("initial ingest failed channel_id=%s", channel_id, exc_info=True)

        channel_count = self._channels.count_channels()
        video_count = self._videos.count_videos()
        LOGGER.info(
            "initial setup complete channels=%s videos=%s",
            channel_count,
            video_count,
        )
        try:
            self._notifier.notify_setup_complete(channel_count, video_count)
        except Exception:
            LOGGER.warning("setup notification failed", exc_info=True)
        return True
