from __future__ import annotations

import logging

from backend.app.repositories.video_repository import VideoRepository
from backend.app.services.youtube_api import VideoSource

LOGGER = logging.getLogger("subfeed.livestream")


class LivestreamMonitor:
    def __init__(self, video_repository: VideoRepository, video_source: VideoSource) -> None:
        self._videos = video_repository
        self._source = video_source

    def check_open_livestreams(self, access_token: str) -> int:
        open_ids = self._videos.open_livestream_ids()
        if not open_ids:
            return 0

        ended = 0
        for detail in self._source.list_video_details(open_ids, access_token):
            if detail.livestream_ended_at is None:
                continue
            self._videos.set_livestream_ended_at(detail.video_id, detail.livestream_ended_at)
            LOGGER.info(
                "livestream ended video_id=%s ended_at=%s",
                detail.video_id,
                detail.livestream_ended_at,
            )
            ended += 1
        return ended
