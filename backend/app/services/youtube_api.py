from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from importlib import import_module
from typing import Any, Protocol, cast

from googleapiclient.errors import HttpError

from backend.app.services.youtube_retry import RetryExecutor

LOGGER = logging.getLogger("subfeed.youtube.api")

YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"
VIDEO_DETAILS_BATCH_SIZE = 50
SHORTS_COLLECTION_MAX_RESULTS = 50
PLAYLIST_NOT_FOUND_REASON = "playlistNotFound"


class YouTubeServiceError(Exception):
    pass


class YouTubeApiError(YouTubeServiceError):
    def __init__(self, status: int, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class PlaylistNotFoundError(YouTubeApiError):
    pass


@dataclass(frozen=True)
class Subscription:
    channel_id: str
    title: str
    thumbnail_url: str | None


@dataclass(frozen=True)
class PlaylistItem:
    video_id: str
    title: str
    thumbnail_url: str | None
    published_at: str | None


@dataclass(frozen=True)
class VideoDetails:
    video_id: str
    duration: str
    is_livestream: bool
    livestream_ended_at: str | None


class VideoSource(Protocol):
    def list_subscriptions(self, access_token: str) -> list[Subscription]:
        ...

    def list_recent_uploads(
        self,
        upload_playlist_id: str,
        access_token: str,
        max_results: int,
    ) -> list[PlaylistItem]:
        ...

    def list_video_details(self, video_ids: list[str], access_token: str) -> list[VideoDetails]:
        ...

    def list_shorts_collection(self, channel_id: str, access_token: str) -> list[str]:
        ...


def shorts_playlist_id_for(channel_id: str) -> str:
    if channel_id.startswith("UC"):
        return f"UUSH{channel_id[2:]}"
    return channel_id


class YouTubeApiClient:
    """
    Authenticated YouTube Data API reads through the discovery client.

    A client is built per call from the caller's access token. Every `execute()` runs
    inside the retry executor, with `HttpError` translated to `YouTubeApiError` first
    so quota and missing-playlist reasons are visible to it.
    """

    def __init__(
        self,
        retry_executor: RetryExecutor,
        *,
        base_url: str = YOUTUBE_API_BASE_URL,
    ) -> None:
        self._retry = retry_executor
        self._base_url = base_url.rstrip("/")

    def list_subscriptions(self, access_token: str) -> list[Subscription]:
        client = self._build_client(access_token)
        subscriptions: list[Subscription] = []
        page_token: str | None = None

        while True:
            query_kwargs: dict[str, object] = {"part": "snippet", "mine": True, "maxResults": 50}
            if page_token is not None:
                query_kwargs["pageToken"] = page_token
            page_kwargs = query_kwargs
            response = self._execute(lambda: client.subscriptions().list(**page_kwargs))

            for item in _as_list(response.get("items")):
                snippet = _as_dict(_as_dict(item).get("snippet"))
                resource = _as_dict(snippet.get("resourceId"))
                channel_id = _coerce_nonempty_string(resource.get("channelId"))
                if channel_id is None:
                    continue
                subscriptions.append(
                    Subscription(
                        channel_id=channel_id,
                        title=_coerce_nonempty_string(snippet.get("title")) or channel_id,
                        thumbnail_url=_pick_thumbnail_url(snippet, ("default",)),
                    )
                )

            page_token = _coerce_nonempty_string(response.get("nextPageToken"))
            if page_token is None:
                break

        return subscriptions

    def list_recent_uploads(
        self,
        upload_playlist_id: str,
        access_token: str,
        max_results: int = 10,
    ) -> list[PlaylistItem]:
        client = self._build_client(access_token)
        response = self._execute(
            lambda: client.playlistItems().list(
                part="snippet",
                playlistId=upload_playlist_id,
                maxResults=max(1, min(50, max_results)),
            )
        )

        items: list[PlaylistItem] = []
        for item in _as_list(response.get("items")):
            snippet = _as_dict(_as_dict(item).get("snippet"))
            resource = _as_dict(snippet.get("resourceId"))
            video_id = _coerce_nonempty_string(resource.get("videoId"))
            if video_id is None:
                continue
            items.append(
                PlaylistItem(
                    video_id=video_id,
                    title=_coerce_nonempty_string(snippet.get("title")) or "",
                    thumbnail_url=_pick_thumbnail_url(snippet, ("medium", "default")),
                    published_at=_coerce_nonempty_string(snippet.get("publishedAt")),
                )
            )
        return items

    def list_video_details(self, video_ids: list[str], access_token: str) -> list[VideoDetails]:
        if not video_ids:
            return []

        client = self._build_client(access_token)
        details: list[VideoDetails] = []
        for start in range(0, len(video_ids), VIDEO_DETAILS_BATCH_SIZE):
            chunk = video_ids[start : start + VIDEO_DETAILS_BATCH_SIZE]
            response = self._execute(
                lambda: client.videos().list(
                    part="contentDetails,liveStreamingDetails",
                    id=",".join(chunk),
                    maxResults=len(chunk),
                )
            )

            for item in _as_list(response.get("items")):
                item_dict = _as_dict(item)
                video_id = _coerce_nonempty_string(item_dict.get("id"))
                if video_id is None:
                    continue
                content_details = _as_dict(item_dict.get("contentDetails"))
                live_details = item_dict.get("liveStreamingDetails")
                details.append(
                    VideoDetails(
                        video_id=video_id,
                        duration=_coerce_nonempty_string(content_details.get("duration"))
                        or "PT0S",
                        is_livestream=isinstance(live_details, dict),
                        livestream_ended_at=_coerce_nonempty_string(
                            _as_dict(live_details).get("actualEndTime")
                        ),
                    )
                )
        return details

    def list_shorts_collection(self, channel_id: str, access_token: str) -> list[str]:
        playlist_id = shorts_playlist_id_for(channel_id)
        try:
            items = self.list_recent_uploads(
                playlist_id,
                access_token,
                SHORTS_COLLECTION_MAX_RESULTS,
            )
        except Exception:
            # The shorts collection is unofficial and missing for many channels.
            LOGGER.debug("shorts collection unavailable channel_id=%s", channel_id, exc_info=True)
            return []
        return [item.video_id for item in items]

    def _build_client(self, access_token: str) -> Any:
        try:
            credentials_module = import_module("google.oauth2.credentials")
            discovery_module = import_module("googleapiclient.discovery")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise YouTubeServiceError(
                "YouTube API access requires google-api-python-client and google-auth"
            ) from exc

        credentials_cls: Any = credentials_module.Credentials
        build_fn: Any = discovery_module.build
        return build_fn(
            "youtube",
            "v3",
            credentials=credentials_cls(token=access_token),
            cache_discovery=False,
            client_options={"api_endpoint": f"{self._base_url}/"},
        )

    def _execute(self, request_factory: Callable[[], Any]) -> dict[str, Any]:
        def _run() -> dict[str, Any]:
            try:
                response = request_factory().execute()
            except HttpError as exc:
                raise _build_api_error(exc) from exc
            except (TimeoutError, OSError) as exc:
                raise YouTubeApiError(0, f"YouTube API request failed: {exc}") from exc
            return _as_dict(response)

        return self._retry.execute(_run)


def _build_api_error(exc: HttpError) -> YouTubeApiError:
    status = int(getattr(exc.resp, "status", 0) or 0)
    reason = _http_error_reason(exc)
    message = f"YouTube API error {status}: {reason or 'unknown reason'}"
    if status == 404 and reason == PLAYLIST_NOT_FOUND_REASON:
        return PlaylistNotFoundError(status, message, reason=reason)
    return YouTubeApiError(status, message, reason=reason)


def _http_error_reason(exc: HttpError) -> str | None:
    for detail in _as_list(getattr(exc, "error_details", None)):
        reason = _coerce_nonempty_string(_as_dict(detail).get("reason"))
        if reason is not None:
            return reason

    # Older client releases only keep the raw body.
    content = getattr(exc, "content", b"")
    raw_body = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else ""
    errors = _as_list(_as_dict(_parse_json_dict(raw_body).get("error")).get("errors"))
    if errors:
        return _coerce_nonempty_string(_as_dict(errors[0]).get("reason"))
    return None


def _pick_thumbnail_url(snippet: dict[str, Any], qualities: tuple[str, ...]) -> str | None:
    thumbnails = _as_dict(snippet.get("thumbnails"))
    for quality in qualities:
        url_value = _coerce_nonempty_string(_as_dict(thumbnails.get(quality)).get("url"))
        if url_value is not None:
            return url_value
    return None


def _parse_json_dict(raw_body: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    return _as_dict(parsed)


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []
