from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.channel_repository import ChannelRepository
from backend.app.repositories.credential_repository import CredentialRepository
from backend.app.repositories.database import Database
from backend.app.repositories.video_repository import VideoRepository
from backend.app.services.cache import TtlCache
from backend.app.services.channel_sync import ChannelSyncer
from backend.app.services.initial_setup import InitialSetup
from backend.app.services.livestream_monitor import LivestreamMonitor
from backend.app.services.notifier import Notifier, build_notifier
from backend.app.services.quota_state import QuotaState
from backend.app.services.scheduler_service import PollingScheduler
from backend.app.services.token_provider import GoogleCredentialRefresher, TokenProvider
from backend.app.services.video_ingestor import VideoIngestor
from backend.app.services.youtube_api import YouTubeApiClient
from backend.app.services.youtube_feed import FeedChecker, YouTubeFeedClient
from backend.app.services.youtube_retry import RetryExecutor
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@dataclass(frozen=True)
class Repositories:
    channels: ChannelRepository
    videos: VideoRepository
    credentials: CredentialRepository


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_repositories() -> Repositories:
    settings = get_settings()
    database = Database(settings.db_path)
    database.initialize()
    return Repositories(
        channels=ChannelRepository(database),
        videos=VideoRepository(database),
        credentials=CredentialRepository(database),
    )


@lru_cache(maxsize=1)
def get_quota_state() -> QuotaState:
    return QuotaState(reset_timezone=get_settings().quota_reset_timezone)


@lru_cache(maxsize=1)
def get_cache() -> TtlCache:
    return TtlCache(max_entries=get_settings().cache_max_entries)


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return build_notifier(get_settings().discord_webhook_url)


@lru_cache(maxsize=1)
def get_token_provider() -> TokenProvider:
    settings = get_settings()
    return TokenProvider(
        get_repositories().credentials,
        GoogleCredentialRefresher(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            token_uri=settings.google_token_uri,
        ),
        refresh_margin_seconds=settings.token_refresh_margin_seconds,
    )


@lru_cache(maxsize=1)
def get_youtube_client() -> YouTubeApiClient:
    settings = get_settings()
    return YouTubeApiClient(
        RetryExecutor(
            get_quota_state(),
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
        ),
        base_url=settings.youtube_api_base_url,
    )


@lru_cache(maxsize=1)
def get_scheduler() -> PollingScheduler:
    settings = get_settings()
    repositories = get_repositories()
    youtube_client = get_youtube_client()
    notifier = get_notifier()
    cache = get_cache()
    token_provider = get_token_provider()

    feed_client = YouTubeFeedClient(timeout_seconds=settings.feed_http_timeout_seconds)
    channel_syncer = ChannelSyncer(repositories.channels, youtube_client)
    video_ingestor = VideoIngestor(
        channel_repository=repositories.channels,
        video_repository=repositories.videos,
        video_source=youtube_client,
        notifier=notifier,
        cache=cache,
        recent_uploads_limit=settings.recent_uploads_limit,
        shorts_cache_ttl_seconds=settings.shorts_cache_ttl_seconds,
    )

    return PollingScheduler(
        channel_repository=repositories.channels,
        feed_checker=FeedChecker(repositories.videos, feed_client.fetch_feed),
        token_provider=token_provider,
        quota_state=get_quota_state(),
        video_ingestor=video_ingestor,
        livestream_monitor=LivestreamMonitor(repositories.videos, youtube_client),
        channel_syncer=channel_syncer,
        cache=cache,
        initial_setup=InitialSetup(
            channel_repository=repositories.channels,
            video_repository=repositories.videos,
            token_provider=token_provider,
            channel_syncer=channel_syncer,
            video_ingestor=video_ingestor,
            notifier=notifier,
        ),
        normal_cycle_seconds=settings.normal_cycle_seconds,
        fast_cycle_seconds=settings.fast_cycle_seconds,
        sync_interval_seconds=settings.subscription_sync_interval_seconds,
        idle_retry_seconds=settings.idle_retry_seconds,
        telemetry=get_telemetry(),
        lock_path=settings.data_dir / "scheduler.lock",
    )


def reset_cached_dependencies() -> None:
    get_scheduler.cache_clear()
    get_youtube_client.cache_clear()
    get_token_provider.cache_clear()
    get_notifier.cache_clear()
    get_cache.cache_clear()
    get_quota_state.cache_clear()
    get_repositories.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
