from __future__ import annotations

from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".subfeed"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("feed.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "scheduler_enabled",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{SUBFEED_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from a `SUBFEED_*` environment variable (or `.env`); the field
    descriptions document what each one controls.
    """

    model_config = SettingsConfigDict(
        env_prefix="SUBFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for the database, logs, and the scheduler lock.",
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("feed.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('feed.db'))}",
    )

    # Scheduler cadence.
    scheduler_enabled: bool = Field(
        default=True,
        description="Start the polling lanes and subscription sync when the app boots.",
    )
    normal_cycle_seconds: int = Field(
        default=1_800,
        ge=1,
        description="Target time for the normal lane to visit every normal channel once.",
    )
    fast_cycle_seconds: int = Field(
        default=600,
        ge=1,
        description="Target time for the fast lane to visit every fast channel once.",
    )
    subscription_sync_interval_seconds: int = Field(
        default=600,
        ge=1,
        description="Interval between subscription list synchronizations.",
    )
    idle_retry_seconds: int = Field(
        default=60,
        ge=0,
        description="Delay used when a lane is empty, a tick fails, or no token is available.",
    )

    # Ingestion and cache.
    recent_uploads_limit: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Number of newest uploads fetched per channel ingestion pass.",
    )
    shorts_cache_ttl_seconds: int = Field(
        default=3_600,
        ge=1,
        description="TTL for cached per-channel shorts collections.",
    )
    cache_max_entries: int = Field(
        default=10_000,
        ge=1,
        description="Maximum in-memory cache entries before the oldest is evicted.",
    )

    # YouTube API and quota.
    quota_reset_timezone: str = Field(
        default="America/Los_Angeles",
        description="Timezone whose midnight resets the YouTube daily quota.",
    )
    youtube_api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL.",
    )
    feed_http_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for channel feed requests.",
    )
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per YouTube API call before the last error is surfaced.",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Linear backoff unit between retry attempts (attempt * base).",
    )

    # OAuth.
    token_refresh_margin_seconds: int = Field(
        default=300,
        ge=0,
        description="Refresh the access token when it expires within this many seconds.",
    )
    google_client_id: str | None = Field(
        default=None,
        description="Google OAuth client id used to refresh access tokens.",
    )
    google_client_secret: str | None = Field(
        default=None,
        description="Google OAuth client secret used to refresh access tokens.",
    )
    google_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Google OAuth token endpoint.",
    )

    # Notifications.
    discord_webhook_url: str | None = Field(
        default=None,
        description="Discord webhook for new-video and warning messages. Unset disables them.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("SUBFEED_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("SUBFEED_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("quota_reset_timezone", mode="before")
    @classmethod
    def _validate_timezone(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("SUBFEED_QUOTA_RESET_TIMEZONE must be a non-empty string.")
        normalized = value.strip()
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(
                f"Unknown timezone for SUBFEED_QUOTA_RESET_TIMEZONE: {normalized}"
            ) from exc
        return normalized

    @field_validator("youtube_api_base_url", "google_token_uri", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Any, info: ValidationInfo) -> str:
        env_name = f"SUBFEED_{(info.field_name or '').upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{env_name} must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError(f"{env_name} must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(
        "google_client_id",
        "google_client_secret",
        "discord_webhook_url",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
