from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib import import_module
from typing import Any, Protocol

from backend.app.repositories.credential_repository import CredentialRepository

LOGGER = logging.getLogger("subfeed.auth")

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
YOUTUBE_READONLY_SCOPE = "https://www.googleapis.com/auth/youtube.readonly"
DEFAULT_REFRESH_MARGIN_SECONDS = 300
_FALLBACK_TOKEN_TTL_SECONDS = 3_600


class CredentialRefreshError(Exception):
    pass


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_at: datetime


class CredentialRefresher(Protocol):
    def refresh(self, refresh_token: str) -> RefreshedToken:
        ...


class GoogleCredentialRefresher:
    """Exchanges a stored refresh token for a new access token via google-auth."""

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        token_uri: str = GOOGLE_TOKEN_URI,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_uri = token_uri

    def refresh(self, refresh_token: str) -> RefreshedToken:
        if not self._client_id or not self._client_secret:
            raise CredentialRefreshError("Google OAuth client id/secret are not configured")

        try:
            requests_module = import_module("google.auth.transport.requests")
            credentials_module = import_module("google.oauth2.credentials")
        except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
            raise CredentialRefreshError(
                "Token refresh requires the google-auth dependency"
            ) from exc

        request_cls: Any = requests_module.Request
        credentials_cls: Any = credentials_module.Credentials
        credentials = credentials_cls(
            token=None,
            refresh_token=refresh_token,
            token_uri=self._token_uri,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=[YOUTUBE_READONLY_SCOPE],
        )
        try:
            credentials.refresh(request_cls())
        except Exception as exc:
            raise CredentialRefreshError(f"Failed to refresh Google OAuth token: {exc}") from exc

        access_token = credentials.token
        if not isinstance(access_token, str) or not access_token:
            raise CredentialRefreshError("Token refresh returned no access token")

        # google-auth reports expiry as a naive UTC datetime.
        expiry = credentials.expiry
        if isinstance(expiry, datetime):
            expires_at = expiry.replace(tzinfo=UTC) if expiry.tzinfo is None else expiry
        else:
            expires_at = datetime.now(UTC) + timedelta(seconds=_FALLBACK_TOKEN_TTL_SECONDS)
        return RefreshedToken(access_token=access_token, expires_at=expires_at)


class TokenProvider:
    def __init__(
        self,
        credential_repository: CredentialRepository,
        refresher: CredentialRefresher,
        *,
        refresh_margin_seconds: int = DEFAULT_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._credentials = credential_repository
        self._refresher = refresher
        self._refresh_margin = timedelta(seconds=max(0, refresh_margin_seconds))
        self._clock = clock

    def get_valid_token(self) -> str | None:
        credential = self._credentials.get_credential()
        if credential is None or credential.access_token is None:
            return None
        if credential.refresh_token is None:
            return None

        now = self._clock()
        expires_at = credential.token_expires_at
        if expires_at is not None and expires_at - now > self._refresh_margin:
            return credential.access_token

        try:
            refreshed = self._refresher.refresh(credential.refresh_token)
        except Exception:
            LOGGER.warning(
                "oauth token refresh failed auth_id=%s",
                credential.auth_id,
                exc_info=True,
            )
            return None

        self._credentials.update_access_token(
            credential.auth_id,
            access_token=refreshed.access_token,
            token_expires_at=refreshed.expires_at,
        )
        LOGGER.info(
            "oauth token refreshed auth_id=%s expires_at=%s",
            credential.auth_id,
            refreshed.expires_at.isoformat(),
        )
        return refreshed.access_token
