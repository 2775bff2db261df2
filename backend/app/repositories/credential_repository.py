from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from backend.app.repositories.common import parse_iso_utc, utc_now_iso
from backend.app.repositories.database import Database


@dataclass(frozen=True)
class StoredCredential:
    auth_id: int
    google_id: str
    email: str
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None


class CredentialRepository:
    """Single OAuth credential record owned by the signed-in account."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def get_credential(self) -> StoredCredential | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, google_id, email, access_token, refresh_token, token_expires_at
                FROM auth
                ORDER BY id ASC
                LIMIT 1
                """
            ).fetchone()

        if row is None:
            return None
        return StoredCredential(
            auth_id=int(row["id"]),
            google_id=str(row["google_id"]),
            email=str(row["email"]),
            access_token=_to_optional_str(row["access_token"]),
            refresh_token=_to_optional_str(row["refresh_token"]),
            token_expires_at=parse_iso_utc(row["token_expires_at"]),
        )

    def set_credential(
        self,
        *,
        google_id: str,
        email: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime,
    ) -> None:
        now_iso = utc_now_iso()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO auth
                (google_id, email, access_token, refresh_token, token_expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(google_id) DO UPDATE SET
                    email = excluded.email,
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, auth.refresh_token),
                    token_expires_at = excluded.token_expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    google_id,
                    email,
                    access_token,
                    refresh_token,
                    token_expires_at.isoformat(),
                    now_iso,
                ),
            )

    def update_access_token(
        self,
        auth_id: int,
        *,
        access_token: str,
        token_expires_at: datetime,
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE auth
                SET access_token = ?, token_expires_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (access_token, token_expires_at.isoformat(), utc_now_iso(), auth_id),
            )


def _to_optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
