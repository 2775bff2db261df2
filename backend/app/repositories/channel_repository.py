from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from backend.app.repositories.common import parse_iso_utc, utc_now_iso
from backend.app.repositories.database import Database


@dataclass(frozen=True)
class StoredChannel:
    channel_id: str
    title: str
    thumbnail_url: str | None
    upload_playlist_id: str
    show_livestreams: bool
    fast_lane: bool
    last_fetched_at: datetime | None


def upload_playlist_id_for(channel_id: str) -> str:
    """Uploads collection id: the channel id with its ``UC`` prefix swapped for ``UU``."""
    if channel_id.startswith("UC"):
        return f"UU{channel_id[2:]}"
    return channel_id


class ChannelRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_channel(self, channel_id: str) -> StoredChannel | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    id,
                    title,
                    thumbnail_url,
                    upload_playlist_id,
                    show_livestreams,
                    fast_lane,
                    last_fetched_at
                FROM channels
                WHERE id = ?
                """,
                (channel_id,),
            ).fetchone()

        if row is None:
            return None
        return _row_to_channel(row)

    def upsert_channel(
        self,
        *,
        channel_id: str,
        title: str,
        thumbnail_url: str | None,
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO channels (id, title, thumbnail_url, upload_playlist_id, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    thumbnail_url = excluded.thumbnail_url
                """,
                (
                    channel_id,
                    title,
                    thumbnail_url,
                    upload_playlist_id_for(channel_id),
                    utc_now_iso(),
                ),
            )

    def delete_channel(self, channel_id: str) -> bool:
        with self._db.connection() as conn:
            cursor = conn.execute("DELETE FROM channels WHERE id = ?", (channel_id,))
            return cursor.rowcount > 0

    def list_channel_ids(self) -> list[str]:
        with self._db.connection() as conn:
            rows = conn.execute("SELECT id FROM channels ORDER BY id").fetchall()
        return [str(row["id"]) for row in rows]

    def list_lane_channels(self, *, fast_lane: bool) -> list[StoredChannel]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    id,
                    title,
                    thumbnail_url,
                    upload_playlist_id,
                    show_livestreams,
                    fast_lane,
                    last_fetched_at
                FROM channels
                WHERE fast_lane = ?
                ORDER BY last_fetched_at ASC NULLS FIRST, id ASC
                """,
                (1 if fast_lane else 0,),
            ).fetchall()
        return [_row_to_channel(row) for row in rows]

    def set_last_fetched_at(self, channel_id: str, fetched_at: str | None = None) -> None:
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE channels SET last_fetched_at = ? WHERE id = ?",
                (fetched_at or utc_now_iso(), channel_id),
            )

    def set_flags(
        self,
        channel_id: str,
        *,
        show_livestreams: bool | None = None,
        fast_lane: bool | None = None,
    ) -> None:
        with self._db.connection() as conn:
            if show_livestreams is not None:
                conn.execute(
                    "UPDATE channels SET show_livestreams = ? WHERE id = ?",
                    (1 if show_livestreams else 0, channel_id),
                )
            if fast_lane is not None:
                conn.execute(
                    "UPDATE channels SET fast_lane = ? WHERE id = ?",
                    (1 if fast_lane else 0, channel_id),
                )

    def count_channels(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM channels").fetchone()
        return int(row["count"]) if row is not None else 0


def _row_to_channel(row: sqlite3.Row) -> StoredChannel:
    thumbnail = row["thumbnail_url"]
    return StoredChannel(
        channel_id=str(row["id"]),
        title=str(row["title"]),
        thumbnail_url=thumbnail if isinstance(thumbnail, str) and thumbnail else None,
        upload_playlist_id=str(row["upload_playlist_id"]),
        show_livestreams=bool(row["show_livestreams"]),
        fast_lane=bool(row["fast_lane"]),
        last_fetched_at=parse_iso_utc(row["last_fetched_at"]),
    )
