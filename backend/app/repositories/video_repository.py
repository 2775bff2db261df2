from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.database import Database

# Keeps IN (...) lists under SQLite's default host parameter limit.
_ID_LOOKUP_CHUNK_SIZE = 500


@dataclass(frozen=True)
class StoredVideo:
    video_id: str
    channel_id: str
    title: str
    thumbnail_url: str | None
    published_at: str | None
    duration: str | None
    is_short: bool
    is_livestream: bool
    livestream_ended_at: str | None
    is_hidden: bool


class VideoRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def existing_video_ids(self, video_ids: Iterable[str]) -> set[str]:
        unique_ids = list(dict.fromkeys(video_ids))
        if not unique_ids:
            return set()

        existing: set[str] = set()
        with self._db.connection() as conn:
            for start in range(0, len(unique_ids), _ID_LOOKUP_CHUNK_SIZE):
                chunk = unique_ids[start : start + _ID_LOOKUP_CHUNK_SIZE]
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT id FROM videos WHERE id IN ({placeholders})",
                    chunk,
                ).fetchall()
                existing.update(str(row["id"]) for row in rows)
        return existing

    def upsert_video(
        self,
        *,
        video_id: str,
        channel_id: str,
        title: str,
        thumbnail_url: str | None,
        published_at: str | None,
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO videos (id, channel_id, title, thumbnail_url, published_at, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    thumbnail_url = excluded.thumbnail_url
                WHERE videos.title IS NOT excluded.title
                    OR videos.thumbnail_url IS NOT excluded.thumbnail_url
                """,
                (video_id, channel_id, title, thumbnail_url, published_at, utc_now_iso()),
            )

    def update_video_details(
        self,
        *,
        video_id: str,
        duration: str,
        is_livestream: bool,
        livestream_ended_at: str | None,
        is_short: bool,
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE videos
                SET duration = ?, is_livestream = ?, livestream_ended_at = ?, is_short = ?
                WHERE id = ?
                """,
                (
                    duration,
                    1 if is_livestream else 0,
                    livestream_ended_at,
                    1 if is_short else 0,
                    video_id,
                ),
            )

    def open_livestream_ids(self) -> list[str]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id
                FROM videos
                WHERE is_livestream = 1 AND livestream_ended_at IS NULL
                ORDER BY published_at DESC
                """
            ).fetchall()
        return [str(row["id"]) for row in rows]

    def set_livestream_ended_at(self, video_id: str, ended_at: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE videos SET livestream_ended_at = ? WHERE id = ?",
                (ended_at, video_id),
            )

    def set_hidden(self, video_id: str, *, hidden: bool) -> None:
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE videos SET is_hidden = ? WHERE id = ?",
                (1 if hidden else 0, video_id),
            )

    def get_video(self, video_id: str) -> StoredVideo | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    id,
                    channel_id,
                    title,
                    thumbnail_url,
                    published_at,
                    duration,
                    is_short,
                    is_livestream,
                    livestream_ended_at,
                    is_hidden
                FROM videos
                WHERE id = ?
                """,
                (video_id,),
            ).fetchone()

        if row is None:
            return None
        return StoredVideo(
            video_id=str(row["id"]),
            channel_id=str(row["channel_id"]),
            title=str(row["title"]),
            thumbnail_url=_to_optional_str(row["thumbnail_url"]),
            published_at=_to_optional_str(row["published_at"]),
            duration=_to_optional_str(row["duration"]),
            is_short=bool(row["is_short"]),
            is_livestream=bool(row["is_livestream"]),
            livestream_ended_at=_to_optional_str(row["livestream_ended_at"]),
            is_hidden=bool(row["is_hidden"]),
        )

    def count_videos(self, *, channel_id: str | None = None) -> int:
        with self._db.connection() as conn:
            if channel_id is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM videos").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM videos WHERE channel_id = ?",
                    (channel_id,),
                ).fetchone()
        return int(row["count"]) if row is not None else 0


def _to_optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None
