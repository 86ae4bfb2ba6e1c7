from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Literal

from movie_tracker.core.db import connect
from movie_tracker.core.schemas import (
    EpisodeRef,
    ImportEntry,
    ImportResult,
    ItemCreate,
    ItemUpdate,
    MigratePayload,
    ProgressIn,
)

logger = logging.getLogger(__name__)

# ItemUpdate attribute -> watched_items column.
_UPDATE_COLUMNS: dict[str, str] = {
    "title": "title",
    "poster_path": "posterPath",
    "release_date": "releaseDate",
    "status": "status",
    "user_rating": "userRating",
    "notes": "notes",
    "genre_ids": "genreIds",
}

_UPSERT_ITEM_SQL = """
INSERT INTO watched_items (tmdbId, contentType, title, posterPath, releaseDate, status,
                           userRating, notes, genreIds, addedAt, updatedAt)
VALUES (:tmdbId, :contentType, :title, :posterPath, :releaseDate, :status,
        :userRating, :notes, :genreIds, :addedAt, :updatedAt)
ON CONFLICT(tmdbId, contentType) DO UPDATE SET
  title=excluded.title, posterPath=excluded.posterPath, releaseDate=excluded.releaseDate,
  status=excluded.status, userRating=excluded.userRating, notes=excluded.notes,
  genreIds=excluded.genreIds, updatedAt=excluded.updatedAt
"""

_UPSERT_PROGRESS_SQL = """
INSERT INTO series_progress (watchedItemId, tmdbId, currentSeason, currentEpisode,
                             totalSeasons, totalEpisodes)
VALUES (:watchedItemId, :tmdbId, :currentSeason, :currentEpisode, :totalSeasons, :totalEpisodes)
ON CONFLICT(tmdbId) DO UPDATE SET
  watchedItemId=excluded.watchedItemId, currentSeason=excluded.currentSeason,
  currentEpisode=excluded.currentEpisode, totalSeasons=excluded.totalSeasons,
  totalEpisodes=excluded.totalEpisodes
"""

_INSERT_EPISODE_SQL = (
    "INSERT OR IGNORE INTO watched_episodes (tmdbId, season, episode) VALUES (?, ?, ?)"
)


def utc_now_iso() -> str:
    """Timestamp in the same shape browsers produce with ``toISOString()``."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _row_to_item(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    try:
        item["genreIds"] = [int(g) for g in json.loads(item.get("genreIds") or "[]")]
    except (TypeError, ValueError):
        item["genreIds"] = []
    return item


class LibraryStore:
    """The only reader and writer of the library database.

    Holds one SQLite connection for the lifetime of the server process. Every
    public method takes the store lock, so sync FastAPI handlers running in the
    threadpool never interleave statements on the shared connection.

    "Not found" is always ``None``; sqlite3 errors propagate untouched.
    """

    def __init__(self, *, db_path: str | Path | None = None) -> None:
        self._lock = Lock()
        self._conn = connect(db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- watched items ---------------------------------------------------

    def list_items(
        self, content_type: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if content_type:
            clauses.append("contentType = ?")
            params.append(content_type)
        if status:
            clauses.append("status = ?")
            params.append(status)

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM watched_items{where} ORDER BY addedAt DESC, id DESC",
                params,
            ).fetchall()
        return [_row_to_item(r) for r in rows]

    def get_item(self, tmdb_id: int, content_type: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._find_item(tmdb_id, content_type)
        return _row_to_item(row) if row else None

    def get_item_by_id(self, item_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM watched_items WHERE id = ?", (item_id,)
            ).fetchone()
        return _row_to_item(row) if row else None

    def add_item(self, item: ItemCreate) -> int:
        """Insert a title, or return the id of the existing (tmdbId, contentType) row."""

        with self._lock, self._conn:
            return self._add_item(item)

    def update_item(self, item_id: int, changes: ItemUpdate) -> None:
        fields = changes.model_dump(exclude_unset=True)
        assignments: list[str] = []
        params: dict[str, Any] = {"id": item_id, "updatedAt": utc_now_iso()}
        for attr, value in fields.items():
            column = _UPDATE_COLUMNS[attr]
            if attr == "genre_ids":
                value = json.dumps(value or [])
            elif attr == "notes" and value is None:
                value = ""
            elif value is None and attr not in ("user_rating", "poster_path", "release_date"):
                # NOT NULL columns keep their value when sent an explicit null.
                continue
            assignments.append(f"{column} = :{column}")
            params[column] = value
        assignments.append("updatedAt = :updatedAt")

        with self._lock, self._conn:
            self._conn.execute(
                f"UPDATE watched_items SET {', '.join(assignments)} WHERE id = :id", params
            )

    def delete_item(self, item_id: int) -> None:
        # Progress goes first so no row ever points at a missing item.
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM series_progress WHERE watchedItemId = ?", (item_id,))
            self._conn.execute("DELETE FROM watched_items WHERE id = ?", (item_id,))

    def list_upcoming(self, content_type: str, *, today: str | None = None) -> list[dict[str, Any]]:
        """Movies releasing today or later; series still being watched or planned."""

        today = today or utc_now_iso()[:10]
        items = self.list_items(content_type)
        if content_type == "movie":
            upcoming = [i for i in items if i["releaseDate"] and i["releaseDate"] >= today]
            return sorted(upcoming, key=lambda i: i["releaseDate"])
        active = [i for i in items if i["status"] in ("watching", "plan_to_watch")]
        return sorted(active, key=lambda i: i["title"])

    def list_planned_movies(self) -> list[dict[str, Any]]:
        items = self.list_items("movie", "plan_to_watch")
        return sorted((i for i in items if not i["releaseDate"]), key=lambda i: i["title"])

    # -- series progress ---------------------------------------------------

    def get_progress(self, tmdb_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM series_progress WHERE tmdbId = ?", (tmdb_id,)
            ).fetchone()
        return dict(row) if row else None

    def upsert_progress(self, progress: ProgressIn) -> None:
        """Insert or overwrite, keyed by catalog id rather than the owning item."""

        with self._lock, self._conn:
            self._conn.execute(
                _UPSERT_PROGRESS_SQL,
                {
                    "watchedItemId": progress.watched_item_id,
                    "tmdbId": progress.tmdb_id,
                    "currentSeason": progress.current_season,
                    "currentEpisode": progress.current_episode,
                    "totalSeasons": progress.total_seasons,
                    "totalEpisodes": progress.total_episodes,
                },
            )

    # -- watched episodes --------------------------------------------------

    def get_episodes(self, tmdb_id: int, season: int) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM watched_episodes WHERE tmdbId = ? AND season = ? ORDER BY episode",
                (tmdb_id, season),
            ).fetchall()
        return [dict(r) for r in rows]

    def toggle_episode(self, tmdb_id: int, season: int, episode: int) -> Literal["added", "removed"]:
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT id FROM watched_episodes WHERE tmdbId = ? AND season = ? AND episode = ?",
                (tmdb_id, season, episode),
            ).fetchone()
            if row:
                self._conn.execute("DELETE FROM watched_episodes WHERE id = ?", (row["id"],))
                return "removed"
            self._conn.execute(_INSERT_EPISODE_SQL, (tmdb_id, season, episode))
            return "added"

    def mark_season_watched(self, tmdb_id: int, season: int, episodes: Iterable[int]) -> None:
        """Replace the season's watched set with exactly ``episodes``; empty clears it."""

        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM watched_episodes WHERE tmdbId = ? AND season = ?", (tmdb_id, season)
            )
            self._conn.executemany(
                _INSERT_EPISODE_SQL, [(tmdb_id, season, ep) for ep in episodes]
            )

    def bulk_insert_episodes(self, entries: Iterable[EpisodeRef]) -> None:
        with self._lock, self._conn:
            self._conn.executemany(
                _INSERT_EPISODE_SQL, [(e.tmdb_id, e.season, e.episode) for e in entries]
            )

    # -- bulk ----------------------------------------------------------------

    def migrate(self, payload: MigratePayload) -> dict[str, int]:
        """Import a full snapshot in one transaction.

        Items are upserted. Progress is attached to the series item with the
        same catalog id at import time; progress whose series is absent is
        skipped. Episodes are insert-or-ignore. Any exception rolls the whole
        call back.
        """

        counts = {"items": 0, "progress": 0, "episodes": 0}
        with self._lock, self._conn:
            for item in payload.items:
                now = utc_now_iso()
                self._conn.execute(
                    _UPSERT_ITEM_SQL,
                    {
                        "tmdbId": item.tmdb_id,
                        "contentType": item.content_type,
                        "title": item.title,
                        "posterPath": item.poster_path,
                        "releaseDate": item.release_date,
                        "status": item.status,
                        "userRating": item.user_rating,
                        "notes": item.notes or "",
                        "genreIds": json.dumps(item.genre_ids or []),
                        "addedAt": item.added_at or now,
                        "updatedAt": item.updated_at or now,
                    },
                )
                counts["items"] += 1

            for p in payload.progress:
                row = self._find_item(p.tmdb_id, "series")
                if row is None:
                    continue
                self._conn.execute(
                    _UPSERT_PROGRESS_SQL,
                    {
                        "watchedItemId": row["id"],
                        "tmdbId": p.tmdb_id,
                        "currentSeason": p.current_season or 0,
                        "currentEpisode": p.current_episode or 0,
                        "totalSeasons": p.total_seasons or 0,
                        "totalEpisodes": p.total_episodes or 0,
                    },
                )
                counts["progress"] += 1

            for e in payload.episodes:
                self._conn.execute(_INSERT_EPISODE_SQL, (e.tmdb_id, e.season, e.episode))
                counts["episodes"] += 1

        logger.info(
            "Migrated %s items, %s progress rows, %s episodes",
            counts["items"],
            counts["progress"],
            counts["episodes"],
        )
        return counts

    def import_entries(self, entries: Iterable[ImportEntry]) -> ImportResult:
        """Add exported entries; incomplete or already-present ones are skipped."""

        added = 0
        skipped = 0
        with self._lock, self._conn:
            for entry in entries:
                if (
                    not entry.tmdb_id
                    or not entry.title
                    or entry.content_type not in ("movie", "series")
                    or not entry.status
                ):
                    skipped += 1
                    continue
                if self._find_item(entry.tmdb_id, entry.content_type) is not None:
                    skipped += 1
                    continue
                self._add_item(
                    ItemCreate.model_construct(
                        tmdb_id=entry.tmdb_id,
                        content_type=entry.content_type,
                        title=entry.title,
                        poster_path=entry.poster_path,
                        release_date=entry.release_date,
                        status=entry.status,
                        user_rating=None,
                        notes="",
                        genre_ids=[],
                    )
                )
                added += 1
        return ImportResult(added=added, skipped=skipped)

    def clear_all(self) -> None:
        # Leaf tables first.
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM watched_episodes")
            self._conn.execute("DELETE FROM series_progress")
            self._conn.execute("DELETE FROM watched_items")
        logger.info("Cleared all library data")

    def export_all(self) -> list[dict[str, Any]]:
        """Portable, deliberately lossy projection: empty rating/notes are dropped."""

        out: list[dict[str, Any]] = []
        for item in self.list_items():
            entry: dict[str, Any] = {
                "tmdbId": item["tmdbId"],
                "title": item["title"],
                "contentType": item["contentType"],
                "status": item["status"],
                "posterPath": item["posterPath"],
                "releaseDate": item["releaseDate"],
            }
            if item["userRating"] is not None:
                entry["userRating"] = item["userRating"]
            if item["notes"]:
                entry["notes"] = item["notes"]
            out.append(entry)
        return out

    # -- settings ------------------------------------------------------------

    def get_settings(self) -> dict[str, Any]:
        with self._lock:
            row = self._conn.execute("SELECT data FROM settings WHERE id = 1").fetchone()
        if row is None:
            return {}
        try:
            data = json.loads(row["data"])
        except json.JSONDecodeError:
            logger.warning("Stored settings are not valid JSON; returning defaults")
            return {}
        return data if isinstance(data, dict) else {}

    def save_settings(self, settings: dict[str, Any]) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO settings (id, data) VALUES (1, ?)",
                (json.dumps(settings),),
            )

    # -- helpers (caller holds the lock) --------------------------------------

    def _find_item(self, tmdb_id: int, content_type: str) -> sqlite3.Row | None:
        return self._conn.execute(
            "SELECT * FROM watched_items WHERE tmdbId = ? AND contentType = ?",
            (tmdb_id, content_type),
        ).fetchone()

    def _add_item(self, item: ItemCreate) -> int:
        existing = self._find_item(item.tmdb_id, item.content_type)
        if existing is not None:
            return int(existing["id"])

        now = utc_now_iso()
        cur = self._conn.execute(
            "INSERT INTO watched_items (tmdbId, contentType, title, posterPath, releaseDate, "
            "status, userRating, notes, genreIds, addedAt, updatedAt) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                item.tmdb_id,
                item.content_type,
                item.title,
                item.poster_path,
                item.release_date,
                item.status,
                item.user_rating,
                item.notes or "",
                json.dumps(item.genre_ids or []),
                now,
                now,
            ),
        )
        return int(cur.lastrowid)


def create_library_store() -> LibraryStore:
    return LibraryStore()
