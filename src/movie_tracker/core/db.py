from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS watched_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tmdbId INTEGER NOT NULL,
  contentType TEXT NOT NULL,
  title TEXT NOT NULL,
  posterPath TEXT,
  releaseDate TEXT,
  status TEXT NOT NULL,
  userRating INTEGER,
  notes TEXT DEFAULT '',
  genreIds TEXT DEFAULT '[]',
  addedAt TEXT NOT NULL,
  updatedAt TEXT NOT NULL,
  UNIQUE(tmdbId, contentType)
);

CREATE TABLE IF NOT EXISTS series_progress (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  watchedItemId INTEGER NOT NULL,
  tmdbId INTEGER NOT NULL UNIQUE,
  currentSeason INTEGER,
  currentEpisode INTEGER,
  totalSeasons INTEGER,
  totalEpisodes INTEGER
);

CREATE TABLE IF NOT EXISTS watched_episodes (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  tmdbId INTEGER NOT NULL,
  season INTEGER NOT NULL,
  episode INTEGER NOT NULL,
  UNIQUE(tmdbId, season, episode)
);

CREATE TABLE IF NOT EXISTS settings (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  data TEXT NOT NULL
);
"""


def _default_data_dir() -> Path:
    return Path(os.environ.get("MOVIE_TRACKER_DATA_DIR", "data")).resolve()


def default_db_path() -> str:
    """Database location, honouring ``MOVIE_TRACKER_DB`` (``:memory:`` allowed)."""

    configured = os.environ.get("MOVIE_TRACKER_DB", "").strip()
    if configured == MEMORY_DB:
        return MEMORY_DB
    if configured:
        return str(Path(configured).resolve())
    return str(_default_data_dir() / "movie-tracker.db")


def connect(db_path: str | Path | None = None) -> sqlite3.Connection:
    """Open the database, enable WAL and create missing tables."""

    target = str(db_path) if db_path is not None else default_db_path()
    if target != MEMORY_DB:
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    # check_same_thread=False because FastAPI runs sync handlers in a threadpool.
    conn = sqlite3.connect(target, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if target != MEMORY_DB:
        conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(SCHEMA)
    conn.commit()
    logger.info("Opened library database at %s", target)
    return conn
