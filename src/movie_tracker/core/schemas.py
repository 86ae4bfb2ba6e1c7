from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ContentType = Literal["movie", "series"]

DEFAULT_STATUSES: tuple[str, ...] = ("watched", "watching", "plan_to_watch", "dropped")


def allowed_statuses() -> tuple[str, ...]:
    """Status vocabulary, configurable via ``MOVIE_TRACKER_STATUSES``."""

    raw = os.environ.get("MOVIE_TRACKER_STATUSES", "").strip()
    if not raw:
        return DEFAULT_STATUSES
    parts = [p.strip() for p in raw.replace("\n", ",").split(",")]
    return tuple(p for p in parts if p) or DEFAULT_STATUSES


def _check_status(value: str | None) -> str | None:
    if value is None:
        return value
    statuses = allowed_statuses()
    if value not in statuses:
        raise ValueError(f"status must be one of: {', '.join(statuses)}")
    return value


class _WireModel(BaseModel):
    # Wire keys stay camelCase; attributes are snake_case.
    model_config = ConfigDict(populate_by_name=True)


class ItemCreate(_WireModel):
    tmdb_id: int = Field(alias="tmdbId")
    content_type: ContentType = Field(alias="contentType")
    title: str = Field(min_length=1)
    poster_path: str | None = Field(default=None, alias="posterPath")
    release_date: str | None = Field(default=None, alias="releaseDate")
    status: str
    user_rating: int | None = Field(default=None, alias="userRating", ge=1, le=10)
    notes: str = ""
    genre_ids: list[int] = Field(default_factory=list, alias="genreIds")

    @field_validator("status")
    @classmethod
    def check_status(cls, value: str | None) -> str | None:
        return _check_status(value)


class ItemUpdate(_WireModel):
    """Partial update. Omitted fields are untouched; ``userRating: null`` clears."""

    title: str | None = Field(default=None, min_length=1)
    poster_path: str | None = Field(default=None, alias="posterPath")
    release_date: str | None = Field(default=None, alias="releaseDate")
    status: str | None = None
    user_rating: int | None = Field(default=None, alias="userRating", ge=1, le=10)
    notes: str | None = None
    genre_ids: list[int] | None = Field(default=None, alias="genreIds")

    @field_validator("status")
    @classmethod
    def check_status(cls, value: str | None) -> str | None:
        return _check_status(value)


class ProgressIn(_WireModel):
    watched_item_id: int = Field(alias="watchedItemId")
    tmdb_id: int = Field(alias="tmdbId")
    current_season: int = Field(default=0, alias="currentSeason", ge=0)
    current_episode: int = Field(default=0, alias="currentEpisode", ge=0)
    total_seasons: int = Field(default=0, alias="totalSeasons", ge=0)
    total_episodes: int = Field(default=0, alias="totalEpisodes", ge=0)


class EpisodeRef(_WireModel):
    tmdb_id: int = Field(alias="tmdbId")
    season: int = Field(ge=0)
    episode: int = Field(ge=0)


class EpisodeImportRequest(_WireModel):
    entries: list[EpisodeRef] = Field(default_factory=list)


class SeasonRequest(_WireModel):
    tmdb_id: int = Field(alias="tmdbId")
    season: int = Field(ge=0)
    episodes: list[int] = Field(default_factory=list)


class ToggleResponse(BaseModel):
    action: Literal["added", "removed"]


class MigrateItem(_WireModel):
    tmdb_id: int = Field(alias="tmdbId")
    content_type: str = Field(alias="contentType")
    title: str
    poster_path: str | None = Field(default=None, alias="posterPath")
    release_date: str | None = Field(default=None, alias="releaseDate")
    status: str
    user_rating: float | None = Field(default=None, alias="userRating")
    notes: str | None = None
    genre_ids: list[int] | None = Field(default=None, alias="genreIds")
    added_at: str | None = Field(default=None, alias="addedAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")


class MigrateProgress(_WireModel):
    tmdb_id: int = Field(alias="tmdbId")
    current_season: int | None = Field(default=None, alias="currentSeason")
    current_episode: int | None = Field(default=None, alias="currentEpisode")
    total_seasons: int | None = Field(default=None, alias="totalSeasons")
    total_episodes: int | None = Field(default=None, alias="totalEpisodes")


class MigratePayload(_WireModel):
    items: list[MigrateItem] = Field(default_factory=list)
    progress: list[MigrateProgress] = Field(default_factory=list)
    episodes: list[EpisodeRef] = Field(default_factory=list)


class MigrateResponse(BaseModel):
    ok: bool = True
    message: str
    items: int = Field(ge=0)
    progress: int = Field(ge=0)
    episodes: int = Field(ge=0)


class ImportEntry(_WireModel):
    # Loose on purpose: incomplete entries are counted as skipped, not rejected.
    tmdb_id: int | None = Field(default=None, alias="tmdbId")
    title: str | None = None
    content_type: str | None = Field(default=None, alias="contentType")
    status: str | None = None
    poster_path: str | None = Field(default=None, alias="posterPath")
    release_date: str | None = Field(default=None, alias="releaseDate")


class ImportResult(BaseModel):
    added: int = Field(ge=0)
    skipped: int = Field(ge=0)


class TraktImportReport(BaseModel):
    done: int = Field(ge=0)
    total: int = Field(ge=0)
    errors: int = Field(ge=0)
    last_error: str | None = Field(default=None, serialization_alias="lastError")


class LibrarySnapshotItem(_WireModel):
    title: str
    content_type: str = Field(alias="contentType")
    status: str
    user_rating: float | None = Field(default=None, alias="userRating")


class ChatSessionRequest(_WireModel):
    # Older clients send their library; newer ones send nothing.
    library: list[LibrarySnapshotItem] | None = None
    model: str | None = None


class ChatSessionResponse(_WireModel):
    session_id: str = Field(serialization_alias="sessionId")


class ChatMessageRequest(_WireModel):
    session_id: str = Field(alias="sessionId", min_length=1)
    message: str = Field(min_length=1)


class OkResponse(BaseModel):
    ok: bool = True


Settings = dict[str, Any]
