from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from movie_tracker.core.library import LibraryStore
from movie_tracker.core.schemas import EpisodeRef, ItemCreate, ProgressIn, TraktImportReport
from movie_tracker.core.tmdb import TMDB_BASE, CatalogError

logger = logging.getLogger(__name__)

TRAKT_BASE = "https://api.trakt.tv"

# Trakt asks API clients to stay well below 1000 calls / 5 minutes.
DEFAULT_PAUSE_S = 0.25


class TraktImportError(RuntimeError):
    pass


class TraktProgressEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trakt_id: int = Field(alias="traktID")
    scope: int | None = None
    seasons: dict[str, list[int]] = Field(
        default_factory=dict, alias="seasonAndEpisodeNumberDictionary"
    )


@dataclass(frozen=True)
class ResolvedTitle:
    tmdb_id: int
    content_type: str
    title: str


def _default_client_id() -> str | None:
    return os.environ.get("MOVIE_TRACKER_TRAKT_CLIENT_ID")


def _default_tmdb_token() -> str | None:
    return os.environ.get("MOVIE_TRACKER_TMDB_TOKEN") or os.environ.get("TMDB_API_TOKEN")


def resolve_trakt_id(client: httpx.Client, trakt_id: int, client_id: str) -> ResolvedTitle | None:
    resp = client.get(
        f"{TRAKT_BASE}/search/trakt/{trakt_id}",
        headers={
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "trakt-api-key": client_id,
        },
    )
    if resp.status_code >= 400:
        raise TraktImportError(f"Trakt {resp.status_code}: {resp.reason_phrase}")

    results = resp.json()
    if not results:
        return None

    first = results[0]
    kind = first.get("type")
    if kind == "show":
        show = first.get("show") or {}
        tmdb_id = (show.get("ids") or {}).get("tmdb")
        if tmdb_id:
            return ResolvedTitle(tmdb_id=int(tmdb_id), content_type="series", title=show.get("title", ""))
    if kind == "movie":
        movie = first.get("movie") or {}
        tmdb_id = (movie.get("ids") or {}).get("tmdb")
        if tmdb_id:
            return ResolvedTitle(tmdb_id=int(tmdb_id), content_type="movie", title=movie.get("title", ""))
    return None


def fetch_catalog_details(
    client: httpx.Client, tmdb_id: int, content_type: str, token: str | None
) -> dict[str, Any]:
    path = f"/tv/{tmdb_id}" if content_type == "series" else f"/movie/{tmdb_id}"
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    resp = client.get(f"{TMDB_BASE}{path}", headers=headers)
    if resp.status_code >= 400:
        raise CatalogError(f"TMDB {resp.status_code} for {content_type} {tmdb_id}")
    return resp.json()


def parse_trakt_progress(data: Mapping[str, Any]) -> list[TraktProgressEntry]:
    if not isinstance(data, Mapping):
        raise TraktImportError("Trakt progress export must be a JSON object")
    return [TraktProgressEntry.model_validate(v) for v in data.values()]


def import_trakt_entry(
    store: LibraryStore,
    entry: TraktProgressEntry,
    resolved: ResolvedTitle,
    details: Mapping[str, Any],
) -> None:
    """Write one resolved entry: item, then progress + episodes for series."""

    watched_seasons = sorted(int(s) for s, eps in entry.seasons.items() if eps)
    has_progress = bool(watched_seasons)
    is_series = resolved.content_type == "series"

    genre_ids = details.get("genre_ids") or [
        g["id"] for g in details.get("genres") or [] if isinstance(g, dict) and "id" in g
    ]
    item_id = store.add_item(
        ItemCreate(
            tmdbId=resolved.tmdb_id,
            contentType=resolved.content_type,
            title=(details.get("name") if is_series else details.get("title")) or resolved.title,
            posterPath=details.get("poster_path"),
            releaseDate=details.get("first_air_date") if is_series else details.get("release_date"),
            status="watching" if has_progress else "plan_to_watch",
            genreIds=genre_ids,
        )
    )

    if not (is_series and has_progress):
        return

    max_season = watched_seasons[-1]
    episodes = entry.seasons.get(str(max_season)) or []
    store.upsert_progress(
        ProgressIn(
            watchedItemId=item_id,
            tmdbId=resolved.tmdb_id,
            currentSeason=max_season,
            currentEpisode=max(episodes) if episodes else 0,
            totalSeasons=details.get("number_of_seasons") or max_season,
            totalEpisodes=details.get("number_of_episodes") or 0,
        )
    )
    store.bulk_insert_episodes(
        EpisodeRef(tmdbId=resolved.tmdb_id, season=int(season), episode=ep)
        for season, eps in entry.seasons.items()
        for ep in eps
    )


def import_trakt_progress(
    store: LibraryStore,
    data: Mapping[str, Any],
    *,
    client_id: str | None = None,
    tmdb_token: str | None = None,
    client: httpx.Client | None = None,
    pause_s: float = DEFAULT_PAUSE_S,
    sleep: Callable[[float], None] = time.sleep,
    timeout_s: float = 20.0,
) -> TraktImportReport:
    """Import a Trakt progress export.

    Each entry is resolved to a catalog id, enriched from the catalog API
    and written through the library store. A failing entry is counted and
    logged; the import carries on with the next one.
    """

    client_id = client_id or _default_client_id()
    if not client_id:
        raise TraktImportError("A Trakt client id is required")
    entries = parse_trakt_progress(data)
    tmdb_token = tmdb_token or _default_tmdb_token()

    close_client = False
    if client is None:
        client = httpx.Client(timeout=timeout_s, follow_redirects=True)
        close_client = True

    done = 0
    errors = 0
    last_error: str | None = None
    try:
        for entry in entries:
            title = f"Trakt #{entry.trakt_id}"
            try:
                resolved = resolve_trakt_id(client, entry.trakt_id, client_id)
                if resolved is None:
                    errors += 1
                    last_error = f"{title}: no catalog id"
                else:
                    title = resolved.title or title
                    details = fetch_catalog_details(
                        client, resolved.tmdb_id, resolved.content_type, tmdb_token
                    )
                    import_trakt_entry(store, entry, resolved, details)
            except (httpx.HTTPError, TraktImportError, CatalogError, ValueError) as e:
                logger.warning("Failed to import Trakt ID %s: %s", entry.trakt_id, e)
                errors += 1
                last_error = f"{title}: {e}"

            done += 1
            if pause_s > 0 and done < len(entries):
                sleep(pause_s)
    finally:
        if close_client:
            client.close()

    logger.info("Trakt import finished: %s/%s entries, %s errors", done, len(entries), errors)
    return TraktImportReport(done=done, total=len(entries), errors=errors, last_error=last_error)
