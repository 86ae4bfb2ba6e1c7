from __future__ import annotations

import os
from typing import Any, Literal

import httpx

TMDB_BASE = "https://api.themoviedb.org/3"

CatalogKind = Literal["movie", "tv"]


class CatalogError(RuntimeError):
    pass


def _default_token() -> str | None:
    return os.environ.get("MOVIE_TRACKER_TMDB_TOKEN") or os.environ.get("TMDB_API_TOKEN")


def pick_title_fields(item: dict[str, Any]) -> dict[str, Any]:
    """Project a movie or series payload onto the fields the assistant needs."""

    genres = item.get("genres")
    return {
        "id": item.get("id"),
        "title": item.get("title") or item.get("name"),
        "overview": item.get("overview"),
        "release_date": item.get("release_date") or item.get("first_air_date"),
        "vote_average": item.get("vote_average"),
        "genres": [g.get("name") for g in genres] if isinstance(genres, list) else None,
        "genre_ids": item.get("genre_ids"),
    }


class TMDBClient:
    """Thin async wrapper over the catalog API endpoints the assistant uses."""

    def __init__(
        self,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 20.0,
    ) -> None:
        self._token = token or _default_token()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=TMDB_BASE, timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        resp = await self._client.get(path, params=params or {}, headers=headers)
        if resp.status_code >= 400:
            raise CatalogError(f"TMDB {resp.status_code}: {resp.reason_phrase}")
        return resp.json()

    async def search(self, query: str, kind: CatalogKind) -> list[dict[str, Any]]:
        data = await self.fetch(f"/search/{kind}", {"query": query, "page": "1"})
        return [pick_title_fields(r) for r in data.get("results", [])[:6]]

    async def details(self, tmdb_id: int, kind: CatalogKind) -> dict[str, Any]:
        """Raw details payload, credits appended."""

        return await self.fetch(f"/{kind}/{tmdb_id}", {"append_to_response": "credits"})

    async def details_summary(self, tmdb_id: int, kind: CatalogKind) -> dict[str, Any]:
        data = await self.details(tmdb_id, kind)
        run_times = data.get("episode_run_time") or []
        cast = (data.get("credits") or {}).get("cast") or []
        return {
            **pick_title_fields(data),
            "runtime": data.get("runtime") or (run_times[0] if run_times else None),
            "status": data.get("status"),
            "tagline": data.get("tagline"),
            "cast": [f"{c.get('name')} as {c.get('character')}" for c in cast[:5]],
        }

    async def similar(self, tmdb_id: int, kind: CatalogKind) -> list[dict[str, Any]]:
        data = await self.fetch(f"/{kind}/{tmdb_id}/similar", {"page": "1"})
        return [pick_title_fields(r) for r in data.get("results", [])[:8]]

    async def recommendations(self, tmdb_id: int, kind: CatalogKind) -> list[dict[str, Any]]:
        data = await self.fetch(f"/{kind}/{tmdb_id}/recommendations", {"page": "1"})
        return [pick_title_fields(r) for r in data.get("results", [])[:8]]

    async def search_person(self, name: str) -> list[dict[str, Any]]:
        data = await self.fetch("/search/person", {"query": name, "page": "1"})
        people: list[dict[str, Any]] = []
        for p in data.get("results", [])[:3]:
            known_for = p.get("known_for") or []
            people.append(
                {
                    "id": p.get("id"),
                    "name": p.get("name"),
                    "known_for_department": p.get("known_for_department"),
                    "known_for": [k.get("title") or k.get("name") for k in known_for[:3]],
                }
            )
        return people

    async def person_credits(
        self, person_id: int, kind: Literal["movie", "tv", "both"]
    ) -> list[dict[str, Any]]:
        """Most recent credits first, 15 per kind, 20 overall."""

        results: list[dict[str, Any]] = []
        kinds = ("movie", "tv") if kind == "both" else (kind,)
        for k in kinds:
            date_key = "release_date" if k == "movie" else "first_air_date"
            data = await self.fetch(f"/person/{person_id}/{k}_credits")
            credits = [c for c in data.get("cast", []) if c.get(date_key)]
            credits.sort(key=lambda c: str(c[date_key]), reverse=True)
            results.extend(
                {**pick_title_fields(c), "character": c.get("character"), "media_type": k}
                for c in credits[:15]
            )

        results.sort(key=lambda r: str(r.get("release_date") or ""), reverse=True)
        return results[:20]
