from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping
from threading import Lock
from typing import Any

import httpx

DEFAULT_BASE_URL = "http://localhost:3001"

VersionListener = Callable[[int], None]


class LibraryClientError(RuntimeError):
    def __init__(self, status_code: int, detail: Any) -> None:
        super().__init__(f"Library API responded with {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class LibraryVersion:
    """Monotonic write counter with explicit subscribers.

    Every successful write bumps the version; subscribers get the new value
    and decide for themselves whether to re-read.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._value = 0
        self._listeners: list[VersionListener] = []

    @property
    def value(self) -> int:
        return self._value

    def subscribe(self, listener: VersionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def bump(self) -> int:
        with self._lock:
            self._value += 1
            value = self._value
            listeners = list(self._listeners)
        for listener in listeners:
            listener(value)
        return value


class QueryCache:
    """Read-through cache keyed by ``(query name, *params)``.

    An entry is served only while the library version it was read at is
    still current; otherwise it is fetched again.
    """

    def __init__(self, version: LibraryVersion) -> None:
        self._version = version
        self._entries: dict[tuple[Hashable, ...], tuple[int, Any]] = {}

    def get(self, key: tuple[Hashable, ...], fetch: Callable[[], Any]) -> Any:
        current = self._version.value
        hit = self._entries.get(key)
        if hit is not None and hit[0] == current:
            return hit[1]
        value = fetch()
        self._entries[key] = (current, value)
        return value

    def invalidate(self, prefix: Hashable | None = None) -> None:
        if prefix is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == prefix]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class LibraryClient:
    """Client for the library REST API.

    Reads are cached per query and parameters. Writes invalidate everything
    by bumping the shared version; the dataset is one user's library, so
    field-level tracking is not worth it.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        client: httpx.Client | None = None,
        version: LibraryVersion | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout_s)
        self.version = version or LibraryVersion()
        self.cache = QueryCache(self.version)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> LibraryClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self._client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            try:
                detail = resp.json()
            except ValueError:
                detail = resp.text
            raise LibraryClientError(resp.status_code, detail)
        return resp.json()

    def _write(self, method: str, path: str, **kwargs: Any) -> Any:
        result = self._request(method, path, **kwargs)
        self.version.bump()
        return result

    # -- reads -----------------------------------------------------------------

    def watched_items(
        self, content_type: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        params = {k: v for k, v in {"contentType": content_type, "status": status}.items() if v}
        return self.cache.get(
            ("items", content_type, status),
            lambda: self._request("GET", "/api/library", params=params),
        )

    def watched_item(self, tmdb_id: int, content_type: str) -> dict[str, Any] | None:
        def fetch() -> dict[str, Any] | None:
            try:
                return self._request("GET", f"/api/library/{tmdb_id}/{content_type}")
            except LibraryClientError as e:
                if e.status_code == 404:
                    return None
                raise

        return self.cache.get(("item", tmdb_id, content_type), fetch)

    def upcoming(self, content_type: str) -> list[dict[str, Any]]:
        return self.cache.get(
            ("upcoming", content_type),
            lambda: self._request("GET", "/api/library/upcoming", params={"contentType": content_type}),
        )

    def planned_movies(self) -> list[dict[str, Any]]:
        return self.cache.get(("planned",), lambda: self._request("GET", "/api/library/planned"))

    def series_progress(self, tmdb_id: int) -> dict[str, Any] | None:
        return self.cache.get(
            ("progress", tmdb_id), lambda: self._request("GET", f"/api/progress/{tmdb_id}")
        )

    def watched_episodes(self, tmdb_id: int, season: int) -> list[dict[str, Any]]:
        return self.cache.get(
            ("episodes", tmdb_id, season),
            lambda: self._request("GET", f"/api/episodes/{tmdb_id}/{season}"),
        )

    def settings(self) -> dict[str, Any]:
        return self.cache.get(("settings",), lambda: self._request("GET", "/api/settings"))

    def export(self) -> list[dict[str, Any]]:
        return self._request("GET", "/api/library/export")

    # -- writes ----------------------------------------------------------------

    def add_to_library(self, item: Mapping[str, Any]) -> int:
        return int(self._write("POST", "/api/library", json=dict(item))["id"])

    def update_item(self, item_id: int, changes: Mapping[str, Any]) -> None:
        self._write("PATCH", f"/api/library/{item_id}", json=dict(changes))

    def remove_from_library(self, item_id: int) -> None:
        self._write("DELETE", f"/api/library/{item_id}")

    def update_series_progress(self, progress: Mapping[str, Any]) -> None:
        self._write("PUT", "/api/progress", json=dict(progress))

    def toggle_episode(self, tmdb_id: int, season: int, episode: int) -> str:
        body = {"tmdbId": tmdb_id, "season": season, "episode": episode}
        return self._write("POST", "/api/episodes/toggle", json=body)["action"]

    def mark_season_watched(self, tmdb_id: int, season: int, episodes: Iterable[int]) -> None:
        body = {"tmdbId": tmdb_id, "season": season, "episodes": list(episodes)}
        self._write("POST", "/api/episodes/season", json=body)

    def bulk_add_episodes(self, entries: Iterable[Mapping[str, int]]) -> None:
        self._write("POST", "/api/episodes/import", json={"entries": [dict(e) for e in entries]})

    def import_entries(self, entries: Iterable[Mapping[str, Any]]) -> dict[str, int]:
        return self._write("POST", "/api/library/import", json=[dict(e) for e in entries])

    def migrate(self, snapshot: Mapping[str, Any]) -> dict[str, Any]:
        return self._write("POST", "/api/migrate", json=dict(snapshot))

    def clear_library(self) -> None:
        self._write("POST", "/api/library/clear")

    def save_settings(self, settings: Mapping[str, Any]) -> None:
        self._write("PUT", "/api/settings", json=dict(settings))
