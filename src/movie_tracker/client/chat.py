from __future__ import annotations

import json
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import httpx

from movie_tracker.client.library import DEFAULT_BASE_URL, LibraryClient

# [Title](add:movie/123) or [Title](add:tv/123)
ADD_LINK_RE = re.compile(r"\[([^\]]+)\]\(add:(movie|tv)/(\d+)\)")


class ChatStreamError(RuntimeError):
    pass


@dataclass(frozen=True)
class AddLink:
    title: str
    kind: str
    tmdb_id: int

    @property
    def content_type(self) -> str:
        return "series" if self.kind == "tv" else "movie"


def parse_add_links(text: str) -> list[AddLink]:
    """Find add-to-library links in assistant markdown, first occurrence wins."""

    links: list[AddLink] = []
    seen: set[tuple[str, int]] = set()
    for m in ADD_LINK_RE.finditer(text):
        link = AddLink(title=m.group(1), kind=m.group(2), tmdb_id=int(m.group(3)))
        if (link.kind, link.tmdb_id) in seen:
            continue
        seen.add((link.kind, link.tmdb_id))
        links.append(link)
    return links


def iter_sse_events(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    for line in lines:
        if not line.startswith("data: "):
            continue
        try:
            event = json.loads(line[len("data: "):])
        except json.JSONDecodeError:
            continue
        if isinstance(event, dict):
            yield event


def add_from_link(
    link: AddLink,
    library: LibraryClient,
    *,
    details: dict[str, Any] | None = None,
    status: str = "plan_to_watch",
) -> int | None:
    """Add a linked title to the library unless it is already there.

    ``details`` is an optional catalog payload used to fill poster, release
    date and genres. Returns the new item id, or ``None`` if it existed.
    """

    if library.watched_item(link.tmdb_id, link.content_type) is not None:
        return None

    data = details or {}
    genres = data.get("genres")
    genre_ids = [g["id"] for g in genres] if isinstance(genres, list) else data.get("genre_ids") or []
    return library.add_to_library(
        {
            "tmdbId": link.tmdb_id,
            "contentType": link.content_type,
            "title": data.get("title") or data.get("name") or link.title,
            "posterPath": data.get("poster_path"),
            "releaseDate": data.get("release_date") or data.get("first_air_date"),
            "status": status,
            "userRating": None,
            "notes": "",
            "genreIds": genre_ids,
        }
    )


class ChatClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        client: httpx.Client | None = None,
        timeout_s: float = 120.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout_s)
        self.session_id: str | None = None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def create_session(self, *, model: str | None = None) -> str:
        body: dict[str, Any] = {"model": model} if model else {}
        resp = self._client.post("/api/chat/session", json=body)
        if resp.status_code >= 400:
            raise ChatStreamError(f"Failed to create session: {resp.status_code}")
        self.session_id = resp.json()["sessionId"]
        return self.session_id

    def send_message(self, text: str) -> Iterator[str]:
        """Yield reply fragments as they stream in."""

        if self.session_id is None:
            raise ChatStreamError("No chat session; call create_session() first")

        body = {"sessionId": self.session_id, "message": text}
        with self._client.stream("POST", "/api/chat/message", json=body) as resp:
            if resp.status_code >= 400:
                raise ChatStreamError(f"Server error: {resp.status_code}")
            for event in iter_sse_events(resp.iter_lines()):
                kind = event.get("type")
                if kind == "delta" and event.get("content"):
                    yield event["content"]
                elif kind == "error":
                    raise ChatStreamError(event.get("message") or "Unknown error")
                elif kind == "done":
                    return

    def ask(self, text: str) -> str:
        return "".join(self.send_message(text))

    def destroy_session(self) -> None:
        sid = self.session_id
        if sid is None:
            return
        self.session_id = None
        try:
            self._client.delete(f"/api/chat/session/{sid}")
        except httpx.HTTPError:
            # Server may already be gone; nothing left to clean up.
            pass
