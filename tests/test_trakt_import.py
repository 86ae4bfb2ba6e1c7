from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from movie_tracker.api.app import create_app
from movie_tracker.core.library import LibraryStore
from movie_tracker.core.trakt_import import TraktImportError, import_trakt_progress

TRAKT_SEARCH = {
    1388: [{"type": "show", "show": {"title": "Breaking Bad", "ids": {"trakt": 1388, "tmdb": 1396}}}],
    481: [{"type": "movie", "movie": {"title": "Heat", "ids": {"trakt": 481, "tmdb": 949}}}],
    7: [],
}

TMDB_DETAILS = {
    "/3/tv/1396": {
        "id": 1396,
        "name": "Breaking Bad",
        "poster_path": "/bb.jpg",
        "first_air_date": "2008-01-20",
        "genres": [{"id": 18, "name": "Drama"}],
        "number_of_seasons": 5,
        "number_of_episodes": 62,
    },
    "/3/movie/949": {
        "id": 949,
        "title": "Heat",
        "poster_path": "/heat.jpg",
        "release_date": "1995-12-15",
        "genres": [{"id": 28, "name": "Action"}, {"id": 80, "name": "Crime"}],
    },
}


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "api.trakt.tv":
        assert request.headers["trakt-api-key"] == "client-123"
        trakt_id = int(request.url.path.rsplit("/", 1)[-1])
        return httpx.Response(200, json=TRAKT_SEARCH[trakt_id])
    if request.url.path in TMDB_DETAILS:
        return httpx.Response(200, json=TMDB_DETAILS[request.url.path])
    return httpx.Response(404, json={})


def _export() -> dict:
    return {
        "a": {
            "traktID": 1388,
            "seasonAndEpisodeNumberDictionary": {"1": [1, 2, 3], "2": [1, 2], "3": []},
        },
        "b": {"traktID": 481, "seasonAndEpisodeNumberDictionary": {}},
        "c": {"traktID": 7},
    }


def test_import_writes_items_progress_and_episodes(tmp_path: Path) -> None:
    store = LibraryStore(db_path=tmp_path / "library.db")
    client = httpx.Client(transport=httpx.MockTransport(_handler))

    report = import_trakt_progress(
        store, _export(), client_id="client-123", client=client, pause_s=0
    )
    assert report.done == 3
    assert report.total == 3
    assert report.errors == 1
    assert report.last_error == "Trakt #7: no catalog id"

    series = store.get_item(1396, "series")
    assert series["title"] == "Breaking Bad"
    assert series["status"] == "watching"
    assert series["genreIds"] == [18]

    progress = store.get_progress(1396)
    assert progress["watchedItemId"] == series["id"]
    assert (progress["currentSeason"], progress["currentEpisode"]) == (2, 2)
    assert (progress["totalSeasons"], progress["totalEpisodes"]) == (5, 62)
    assert [e["episode"] for e in store.get_episodes(1396, 1)] == [1, 2, 3]
    assert [e["episode"] for e in store.get_episodes(1396, 2)] == [1, 2]

    movie = store.get_item(949, "movie")
    assert movie["status"] == "plan_to_watch"
    assert movie["releaseDate"] == "1995-12-15"
    assert store.get_progress(949) is None


def test_import_pauses_between_entries(tmp_path: Path) -> None:
    store = LibraryStore(db_path=tmp_path / "library.db")
    client = httpx.Client(transport=httpx.MockTransport(_handler))
    pauses: list[float] = []

    import_trakt_progress(
        store, _export(), client_id="client-123", client=client, pause_s=0.5, sleep=pauses.append
    )
    assert pauses == [0.5, 0.5]


def test_failing_lookup_is_counted_and_import_continues(tmp_path: Path) -> None:
    store = LibraryStore(db_path=tmp_path / "library.db")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.trakt.tv" and request.url.path.endswith("/1388"):
            return httpx.Response(503)
        return _handler(request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    report = import_trakt_progress(
        store, _export(), client_id="client-123", client=client, pause_s=0
    )

    assert report.errors == 2
    assert store.get_item(1396, "series") is None
    assert store.get_item(949, "movie") is not None


def test_client_id_is_required(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("MOVIE_TRACKER_TRAKT_CLIENT_ID", raising=False)
    store = LibraryStore(db_path=tmp_path / "library.db")

    with pytest.raises(TraktImportError):
        import_trakt_progress(store, _export())


def test_trakt_route_rejects_bad_payloads(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("MOVIE_TRACKER_TRAKT_CLIENT_ID", raising=False)
    client = TestClient(create_app(library=LibraryStore(db_path=tmp_path / "library.db")))

    r = client.post("/api/import/trakt", json={"progress": {}})
    assert r.status_code == 400

    r = client.post(
        "/api/import/trakt", json={"clientId": "client-123", "progress": {"a": {"scope": 1}}}
    )
    assert r.status_code == 400


def test_trakt_route_reports_progress(tmp_path: Path, monkeypatch) -> None:
    def offline_import(store, data, **kwargs):
        client = httpx.Client(transport=httpx.MockTransport(_handler))
        return import_trakt_progress(store, data, client=client, pause_s=0, **kwargs)

    monkeypatch.setattr("movie_tracker.api.routes.import_trakt_progress", offline_import)
    client = TestClient(create_app(library=LibraryStore(db_path=tmp_path / "library.db")))

    r = client.post("/api/import/trakt", json={"clientId": "client-123", "progress": _export()})
    assert r.status_code == 200
    assert r.json() == {
        "done": 3,
        "total": 3,
        "errors": 1,
        "lastError": "Trakt #7: no catalog id",
    }
    assert client.get("/api/library/1396/series").status_code == 200
