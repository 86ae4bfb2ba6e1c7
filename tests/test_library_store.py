from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from movie_tracker.core.library import LibraryStore
from movie_tracker.core.schemas import (
    EpisodeRef,
    ImportEntry,
    ItemCreate,
    ItemUpdate,
    MigrateItem,
    MigratePayload,
    ProgressIn,
)


def _store(tmp_path: Path) -> LibraryStore:
    return LibraryStore(db_path=tmp_path / "library.db")


def _movie(tmdb_id: int = 302946, **overrides) -> ItemCreate:
    data = {
        "tmdbId": tmdb_id,
        "contentType": "movie",
        "title": "The Accountant",
        "posterPath": "/fceheXB5fC4WrLVuWJ6OZv9FXYr.jpg",
        "releaseDate": "2016-10-13",
        "status": "watched",
        "genreIds": [28, 53, 80],
    }
    data.update(overrides)
    return ItemCreate.model_validate(data)


def _series(tmdb_id: int = 1396, **overrides) -> ItemCreate:
    data = {
        "tmdbId": tmdb_id,
        "contentType": "series",
        "title": "Breaking Bad",
        "releaseDate": "2008-01-20",
        "status": "watching",
        "genreIds": [18, 80],
    }
    data.update(overrides)
    return ItemCreate.model_validate(data)


def _count(store: LibraryStore, table: str) -> int:
    return store._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_add_is_idempotent_per_catalog_id_and_kind(tmp_path: Path) -> None:
    store = _store(tmp_path)

    first = store.add_item(_movie())
    second = store.add_item(_movie(title="Something Else", status="plan_to_watch"))
    assert first == second
    assert _count(store, "watched_items") == 1
    assert store.get_item(302946, "movie")["title"] == "The Accountant"

    # Same catalog id but a different kind is a different title.
    other = store.add_item(_series(tmdb_id=302946))
    assert other != first
    assert _count(store, "watched_items") == 2


def test_items_decode_genres_and_list_newest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.add_item(_movie(1, title="A"))
    store.add_item(_series(2, title="B"))
    store.add_item(_movie(3, title="C", status="plan_to_watch"))

    items = store.list_items()
    assert [i["title"] for i in items] == ["C", "B", "A"]
    assert items[-1]["genreIds"] == [28, 53, 80]

    assert [i["title"] for i in store.list_items("movie")] == ["C", "A"]
    assert [i["title"] for i in store.list_items("movie", "watched")] == ["A"]
    assert store.list_items("series", "dropped") == []


def test_update_applies_only_present_fields(tmp_path: Path) -> None:
    store = _store(tmp_path)
    item_id = store.add_item(_movie(userRating=6, notes="rewatch"))
    before = store.get_item_by_id(item_id)

    store.update_item(item_id, ItemUpdate.model_validate({"status": "watching"}))
    after = store.get_item_by_id(item_id)
    assert after["status"] == "watching"
    assert after["userRating"] == 6
    assert after["notes"] == "rewatch"
    assert after["genreIds"] == [28, 53, 80]
    assert after["updatedAt"] >= before["updatedAt"]
    assert after["addedAt"] == before["addedAt"]


def test_update_distinguishes_null_rating_from_omitted(tmp_path: Path) -> None:
    store = _store(tmp_path)
    item_id = store.add_item(_movie(userRating=7))

    store.update_item(item_id, ItemUpdate.model_validate({"notes": "great"}))
    assert store.get_item_by_id(item_id)["userRating"] == 7

    store.update_item(item_id, ItemUpdate.model_validate({"userRating": None}))
    assert store.get_item_by_id(item_id)["userRating"] is None


def test_delete_cascades_to_series_progress(tmp_path: Path) -> None:
    store = _store(tmp_path)
    item_id = store.add_item(_series())
    store.upsert_progress(
        ProgressIn(watchedItemId=item_id, tmdbId=1396, currentSeason=2, currentEpisode=3)
    )
    assert store.get_progress(1396) is not None

    store.delete_item(item_id)
    assert store.get_item(1396, "series") is None
    assert store.get_progress(1396) is None

    # Unknown ids are a silent no-op.
    store.delete_item(9999)


def test_progress_upsert_is_keyed_by_catalog_id(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_progress(ProgressIn(watchedItemId=1, tmdbId=1396, currentSeason=1))
    store.upsert_progress(
        ProgressIn(watchedItemId=5, tmdbId=1396, currentSeason=3, currentEpisode=7, totalSeasons=5)
    )

    progress = store.get_progress(1396)
    assert progress["watchedItemId"] == 5
    assert progress["currentSeason"] == 3
    assert progress["currentEpisode"] == 7
    assert progress["totalSeasons"] == 5
    assert _count(store, "series_progress") == 1


def test_toggle_episode_is_its_own_inverse(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.mark_season_watched(1396, 1, [2, 3])

    assert store.toggle_episode(1396, 1, 1) == "added"
    assert [e["episode"] for e in store.get_episodes(1396, 1)] == [1, 2, 3]

    assert store.toggle_episode(1396, 1, 1) == "removed"
    assert [e["episode"] for e in store.get_episodes(1396, 1)] == [2, 3]


def test_mark_season_replaces_the_watched_set_exactly(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.mark_season_watched(1396, 1, range(1, 8))
    store.mark_season_watched(1396, 2, [1])

    store.mark_season_watched(1396, 1, [2, 4])
    assert {e["episode"] for e in store.get_episodes(1396, 1)} == {2, 4}

    store.mark_season_watched(1396, 1, [])
    assert store.get_episodes(1396, 1) == []

    # Other seasons are untouched.
    assert [e["episode"] for e in store.get_episodes(1396, 2)] == [1]


def test_bulk_insert_episodes_ignores_duplicates(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.toggle_episode(1396, 1, 1)
    store.bulk_insert_episodes(
        [EpisodeRef(tmdbId=1396, season=1, episode=e) for e in (1, 2, 2, 3)]
    )
    assert [e["episode"] for e in store.get_episodes(1396, 1)] == [1, 2, 3]


def test_export_omits_empty_optionals(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.add_item(_movie(1, title="Plain"))
    store.add_item(_movie(2, title="Rated", userRating=9, notes="loved it"))

    exported = {e["title"]: e for e in store.export_all()}
    assert set(exported["Plain"]) == {
        "tmdbId",
        "title",
        "contentType",
        "status",
        "posterPath",
        "releaseDate",
    }
    assert exported["Rated"]["userRating"] == 9
    assert exported["Rated"]["notes"] == "loved it"


def test_migrate_resolves_progress_owner_and_skips_orphans(tmp_path: Path) -> None:
    store = _store(tmp_path)
    payload = MigratePayload.model_validate(
        {
            "items": [
                {
                    "tmdbId": 1396,
                    "contentType": "series",
                    "title": "Breaking Bad",
                    "status": "watching",
                    "genreIds": [18],
                    "addedAt": "2024-01-01T00:00:00.000Z",
                },
                {"tmdbId": 302946, "contentType": "movie", "title": "The Accountant", "status": "watched"},
            ],
            "progress": [
                {"tmdbId": 1396, "watchedItemId": 42, "currentSeason": 2, "currentEpisode": 5},
                {"tmdbId": 60059, "currentSeason": 1},
            ],
            "episodes": [
                {"tmdbId": 1396, "season": 1, "episode": 1},
                {"tmdbId": 1396, "season": 1, "episode": 1},
            ],
        }
    )

    counts = store.migrate(payload)
    assert counts == {"items": 2, "progress": 1, "episodes": 2}

    series = store.get_item(1396, "series")
    assert series["addedAt"] == "2024-01-01T00:00:00.000Z"
    progress = store.get_progress(1396)
    assert progress["watchedItemId"] == series["id"]
    assert progress["totalEpisodes"] == 0
    assert store.get_progress(60059) is None
    assert len(store.get_episodes(1396, 1)) == 1


def test_migrate_is_all_or_nothing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    good = MigrateItem.model_validate(
        {"tmdbId": 1, "contentType": "movie", "title": "Good", "status": "watched"}
    )
    # Bypasses validation so the NOT NULL constraint fails mid-transaction.
    bad = MigrateItem.model_construct(
        tmdb_id=2,
        content_type="movie",
        title=None,
        poster_path=None,
        release_date=None,
        status="watched",
        user_rating=None,
        notes=None,
        genre_ids=None,
        added_at=None,
        updated_at=None,
    )
    payload = MigratePayload.model_construct(items=[good, bad], progress=[], episodes=[])

    with pytest.raises(sqlite3.IntegrityError):
        store.migrate(payload)

    assert store.list_items() == []


def test_clear_all_empties_every_table(tmp_path: Path) -> None:
    store = _store(tmp_path)
    item_id = store.add_item(_series())
    store.upsert_progress(ProgressIn(watchedItemId=item_id, tmdbId=1396))
    store.toggle_episode(1396, 1, 1)

    store.clear_all()
    for table in ("watched_items", "series_progress", "watched_episodes"):
        assert _count(store, table) == 0


def test_import_entries_counts_added_and_skipped(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.add_item(_movie(302946))

    result = store.import_entries(
        [
            ImportEntry.model_validate(
                {"tmdbId": 302946, "title": "The Accountant", "contentType": "movie", "status": "watched"}
            ),
            ImportEntry.model_validate(
                {"tmdbId": 1396, "title": "Breaking Bad", "contentType": "series", "status": "watching"}
            ),
            ImportEntry.model_validate({"tmdbId": 7, "title": "No kind", "status": "watched"}),
        ]
    )
    assert (result.added, result.skipped) == (1, 2)
    assert store.get_item(1396, "series")["genreIds"] == []


def test_upcoming_and_planned_views(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.add_item(_movie(1, title="Old", releaseDate="2001-01-01"))
    store.add_item(_movie(2, title="Later", releaseDate="2031-05-01", status="plan_to_watch"))
    store.add_item(_movie(3, title="Sooner", releaseDate="2030-01-01", status="plan_to_watch"))
    store.add_item(_movie(4, title="Undated", releaseDate=None, status="plan_to_watch"))
    store.add_item(_series(10, title="Zeta", status="plan_to_watch"))
    store.add_item(_series(11, title="Alpha", status="watching"))
    store.add_item(_series(12, title="Done", status="watched"))

    movies = store.list_upcoming("movie", today="2025-06-01")
    assert [m["title"] for m in movies] == ["Sooner", "Later"]
    assert [s["title"] for s in store.list_upcoming("series")] == ["Alpha", "Zeta"]
    assert [m["title"] for m in store.list_planned_movies()] == ["Undated"]


def test_settings_round_trip_and_default(tmp_path: Path) -> None:
    store = _store(tmp_path)
    assert store.get_settings() == {}

    store.save_settings({"country": "NL", "showSpoilers": False})
    store.save_settings({"country": "DE"})
    assert store.get_settings() == {"country": "DE"}


def test_in_memory_database(monkeypatch) -> None:
    monkeypatch.setenv("MOVIE_TRACKER_DB", ":memory:")
    store = LibraryStore()
    store.add_item(_movie())
    assert len(store.list_items()) == 1
    store.close()
