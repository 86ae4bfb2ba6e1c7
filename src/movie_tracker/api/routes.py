from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from movie_tracker.core.library import LibraryStore
from movie_tracker.core.schemas import (
    EpisodeImportRequest,
    EpisodeRef,
    ImportEntry,
    ImportResult,
    ItemCreate,
    ItemUpdate,
    MigratePayload,
    MigrateResponse,
    OkResponse,
    ProgressIn,
    SeasonRequest,
    ToggleResponse,
    TraktImportReport,
)
from movie_tracker.core.trakt_import import TraktImportError, import_trakt_progress

logger = logging.getLogger(__name__)

router = APIRouter()


class TraktImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str | None = Field(default=None, alias="clientId")
    progress: dict[str, Any]


def _library(request: Request) -> LibraryStore:
    return request.app.state.library


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# -- library -------------------------------------------------------------------


@router.get("/api/library")
def list_library(
    request: Request,
    content_type: str | None = Query(default=None, alias="contentType"),
    status: str | None = None,
) -> list[dict[str, Any]]:
    return _library(request).list_items(content_type, status)


@router.get("/api/library/export")
def export_library(request: Request) -> list[dict[str, Any]]:
    return _library(request).export_all()


@router.get("/api/library/upcoming")
def upcoming_from_library(
    request: Request,
    content_type: str = Query(alias="contentType", pattern="^(movie|series)$"),
) -> list[dict[str, Any]]:
    return _library(request).list_upcoming(content_type)


@router.get("/api/library/planned")
def planned_movies(request: Request) -> list[dict[str, Any]]:
    return _library(request).list_planned_movies()


@router.get("/api/library/{tmdb_id}/{content_type}")
def get_library_item(request: Request, tmdb_id: int, content_type: str) -> dict[str, Any]:
    item = _library(request).get_item(tmdb_id, content_type)
    if item is None:
        raise HTTPException(status_code=404, detail="Not found")
    return item


@router.post("/api/library")
def add_library_item(request: Request, item: ItemCreate) -> dict[str, int]:
    return {"id": _library(request).add_item(item)}


@router.patch("/api/library/{item_id}", response_model=OkResponse)
def update_library_item(request: Request, item_id: int, changes: ItemUpdate) -> OkResponse:
    _library(request).update_item(item_id, changes)
    return OkResponse()


@router.delete("/api/library/{item_id}", response_model=OkResponse)
def delete_library_item(request: Request, item_id: int) -> OkResponse:
    _library(request).delete_item(item_id)
    return OkResponse()


@router.post("/api/library/clear", response_model=OkResponse)
def clear_library(request: Request) -> OkResponse:
    _library(request).clear_all()
    return OkResponse()


@router.post("/api/library/import", response_model=ImportResult)
def import_library(request: Request, entries: list[ImportEntry]) -> ImportResult:
    return _library(request).import_entries(entries)


# -- progress & episodes ---------------------------------------------------------


@router.get("/api/progress/{tmdb_id}")
def get_progress(request: Request, tmdb_id: int) -> dict[str, Any] | None:
    return _library(request).get_progress(tmdb_id)


@router.put("/api/progress", response_model=OkResponse)
def put_progress(request: Request, progress: ProgressIn) -> OkResponse:
    _library(request).upsert_progress(progress)
    return OkResponse()


@router.get("/api/episodes/{tmdb_id}/{season}")
def get_episodes(request: Request, tmdb_id: int, season: int) -> list[dict[str, Any]]:
    return _library(request).get_episodes(tmdb_id, season)


@router.post("/api/episodes/toggle", response_model=ToggleResponse)
def toggle_episode(request: Request, ref: EpisodeRef) -> ToggleResponse:
    action = _library(request).toggle_episode(ref.tmdb_id, ref.season, ref.episode)
    return ToggleResponse(action=action)


@router.post("/api/episodes/import", response_model=OkResponse)
def import_episodes(request: Request, req: EpisodeImportRequest) -> OkResponse:
    _library(request).bulk_insert_episodes(req.entries)
    return OkResponse()


@router.post("/api/episodes/season", response_model=OkResponse)
def mark_season(request: Request, req: SeasonRequest) -> OkResponse:
    _library(request).mark_season_watched(req.tmdb_id, req.season, req.episodes)
    return OkResponse()


# -- bulk import ---------------------------------------------------------------


@router.post("/api/migrate", response_model=MigrateResponse)
def migrate(request: Request, body: dict[str, Any] = Body(...)):
    try:
        counts = _library(request).migrate(MigratePayload.model_validate(body))
    except Exception as e:
        logger.exception("Migration failed")
        return JSONResponse(status_code=500, content={"error": str(e)})
    return MigrateResponse(message="Migration complete", **counts)


@router.post("/api/import/trakt", response_model=TraktImportReport)
def import_trakt(request: Request, req: TraktImportRequest) -> TraktImportReport:
    try:
        return import_trakt_progress(_library(request), req.progress, client_id=req.client_id)
    except (TraktImportError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


# -- settings ------------------------------------------------------------------


@router.get("/api/settings")
def get_settings(request: Request) -> dict[str, Any]:
    return _library(request).get_settings()


@router.put("/api/settings", response_model=OkResponse)
def put_settings(request: Request, settings: dict[str, Any] = Body(...)) -> OkResponse:
    _library(request).save_settings(settings)
    return OkResponse()
