from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from movie_tracker.api.chat_routes import router as chat_router
from movie_tracker.api.rate_limit import RateLimitMiddleware
from movie_tracker.api.routes import router
from movie_tracker.api.session import create_session_registry
from movie_tracker.core.assistant import AssistantClient, OpenAIAssistantClient
from movie_tracker.core.library import LibraryStore, create_library_store

logger = logging.getLogger(__name__)


def _parse_csv_env(name: str) -> list[str]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return []

    # Support both comma-separated values and newline-separated values.
    parts = [p.strip() for p in raw.replace("\n", ",").split(",")]
    return [p for p in parts if p]


def _configure_logging() -> None:
    level = os.environ.get("MOVIE_TRACKER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    await app.state.chat_sessions.close()
    await app.state.assistant.aclose()
    app.state.library.close()


def create_app(
    *,
    library: LibraryStore | None = None,
    assistant: AssistantClient | None = None,
) -> FastAPI:
    _configure_logging()
    app = FastAPI(title="Movie Tracker", version="0.1.0", lifespan=_lifespan)

    # Attach shared components.
    app.state.library = library or create_library_store()
    app.state.assistant = assistant or OpenAIAssistantClient()
    app.state.chat_sessions = create_session_registry()

    # CORS is opt-in. Configure allowed origins via env var, e.g.
    #   MOVIE_TRACKER_CORS_ORIGINS=http://localhost:5173
    cors_origins = _parse_csv_env("MOVIE_TRACKER_CORS_ORIGINS")
    if cors_origins:
        allow_all = "*" in cors_origins
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if allow_all else cors_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(RateLimitMiddleware)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(_request: Request, exc: Exception):
        logger.exception("Unhandled error", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    app.include_router(router)
    app.include_router(chat_router)
    return app


app = create_app()
