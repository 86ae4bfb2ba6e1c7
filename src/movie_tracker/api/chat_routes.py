from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse

from movie_tracker.api.session import ChatSessionRegistry
from movie_tracker.core.assistant import AssistantClient
from movie_tracker.core.chat import build_system_message, relay_reply
from movie_tracker.core.schemas import (
    ChatMessageRequest,
    ChatSessionRequest,
    ChatSessionResponse,
    OkResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Stop reverse proxies from buffering the token stream.
    "X-Accel-Buffering": "no",
}


def _registry(request: Request) -> ChatSessionRegistry:
    return request.app.state.chat_sessions


def _assistant(request: Request) -> AssistantClient:
    return request.app.state.assistant


@router.post("/session", response_model=ChatSessionResponse)
async def create_chat_session(request: Request, req: ChatSessionRequest | None = None):
    req = req or ChatSessionRequest()
    if req.library is not None:
        library = [i.model_dump(by_alias=True) for i in req.library]
    else:
        library = await run_in_threadpool(request.app.state.library.list_items)

    try:
        session = await _assistant(request).create_session(
            system_message=build_system_message(library), model=req.model
        )
    except Exception as e:
        logger.exception("Error creating chat session")
        return JSONResponse(status_code=500, content={"error": str(e)})

    session_id = await _registry(request).create(session, model=req.model)
    return ChatSessionResponse(session_id=session_id)


@router.post("/message")
async def send_chat_message(request: Request, req: ChatMessageRequest) -> StreamingResponse:
    session = _registry(request).get(req.session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return StreamingResponse(
        relay_reply(session, req.message),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.delete("/session/{session_id}", response_model=OkResponse)
async def delete_chat_session(request: Request, session_id: str) -> OkResponse:
    await _registry(request).destroy(session_id)
    return OkResponse()
