from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

from movie_tracker.core.assistant import AssistantSession

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 90.0
DEFAULT_FALLBACK_DELAY_S = 0.02

_STATUS_HEADINGS: dict[str, str] = {
    "watched": "Watched",
    "watching": "Currently watching",
    "plan_to_watch": "Plan to watch",
    "dropped": "Dropped",
}

_WORD_SPLIT_RE = re.compile(r"(\s+)")

_DONE = object()


def chat_timeout_s() -> float:
    return float(os.environ.get("MOVIE_TRACKER_CHAT_TIMEOUT_S", str(DEFAULT_TIMEOUT_S)))


def fallback_delay_s() -> float:
    return float(
        os.environ.get("MOVIE_TRACKER_CHAT_FALLBACK_DELAY_S", str(DEFAULT_FALLBACK_DELAY_S))
    )


def build_library_context(library: Iterable[Mapping[str, Any]]) -> str:
    """Summarise the library for the system prompt, grouped by status."""

    groups: dict[str, list[Mapping[str, Any]]] = {}
    for item in library:
        groups.setdefault(str(item.get("status")), []).append(item)
    if not groups:
        return "The user has no items in their library yet."

    def fmt(item: Mapping[str, Any]) -> str:
        rating = item.get("userRating")
        stars = f" ★{rating:g}/10" if rating else ""
        return f'  - "{item.get("title")}" ({item.get("contentType")}){stars}'

    # Known statuses in a fixed order, anything else after them.
    order = [s for s in _STATUS_HEADINGS if s in groups]
    order += [s for s in groups if s not in _STATUS_HEADINGS]

    sections: list[str] = []
    for status in order:
        items = groups[status]
        heading = _STATUS_HEADINGS.get(status, status.replace("_", " ").capitalize())
        lines = "\n".join(fmt(i) for i in items)
        sections.append(f"{heading} ({len(items)}):\n{lines}")
    return "\n\n".join(sections)


def build_system_message(library: Iterable[Mapping[str, Any]]) -> str:
    return f"""You are a friendly movie and TV series recommendation assistant embedded in the user's personal watchlist app.

You have full access to the user's personal library below. Use it to give **personalized** recommendations, not generic ones.

{build_library_context(library)}

Guidelines:
- Be conversational, concise, and enthusiastic about movies/TV.
- Always cross-reference the user's library before suggesting something they've already seen.
- Your training data may be outdated. For ANY factual question about movies or series (sequels, release dates, cast, upcoming titles, franchise info), use searchTMDB first to get current data from TMDB.
- For sequels, prequels or related titles in a franchise, use searchTMDB to find the title, then getTMDBDetails, then getSimilar or getRecommendations.
- For every movie or series you suggest, first use searchTMDB to find its TMDB ID, then format the title as a markdown link using this exact pattern: [Title](add:movie/TMDB_ID) for movies or [Title](add:tv/TMDB_ID) for TV series. Never suggest a title without this link format.
- Format suggestions as short lists: linked title, one-sentence pitch, and why it matches their taste."""


def sse_event(data: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def relay_reply(
    session: AssistantSession,
    message: str,
    *,
    timeout_s: float | None = None,
    fallback_delay: float | None = None,
) -> AsyncIterator[str]:
    """Forward one assistant reply as SSE frames.

    Two branches run together: the delta subscription feeds a queue that is
    drained as frames, and a task awaits the final result under ``timeout_s``.
    When the result arrives without a single delta having been seen, the
    final text is replayed word by word instead. The stream always ends with
    a ``done`` frame, preceded by an ``error`` frame on failure.
    """

    timeout_s = chat_timeout_s() if timeout_s is None else timeout_s
    fallback_delay = fallback_delay_s() if fallback_delay is None else fallback_delay

    queue: asyncio.Queue[Any] = asyncio.Queue()
    delta_count = 0

    def on_delta(content: str) -> None:
        if content:
            queue.put_nowait(content)

    unsubscribe = session.on_delta(on_delta)

    async def await_result() -> str:
        try:
            return await asyncio.wait_for(session.send_and_wait(message), timeout_s)
        finally:
            queue.put_nowait(_DONE)

    result_task = asyncio.create_task(await_result())
    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            delta_count += 1
            if delta_count == 1:
                logger.info("Chat %s streaming started", session.session_id)
            yield sse_event({"type": "delta", "content": item})

        # Deltas emitted right before the result resolved.
        while not queue.empty():
            item = queue.get_nowait()
            if item is not _DONE:
                delta_count += 1
                yield sse_event({"type": "delta", "content": item})

        try:
            final = await result_task
        except asyncio.TimeoutError:
            raise TimeoutError(f"No assistant reply within {timeout_s:g}s") from None

        if delta_count == 0:
            logger.info("Chat %s: no delta events, replaying final text", session.session_id)
            content = final or "No response received."
            for word in _WORD_SPLIT_RE.split(content):
                if not word:
                    continue
                yield sse_event({"type": "delta", "content": word})
                if fallback_delay > 0:
                    await asyncio.sleep(fallback_delay)
        else:
            logger.info("Chat %s streaming complete (%s deltas)", session.session_id, delta_count)

        yield sse_event({"type": "done"})
    except Exception as e:
        logger.error("Chat %s reply failed: %s", session.session_id, e)
        yield sse_event({"type": "error", "message": str(e)})
        yield sse_event({"type": "done"})
    finally:
        unsubscribe()
        if not result_task.done():
            result_task.cancel()
