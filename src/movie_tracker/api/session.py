from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from movie_tracker.core.assistant import AssistantSession

logger = logging.getLogger(__name__)


@dataclass
class ChatSessionEntry:
    session: AssistantSession
    model: str | None = None
    last_used: float = field(default_factory=time.monotonic)


class ChatSessionRegistry:
    """In-memory registry of live assistant sessions.

    Sessions are keyed by the assistant's own session id.
    Every method runs on the event loop, so no lock is needed.

    Eviction runs on every ``create``:
      - sessions idle longer than ``max_idle_s`` are destroyed
      - beyond ``max_sessions`` the least-recently-used ones go first
    """

    def __init__(
        self,
        *,
        max_idle_s: float | None = None,
        max_sessions: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_idle_s = (
            max_idle_s
            if max_idle_s is not None
            else float(os.environ.get("MOVIE_TRACKER_CHAT_IDLE_S", "3600"))
        )
        self._max_sessions = (
            max_sessions
            if max_sessions is not None
            else int(os.environ.get("MOVIE_TRACKER_CHAT_MAX_SESSIONS", "64"))
        )
        self._clock = clock
        self._entries: dict[str, ChatSessionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    async def create(self, session: AssistantSession, *, model: str | None = None) -> str:
        await self.evict_idle()
        self._entries[session.session_id] = ChatSessionEntry(
            session=session, model=model, last_used=self._clock()
        )
        await self._evict_over_capacity()
        logger.info("Chat session %s created (%s live)", session.session_id, len(self._entries))
        return session.session_id

    def get(self, session_id: str) -> AssistantSession | None:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        entry.last_used = self._clock()
        return entry.session

    async def destroy(self, session_id: str) -> bool:
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return False
        await self._destroy_quietly(entry.session)
        logger.info("Chat session %s destroyed", session_id)
        return True

    async def evict_idle(self) -> int:
        cutoff = self._clock() - self._max_idle_s
        stale = [sid for sid, e in self._entries.items() if e.last_used < cutoff]
        for sid in stale:
            entry = self._entries.pop(sid)
            await self._destroy_quietly(entry.session)
            logger.info("Chat session %s evicted after idling", sid)
        return len(stale)

    async def close(self) -> None:
        for sid in list(self._entries):
            await self.destroy(sid)

    async def _evict_over_capacity(self) -> None:
        overflow = len(self._entries) - self._max_sessions
        if overflow <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda kv: kv[1].last_used)[:overflow]
        for sid, entry in oldest:
            del self._entries[sid]
            await self._destroy_quietly(entry.session)
            logger.info("Chat session %s evicted (capacity %s)", sid, self._max_sessions)

    @staticmethod
    async def _destroy_quietly(session: AssistantSession) -> None:
        # Best-effort cleanup.
        try:
            await session.destroy()
        except Exception as e:
            logger.debug("Ignoring error while destroying chat session: %s", e)


def create_session_registry() -> ChatSessionRegistry:
    return ChatSessionRegistry()
