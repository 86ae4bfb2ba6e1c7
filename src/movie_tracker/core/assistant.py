from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Sequence
from typing import Any, Protocol
from uuid import uuid4

from openai import AsyncOpenAI

from movie_tracker.core.tmdb import TMDBClient
from movie_tracker.core.tools import ChatTool, build_catalog_tools

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MAX_TOOL_ROUNDS = 8

DeltaCallback = Callable[[str], None]


class AssistantError(RuntimeError):
    pass


def default_model() -> str:
    return os.environ.get("MOVIE_TRACKER_CHAT_MODEL", DEFAULT_MODEL)


class AssistantSession(Protocol):
    session_id: str

    def on_delta(self, callback: DeltaCallback) -> Callable[[], None]: ...

    async def send_and_wait(self, prompt: str) -> str: ...

    async def destroy(self) -> None: ...


class AssistantClient(Protocol):
    async def create_session(
        self, *, system_message: str, model: str | None = None
    ) -> AssistantSession: ...

    async def aclose(self) -> None: ...


class DeltaEmitter:
    """Listener bookkeeping for incremental-token events."""

    def __init__(self) -> None:
        self._listeners: list[DeltaCallback] = []

    def on_delta(self, callback: DeltaCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def emit_delta(self, content: str) -> None:
        for listener in list(self._listeners):
            listener(content)


class OpenAIAssistantSession(DeltaEmitter):
    """One conversation with an OpenAI-compatible chat model.

    Replies are requested with ``stream=True``; every content fragment is
    emitted to delta listeners as it arrives. Tool calls are executed locally
    and fed back until the model answers in plain text.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        system_message: str,
        tools: Sequence[ChatTool] = (),
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ) -> None:
        super().__init__()
        self.session_id = uuid4().hex
        self.model = model
        self._client = client
        self._tools = {t.name: t for t in tools}
        self._max_tool_rounds = max_tool_rounds
        self._messages: list[dict[str, Any]] = [{"role": "system", "content": system_message}]

    async def send_and_wait(self, prompt: str) -> str:
        # Joins the history only after a final answer.
        turn: list[dict[str, Any]] = [{"role": "user", "content": prompt}]

        for _ in range(self._max_tool_rounds):
            content, tool_calls = await self._stream_completion(self._messages + turn)
            if not tool_calls:
                turn.append({"role": "assistant", "content": content})
                self._messages.extend(turn)
                return content

            turn.append(
                {
                    "role": "assistant",
                    "content": content or None,
                    "tool_calls": [
                        {
                            "id": call["id"],
                            "type": "function",
                            "function": {"name": call["name"], "arguments": call["arguments"]},
                        }
                        for call in tool_calls
                    ],
                }
            )
            for call in tool_calls:
                result = await self._call_tool(call["name"], call["arguments"])
                turn.append(
                    {
                        "role": "tool",
                        "tool_call_id": call["id"],
                        "content": json.dumps(result, default=str),
                    }
                )

        raise AssistantError(f"Assistant did not answer within {self._max_tool_rounds} tool rounds")

    async def _stream_completion(
        self, messages: list[dict[str, Any]]
    ) -> tuple[str, list[dict[str, str]]]:
        kwargs: dict[str, Any] = {}
        if self._tools:
            kwargs["tools"] = [t.openai_schema() for t in self._tools.values()]

        stream = await self._client.chat.completions.create(
            model=self.model, messages=messages, stream=True, **kwargs
        )

        parts: list[str] = []
        calls: dict[int, dict[str, str]] = {}
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                parts.append(delta.content)
                self.emit_delta(delta.content)
            for tc in delta.tool_calls or []:
                slot = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    slot["id"] = tc.id
                if tc.function is not None:
                    slot["name"] += tc.function.name or ""
                    slot["arguments"] += tc.function.arguments or ""

        return "".join(parts), [calls[i] for i in sorted(calls)]

    async def _call_tool(self, name: str, arguments: str) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            return {"error": f"Unknown tool: {name}"}

        logger.info("Assistant tool call %s(%s)", name, arguments)
        try:
            return await tool.run(arguments)
        except Exception as e:
            # Reported back to the model so it can recover or explain.
            logger.warning("Tool %s failed: %s", name, e)
            return {"error": str(e)}

    async def destroy(self) -> None:
        self._listeners.clear()
        self._messages.clear()


class OpenAIAssistantClient:
    """Creates assistant sessions wired to the catalog tools.

    The OpenAI client is built on first use so the server can start without
    provider credentials; session creation then fails and the UI can retry.
    """

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        tmdb: TMDBClient | None = None,
    ) -> None:
        self._client = client
        self._tmdb = tmdb
        self._tools: list[ChatTool] | None = None

    async def create_session(
        self, *, system_message: str, model: str | None = None
    ) -> OpenAIAssistantSession:
        if self._client is None:
            self._client = AsyncOpenAI()
        if self._tools is None:
            if self._tmdb is None:
                self._tmdb = TMDBClient()
            self._tools = build_catalog_tools(self._tmdb)

        return OpenAIAssistantSession(
            self._client,
            model=model or default_model(),
            system_message=system_message,
            tools=self._tools,
        )

    async def aclose(self) -> None:
        if self._tmdb is not None:
            await self._tmdb.aclose()
        if self._client is not None:
            await self._client.close()
