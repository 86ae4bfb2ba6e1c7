from __future__ import annotations

import math
import os
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

CHAT_MESSAGE_PATH = "/api/chat/message"


@dataclass(frozen=True)
class Bucket:
    """A named request budget: ``limit`` hits per ``window_s`` per client."""

    name: str
    limit: int
    window_s: float
    applies: Callable[[Request], bool]

    @classmethod
    def from_env(
        cls,
        name: str,
        *,
        limit: int,
        window_s: float,
        applies: Callable[[Request], bool],
    ) -> Bucket:
        prefix = f"MOVIE_TRACKER_RL_{name.upper()}"
        return cls(
            name=name,
            limit=int(os.environ.get(prefix, str(limit))),
            window_s=float(os.environ.get(f"{prefix}_WINDOW_S", str(window_s))),
            applies=applies,
        )


def _is_chat_message(request: Request) -> bool:
    return request.method == "POST" and request.url.path == CHAT_MESSAGE_PATH


def default_buckets() -> list[Bucket]:
    return [
        # The UI re-reads the library after every write; keep this generous.
        Bucket.from_env("global", limit=600, window_s=60, applies=lambda _r: True),
        # Each chat message costs a provider call.
        Bucket.from_env("chat", limit=20, window_s=60, applies=_is_chat_message),
    ]


class SlidingWindowRateLimiter:
    """In-process sliding-window limiter keyed by ``client:bucket``."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = Lock()
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str, *, limit: int, window_s: float) -> float:
        """Record a hit. Returns 0 if allowed, else seconds until a slot frees up."""

        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - window_s:
                hits.popleft()

            if limit <= 0:
                return window_s
            if len(hits) >= limit:
                return max(0.0, hits[0] + window_s - now)

            hits.append(now)
            return 0.0


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        *,
        limiter: SlidingWindowRateLimiter | None = None,
        buckets: list[Bucket] | None = None,
    ) -> None:
        super().__init__(app)
        self._limiter = limiter or SlidingWindowRateLimiter()
        self._buckets = buckets if buckets is not None else default_buckets()

    async def dispatch(self, request: Request, call_next) -> Response:
        client_ip = request.client.host if request.client else "unknown"

        for bucket in self._buckets:
            if not bucket.applies(request):
                continue
            retry_after = self._limiter.hit(
                f"{client_ip}:{bucket.name}", limit=bucket.limit, window_s=bucket.window_s
            )
            if retry_after > 0:
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded"},
                    headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
                )

        return await call_next(request)
