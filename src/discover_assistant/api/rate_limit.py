from __future__ import annotations

import os
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

CHAT_PATH = "/api/ai/chat"


@dataclass
class _Window:
    hits: deque[float]


@dataclass(frozen=True)
class _Bucket:
    name: str
    limit: int
    window_s: float


class SlidingWindowRateLimiter:
    """In-process sliding-window limiter keyed by client IP + bucket name."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._windows: dict[str, _Window] = {}

    def allow(self, *, key: str, limit: int, window_s: float) -> tuple[bool, float]:
        """Record a hit for ``key``.

        Returns ``(allowed, retry_after_s)``; ``retry_after_s`` is 0 when
        allowed, otherwise the time until the oldest hit leaves the window.
        """

        now = time.time()
        cutoff = now - window_s
        with self._lock:
            w = self._windows.setdefault(key, _Window(hits=deque()))
            while w.hits and w.hits[0] < cutoff:
                w.hits.popleft()

            if len(w.hits) >= limit:
                return False, max(0.0, w.hits[0] + window_s - now)

            w.hits.append(now)
            return True, 0.0


def _env_bucket(name: str, default_limit: int, default_window_s: float) -> _Bucket:
    prefix = f"DISCOVER_ASSISTANT_RL_{name.upper()}"
    return _Bucket(
        name=name,
        limit=int(os.environ.get(prefix, str(default_limit))),
        window_s=float(os.environ.get(f"{prefix}_WINDOW_S", str(default_window_s))),
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Global per-client limit plus a tighter one for the chat endpoint.

    Chat requests fan out to TMDB, so they get their own bucket.
    """

    def __init__(self, app, *, limiter: SlidingWindowRateLimiter | None = None) -> None:
        super().__init__(app)
        self._limiter = limiter or SlidingWindowRateLimiter()
        self._global = _env_bucket("global", 120, 60)
        self._chat = _env_bucket("chat", 20, 60)

    def _buckets_for(self, request: Request) -> list[_Bucket]:
        if request.method == "POST" and request.url.path == CHAT_PATH:
            return [self._global, self._chat]
        return [self._global]

    async def dispatch(self, request: Request, call_next) -> Response:
        client_ip = request.client.host if request.client else "unknown"

        for bucket in self._buckets_for(request):
            ok, retry_after = self._limiter.allow(
                key=f"{client_ip}:{bucket.name}", limit=bucket.limit, window_s=bucket.window_s
            )
            if not ok:
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Rate limit exceeded"},
                    headers={"Retry-After": str(max(1, int(retry_after + 0.999)))},
                )

        return await call_next(request)
