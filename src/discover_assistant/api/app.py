from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from discover_assistant.api.rate_limit import RateLimitMiddleware
from discover_assistant.api.routes import router
from discover_assistant.api.session import create_chat_store

logger = logging.getLogger(__name__)


def _parse_csv_env(name: str) -> list[str]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return []

    # Support both comma-separated values and newline-separated values (common in PaaS).
    parts = [p.strip() for p in raw.replace("\n", ",").split(",")]
    return [p for p in parts if p]


def _configure_logging() -> None:
    level_name = os.environ.get("DISCOVER_ASSISTANT_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    pkg_logger = logging.getLogger("discover_assistant")
    pkg_logger.setLevel(level)
    if not logging.getLogger().handlers and not pkg_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        pkg_logger.addHandler(handler)


def create_app() -> FastAPI:
    _configure_logging()
    app = FastAPI(title="Discover Assistant", version="0.1.0")

    app.state.chat_store = create_chat_store()

    # CORS is opt-in; configure allowed origins via env var, e.g.
    #   DISCOVER_ASSISTANT_CORS_ORIGINS=https://your.site,https://admin.your.site
    cors_origins = _parse_csv_env("DISCOVER_ASSISTANT_CORS_ORIGINS")
    if cors_origins:
        # Allow '*' for quick demos; do not allow credentials with wildcard.
        allow_all = "*" in cors_origins
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if allow_all else cors_origins,
            allow_credentials=False,
            allow_methods=["*"] if allow_all else ["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.add_middleware(RateLimitMiddleware)

    # Ensure unexpected errors don't leak internals.
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(router)
    return app


app = create_app()
