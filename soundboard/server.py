"""Plugin Soundboard server.

Exposes:
  GET    /sounds                 - list the caller's sounds (paged, searchable)
  POST   /sounds                 - upload a clip (multipart ``audio`` + ``name``)
  GET    /sounds/{id}/stream     - the transcoded Ogg/Opus file
  PATCH  /sounds/{id}            - rename
  DELETE /sounds/{id}            - delete
  /admin/...                     - settings and moderation (admin only)
  WS     /ws/plugin              - game plugin gateway
  GET    /health                 - liveness check

Start with::

    python -m soundboard.server
    # or
    uvicorn soundboard.server:app --host 0.0.0.0 --port 3001
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from soundboard import __version__
from soundboard.admin_api import router as admin_router
from soundboard.api import router as sounds_router
from soundboard.cache import CacheBackend, create_cache_backend
from soundboard.config import AUTH_TIMEOUT_SECONDS, REDIS_URL, UPLOAD_DIR
from soundboard.db import init_db
from soundboard.errors import INTERNAL_ERROR, ApiError
from soundboard.plugin.handler import plugin_ws_handler
from soundboard.plugin.notifier import PushNotifier
from soundboard.plugin.registry import ConnectionRegistry
from soundboard.quota import QuotaCache
from soundboard.ratelimit import UploadRateLimiter
from soundboard.settings import SettingsService
from soundboard.sounds import SoundService

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────
# Error handlers
# ──────────────────────────────────────────────────────────────────

def _error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, exc.message),
        headers=exc.headers,
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = ", ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
    )
    return JSONResponse(status_code=400, content=_error_body("INVALID_INPUT", message))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_body(INTERNAL_ERROR, "Internal server error"),
    )


# ──────────────────────────────────────────────────────────────────
# App factory
# ──────────────────────────────────────────────────────────────────

def create_app(
    cache: CacheBackend | None = None,
    upload_root: str | Path = UPLOAD_DIR,
    auth_timeout: float = AUTH_TIMEOUT_SECONDS,
) -> FastAPI:
    """Build the app and the per-process services it shares through ``app.state``."""
    cache = cache if cache is not None else create_cache_backend(REDIS_URL or None)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        init_db()
        if not await cache.ping():
            logger.warning("Cache backend unreachable; quota and rate limits fall back to the database")
        yield
        await app.state.notifier.drain()
        await cache.close()

    app = FastAPI(title="Plugin Soundboard", version=__version__, lifespan=lifespan)

    registry = ConnectionRegistry()
    quota = QuotaCache(cache)
    settings = SettingsService()

    app.state.cache = cache
    app.state.registry = registry
    app.state.quota = quota
    app.state.settings = settings
    app.state.sounds = SoundService(quota, settings, upload_root=upload_root)
    app.state.rate_limiter = UploadRateLimiter(cache)
    app.state.notifier = PushNotifier(registry)
    app.state.auth_timeout = auth_timeout

    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(sounds_router)
    app.include_router(admin_router)
    app.add_api_websocket_route("/ws/plugin", plugin_ws_handler)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "plugins_connected": len(registry),
        }

    return app


app = create_app()


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main():
    import uvicorn
    host = os.environ.get("SOUNDBOARD_HOST", "0.0.0.0")
    port = int(os.environ.get("SOUNDBOARD_PORT", "3001"))
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting Plugin Soundboard server on %s:%d", host, port)
    uvicorn.run("soundboard.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
