"""
Global middleware and exception handlers.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from utils.errors import AuthExpired, LocalEntityNotFound, NoActiveWorkspace, SyncFailed

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach any app-level middleware."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response


def register_error_handlers(app: FastAPI) -> None:
    """Map engine errors onto HTTP responses."""

    @app.exception_handler(NoActiveWorkspace)
    async def no_workspace(request: Request, exc: NoActiveWorkspace):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(AuthExpired)
    async def auth_expired(request: Request, exc: AuthExpired):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc), "action": "reauthorize"},
        )

    @app.exception_handler(LocalEntityNotFound)
    async def local_not_found(request: Request, exc: LocalEntityNotFound):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(SyncFailed)
    async def sync_failed(request: Request, exc: SyncFailed):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.reason)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": exc.reason, "last_error": exc.last_error},
        )
