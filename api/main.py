"""
api/main.py -- FastAPI application entry point for kvauth.

A small host application around KVStoreProvider: it authenticates HTTP Basic
credentials against the key-value store and exposes user/role lookups.

Run with:  uvicorn api.main:app --reload

Lifespan builds the provider from settings on startup and closes every store
connection on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.passwords import BcryptHasher
from auth.provider import KVStoreProvider
from core.config import get_settings
from store.connections import close_all

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("kvauth.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the provider on startup; close store connections on shutdown."""
    settings = get_settings()
    app.state.provider = KVStoreProvider(
        config=settings.auth_provider,
        hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
    )
    logger.info(
        "Auth provider initialized (connection=%s, roles=%s)",
        settings.auth_provider.connection_name or "default",
        "disabled" if settings.auth_provider.disable_roles else "enabled",
    )

    yield

    close_all()
    logger.info("kvauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="kvauth API",
    description="Credential and role lookups against a key-value store.",
    version=_VERSION,
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One access-log line per request: method, path, status, latency, client."""
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Errors
#
# Every non-2xx response body is {"error": {"code", "message", "detail"?}}.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None, headers=None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException in the error envelope, keeping its headers (WWW-Authenticate on 401).

    The auth dependencies raise with detail={"code", "message"}; that dict
    becomes the error object as-is.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and answer 500. Store and provider errors never reach the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Report liveness, version, and whether the provider's store answers a ping. No auth."""
    try:
        store_ok = request.app.state.provider.store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: store unreachable")
        store_ok = False
    return HealthResponse(
        version=_VERSION,
        components={"app": "ok", "store": "ok" if store_ok else "error"},
    )
