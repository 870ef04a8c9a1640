"""
api/main.py -- FastAPI application entry point for Lodestone.

Exposes the Yggdrasil session protocol (auth/session.py) over HTTP.

Run with:      uvicorn asgi:app --reload

Lifespan builds the AppContext (store + settings + signing key) on startup
and closes it on shutdown. Route handlers get it through the dependencies in
auth/dependencies.py -- there is no module-level store.

Error responses follow the Yggdrasil conventions rather than a house
envelope: protocol rejections carry either no body or
{"error": ..., "errorMessage": ...}, and everything else is mapped onto that
same shape so launchers can parse every failure the same way.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from anyio import to_thread
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import HealthResponse, YggdrasilError
from api.routes.auth import router as auth_router
from auth.context import AppContext
from auth.errors import SessionError
from core.config import APP_VERSION, get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lodestone.api")

# Exception names for non-protocol HTTP errors, in the Yggdrasil style.
_HTTP_ERROR_NAMES: dict[int, str] = {
    400: "IllegalArgumentException",
    404: "NotFoundException",
    405: "MethodNotAllowedException",
    503: "ServiceUnavailableException",
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the application context on startup; close it on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("Lodestone starting up")
    settings = get_settings()
    app.state.ctx = AppContext.from_settings(settings)

    yield

    app.state.ctx.close()
    logger.info("Lodestone shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Lodestone",
    description="Yggdrasil-compatible authentication server.",
    version=APP_VERSION,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time around call_next gives latency per response.
# Request bodies are never logged -- they carry passwords and tokens.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
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


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(SessionError)
async def session_error_handler(request: Request, exc: SessionError) -> Response:
    """Return the protocol-prescribed status and body for a rejection.

    Empty-bodied rejections (unknown client token, failed validate) must stay
    empty: launchers branch on the presence of a body.
    """
    body = exc.body()
    if body is None:
        return Response(status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=body)


def _describe_errors(exc: RequestValidationError) -> str:
    # Location and message only; the "input" entry would echo passwords back.
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 IllegalArgumentException when the request body fails validation."""
    return JSONResponse(
        status_code=400,
        content=YggdrasilError(
            error="IllegalArgumentException",
            error_message=f"Request validation failed: {_describe_errors(exc)}",
        ).model_dump(by_alias=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a Yggdrasil-shaped body for routing errors and deadline timeouts."""
    return JSONResponse(
        status_code=exc.status_code,
        content=YggdrasilError(
            error=_HTTP_ERROR_NAMES.get(exc.status_code, f"HTTP{exc.status_code}"),
            error_message=str(exc.detail),
        ).model_dump(by_alias=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for store failures, corrupt identifiers, and bugs.

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=YggdrasilError(
            error="InternalServerError",
            error_message="An unexpected error occurred.",
        ).model_dump(by_alias=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database answers."""
    try:
        # ping() blocks on the pool and the driver; keep it off the event loop.
        db_status = "ok" if await to_thread.run_sync(request.app.state.ctx.store.ping) else "error"
    except Exception:
        logger.warning("Health check: database ping failed", exc_info=True)
        db_status = "error"
    return HealthResponse(version=APP_VERSION, components={"app": "ok", "database": db_status})
