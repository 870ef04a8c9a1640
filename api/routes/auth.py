"""
api/routes/auth.py -- Yggdrasil authentication REST endpoints.

Routes:
  GET  /auth               -- server info document (public key, metadata)
  POST /auth/authenticate  -- credentials -> token pair; 200 or 401 structured
  POST /auth/refresh       -- rotate access token; 200, 401 empty, 401 structured
  POST /auth/validate      -- check token pair; 204 or 403 empty
  POST /auth/signout       -- revoke all of a user's pairs; 204 or 401 structured
  POST /auth/invalidate    -- revoke by client token; 204

Rejections are raised by SessionService as SessionError and turned into the
protocol's status/body by the exception handler in api/main.py. Routes only
translate request models in and result objects out.

Deadline:
  SessionService is synchronous (scrypt and the SQLAlchemy engine both block),
  so each call runs in a worker thread under anyio.fail_after with
  Settings.request_timeout_seconds. On timeout the client gets a 503. A
  store mutation that is still running finishes or rolls back as one
  transaction; the client never observes half of it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from anyio import fail_after, to_thread
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse

from api.models import (
    AuthenticateRequest,
    RefreshRequest,
    ServerInfoResponse,
    SessionResponse,
    SignoutRequest,
    TokenPairRequest,
)
from auth.context import AppContext
from auth.dependencies import get_context, get_session_service
from auth.session import SessionService
from core.config import APP_VERSION

# Yggdrasil API revision advertised to clients.
SPECIFICATION_VERSION = "2.13.34"

router = APIRouter()

T = TypeVar("T")


async def _run_with_deadline(service: SessionService, call: Callable[[], T]) -> T:
    timeout = service.ctx.settings.request_timeout_seconds
    try:
        with fail_after(timeout):
            # abandon_on_cancel: the response goes out at the deadline instead
            # of waiting for the worker thread to finish.
            return await to_thread.run_sync(call, abandon_on_cancel=True)
    except TimeoutError as exc:
        raise HTTPException(status_code=503, detail="Request timed out.") from exc


def _no_store(resp: Response) -> Response:
    # Token-bearing responses must never be cached by an intermediary.
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Server info
# ---------------------------------------------------------------------------


@router.get("/auth", response_model=ServerInfoResponse)
async def server_info(ctx: AppContext = Depends(get_context)) -> JSONResponse:
    """Return server metadata and the public half of the signing key. Read-only."""
    info = ServerInfoResponse(
        application_author="Lodestone",
        application_description=ctx.settings.application_description,
        specification_version=SPECIFICATION_VERSION,
        implementation_version=APP_VERSION,
        application_owner=ctx.settings.application_owner,
        public_key=ctx.public_key,
    )
    return JSONResponse(content=info.model_dump(by_alias=True))


# ---------------------------------------------------------------------------
# Session protocol
# ---------------------------------------------------------------------------


@router.post("/auth/authenticate", response_model=SessionResponse, response_model_exclude_none=True)
async def authenticate(
    body: AuthenticateRequest,
    service: SessionService = Depends(get_session_service),
) -> Response:
    """Exchange username/password for a token pair.

    selectedProfile/availableProfiles are present only when the request
    carries an agent; user only when requestUser is true. clientToken is
    always present, including when the server generated it.
    """
    tokens = await _run_with_deadline(
        service,
        lambda: service.authenticate(
            body.username,
            body.password,
            client_token=body.client_token,
            agent=body.agent.to_agent() if body.agent is not None else None,
            request_user=body.request_user,
        ),
    )
    return _no_store(JSONResponse(content=SessionResponse.from_tokens(tokens).to_wire()))


@router.post("/auth/refresh", response_model=SessionResponse, response_model_exclude_none=True)
async def refresh(
    body: RefreshRequest,
    service: SessionService = Depends(get_session_service),
) -> Response:
    """Rotate the access token for a client token. Profiles are always included."""
    tokens = await _run_with_deadline(
        service,
        lambda: service.refresh(body.access_token, body.client_token, request_user=body.request_user),
    )
    return _no_store(JSONResponse(content=SessionResponse.from_tokens(tokens).to_wire()))


@router.post("/auth/validate", status_code=204)
async def validate(
    body: TokenPairRequest,
    service: SessionService = Depends(get_session_service),
) -> Response:
    """204 if the token pair is current and valid; 403 with no body otherwise."""
    await _run_with_deadline(service, lambda: service.validate(body.access_token, body.client_token))
    return Response(status_code=204)


@router.post("/auth/signout", status_code=204)
async def signout(
    body: SignoutRequest,
    service: SessionService = Depends(get_session_service),
) -> Response:
    """Revoke every token pair of the account after checking its credentials."""
    await _run_with_deadline(service, lambda: service.signout(body.username, body.password))
    return Response(status_code=204)


@router.post("/auth/invalidate", status_code=204)
async def invalidate(
    body: TokenPairRequest,
    service: SessionService = Depends(get_session_service),
) -> Response:
    """Revoke the session behind a client token. Unknown client tokens are ignored."""
    await _run_with_deadline(service, lambda: service.invalidate(body.access_token, body.client_token))
    return Response(status_code=204)
