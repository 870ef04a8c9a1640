"""
auth/dependencies.py -- FastAPI Depends() helpers for the session endpoints.

The AppContext lives on app.state.ctx (set by the lifespan in api/main.py).
These helpers are the only place route code reaches into app.state, so a test
can swap the whole context by replacing that one attribute.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.context import AppContext
from auth.session import SessionService


def get_context(request: Request) -> AppContext:
    """Return the AppContext built at startup."""
    return request.app.state.ctx


def get_session_service(request: Request) -> SessionService:
    """Return a SessionService bound to the application context.

    Use as a FastAPI dependency:
        @router.post("/auth/validate")
        async def route(service: SessionService = Depends(get_session_service)): ...
    """
    return SessionService(get_context(request))
