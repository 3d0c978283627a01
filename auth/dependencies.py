"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is accepted from two places, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. ?token=<token> query parameter -- browser-driven clients that cannot
     set headers (e.g. download links).

Both converge on the GatehouseSession held by the SessionRegistry in
app.state.registry.

get_session() raises UnauthorizedError (HTTP 401) if the token is missing,
invalid or expired. get_user_context() additionally selects the session's
context for the {source} path segment and raises NotFoundError if the
session has none there.

Layer rule: no imports from api/ or storage/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.retrieval import retrieve_user_context
from auth.session import GatehouseSession
from core.context import UserContext


def get_token(request: Request) -> str | None:
    """Return the presented session token, or None if there is none."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.query_params.get("token") or None


def get_session(request: Request) -> GatehouseSession:
    """Require a live session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: GatehouseSession = Depends(get_session)): ...
    """
    return request.app.state.registry.resolve(get_token(request))


def get_user_context(source: str, session: GatehouseSession = Depends(get_session)) -> UserContext:
    """Require a live session with a context on identity source `source`."""
    return retrieve_user_context(session, source)
