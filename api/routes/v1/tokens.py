"""
api/routes/v1/tokens.py -- Login and logout.

Routes:
  POST   /api/v1/tokens          -- authenticate; returns a session token
  DELETE /api/v1/tokens/{token}  -- destroy the session behind `token`

Security:
  [H2] POST /tokens is rate-limited per client address (settings.login_rate_limit).
  [C1] Wrong username, wrong password and disabled account all produce the
       same 401 bad_credentials response.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, TokenResponse
from auth.models import Credentials
from auth.session import SessionRegistry
from core.config import get_settings
from core.errors import NotFoundError

# Auth policy:
# - POST   /api/v1/tokens:          public -- this is how a session is obtained
# - DELETE /api/v1/tokens/{token}:  public -- possession of the token is the credential
router = APIRouter()


@limiter.limit(get_settings().login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/tokens", response_model=TokenResponse)
def create_token(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate against every configured identity source and open a session."""
    registry: SessionRegistry = request.app.state.registry
    credentials = Credentials(
        username=body.username,
        password=body.password,
        remote_address=request.client.host if request.client else None,
        request=request,
    )
    token, session = registry.create(credentials)

    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            auth_token=token,
            username=session.username,
            data_source=session.authenticated_user.auth_provider.identifier,
            available_data_sources=sorted(session.user_contexts),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.delete("/tokens/{token}", status_code=204)
def delete_token(request: Request, token: str) -> Response:
    """Log out. 404 if the token names no live session."""
    registry: SessionRegistry = request.app.state.registry
    if not registry.destroy(token):
        raise NotFoundError("No such token.")
    return Response(status_code=204)
