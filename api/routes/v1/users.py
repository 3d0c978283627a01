"""
api/routes/v1/users.py -- User management endpoints.

Routes (all under /api/v1/data/{source}):
  GET    /users                         -- list visible users (?permission= filter)
  POST   /users                         -- create user
  GET    /users/{username}              -- one user
  PUT    /users/{username}              -- update attributes / password of another user
  DELETE /users/{username}              -- delete user
  PUT    /users/{username}/password     -- change a password, re-verifying the old one
  GET    /users/{username}/permissions  -- a user's permissions
  PATCH  /users/{username}/permissions  -- add / remove permissions

Handlers are sync `def`: every call goes through the SQL identity source,
and FastAPI runs sync handlers in its thread pool.

Authorization is not decided here. The context's directories and
permission sets enforce it and raise; these handlers translate payloads and
call them.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    PasswordChangeRequest,
    PatchOperationRequest,
    PermissionsResponse,
    UserRequest,
    UserResponse,
)
from auth.dependencies import get_user_context
from auth.retrieval import retrieve_user, update_password
from auth.tokens import generate_password
from core.context import UserContext
from core.errors import ClientError, ForbiddenError, NotFoundError
from core.models import User
from core.patch import PatchOperation, apply_patch
from core.permissions import ObjectPermissionType, PermissionCategory, filter_accessible

# Auth policy: every route requires a live session with a context on {source}
# (get_user_context). Per-object checks happen in the directories.
router = APIRouter()


@router.get("/data/{source}/users", response_model=list[UserResponse])
def list_users(
    context: UserContext = Depends(get_user_context),
    permission: Optional[list[ObjectPermissionType]] = Query(default=None),
) -> list[UserResponse]:
    """List users, optionally only those the caller holds one of `permission` on."""
    directory = context.user_directory
    identifiers = filter_accessible(context.self(), PermissionCategory.USER, permission, directory.get_identifiers())
    users = sorted(directory.get_all(identifiers), key=lambda u: u.identifier)
    return [UserResponse.from_user(u) for u in users]


@router.post("/data/{source}/users", response_model=UserResponse, status_code=201)
def create_user(
    body: Optional[UserRequest] = None,
    context: UserContext = Depends(get_user_context),
) -> UserResponse:
    """Create a user. A random password is assigned if none is given."""
    if body is None:
        raise ClientError("User JSON must be submitted when creating users.")
    user = User(
        identifier=body.username or "",
        attributes=dict(body.attributes),
        password=body.password if body.password is not None else generate_password(),
    )
    context.user_directory.add(user)
    return UserResponse.from_user(user)


@router.get("/data/{source}/users/{username}", response_model=UserResponse)
def get_user(username: str, context: UserContext = Depends(get_user_context)) -> UserResponse:
    return UserResponse.from_user(retrieve_user(context, username))


@router.put("/data/{source}/users/{username}", status_code=204)
def update_user(
    username: str,
    body: Optional[UserRequest] = None,
    context: UserContext = Depends(get_user_context),
) -> Response:
    """Update another user's attributes and, if given, password.

    Users change their own password through /password, which re-verifies
    the old one; this route refuses to modify the caller.
    """
    if body is None:
        raise ClientError("User JSON must be submitted when updating users.")
    if body.username != username:
        raise ClientError("Username in path does not match username provided JSON data.")
    if context.self().identifier == username:
        raise ForbiddenError()

    user = retrieve_user(context, username)
    if body.password is not None:
        user.password = body.password
    user.attributes = dict(body.attributes)
    context.user_directory.update(user)
    return Response(status_code=204)


@router.delete("/data/{source}/users/{username}", status_code=204)
def delete_user(username: str, context: UserContext = Depends(get_user_context)) -> Response:
    directory = context.user_directory
    if directory.get(username) is None:
        raise NotFoundError(f'No such user: "{username}"')
    directory.remove(username)
    return Response(status_code=204)


@router.put("/data/{source}/users/{username}/password", status_code=204)
def change_password(
    request: Request,
    username: str,
    body: Optional[PasswordChangeRequest] = None,
    context: UserContext = Depends(get_user_context),
) -> Response:
    """Change `username`'s password. The old password must verify first."""
    if body is None:
        raise ClientError("Password update JSON must be submitted.")
    update_password(
        context,
        username,
        body.old_password,
        body.new_password,
        remote_address=request.client.host if request.client else None,
        request=request,
    )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/data/{source}/users/{username}/permissions", response_model=PermissionsResponse)
def get_permissions(username: str, context: UserContext = Depends(get_user_context)) -> PermissionsResponse:
    """Return `username`'s permissions. One's own never requires READ on oneself."""
    return PermissionsResponse.from_permission_sets(retrieve_user(context, username).permissions)


@router.patch("/data/{source}/users/{username}/permissions", status_code=204)
def patch_permissions(
    username: str,
    body: Optional[list[PatchOperationRequest]] = None,
    context: UserContext = Depends(get_user_context),
) -> Response:
    """Apply a JSON-patch style batch of permission changes to `username`.

    The whole batch is validated before anything is written; a malformed
    operation anywhere returns 400 with no change made.
    """
    if body is None:
        raise ClientError("A list of patch operations must be submitted.")
    user = retrieve_user(context, username)
    operations = [PatchOperation(op=o.op, path=o.path, value=o.value) for o in body]
    apply_patch(operations, user.permissions)
    return Response(status_code=204)
