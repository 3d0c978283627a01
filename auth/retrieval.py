"""
auth/retrieval.py -- Resolving identifiers to objects, and the re-verified
password change.

Every route that names an object by identifier resolves it through this
module. _retrieve() is the single place that turns "directory returned
None" into NotFoundError, and it produces the same error whether the object
does not exist or merely is not visible to the actor. Do not add a second
path that tells the two apart -- that would let a caller enumerate
identifiers they cannot read.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from auth.models import Credentials
from auth.session import GatehouseSession
from core.context import UserContext
from core.directory import Directory
from core.errors import CredentialsError, ForbiddenError, NotFoundError
from core.models import ROOT_IDENTIFIER, Connection, ConnectionGroup, User

logger = logging.getLogger("gatehouse.auth.retrieval")

T = TypeVar("T")


def retrieve_user_context(session: GatehouseSession, source_id: str) -> UserContext:
    """Return the session's context for identity source `source_id`."""
    context = session.get_user_context(source_id)
    if context is None:
        raise NotFoundError(f'No such data source: "{source_id}"')
    return context


def _retrieve(directory: Directory[T], identifier: str, kind: str) -> T:
    obj = directory.get(identifier)
    if obj is None:
        raise NotFoundError(f'No such {kind}: "{identifier}"')
    return obj


def retrieve_user(context: UserContext, username: str) -> User:
    """Resolve `username`. The actor's own username always resolves to self()."""
    self_user = context.self()
    if self_user.identifier == username:
        return self_user
    return _retrieve(context.user_directory, username, "user")


def retrieve_connection(context: UserContext, identifier: str) -> Connection:
    return _retrieve(context.connection_directory, identifier, "connection")


def retrieve_connection_group(context: UserContext, identifier: str) -> ConnectionGroup:
    """Resolve a group. ROOT_IDENTIFIER resolves to the context's root group."""
    if identifier == ROOT_IDENTIFIER:
        return context.root_connection_group()
    return _retrieve(context.connection_group_directory, identifier, "connection group")


def update_password(
    context: UserContext,
    username: str,
    old_password: str,
    new_password: str,
    remote_address: str | None = None,
    request: Any = None,
) -> None:
    """Change `username`'s password after re-verifying the old one.

    The old password is checked by the context's own identity source, with
    freshly built credentials carrying the current request's transport
    context. Any failure -- rejected credentials, unknown user, a provider
    that declines -- is reported as the same generic ForbiddenError, so the
    caller learns nothing about which usernames or passwords are valid. The
    new password is written only after verification succeeds.
    """
    credentials = Credentials(
        username=username,
        password=old_password,
        remote_address=remote_address,
        request=request,
    )

    try:
        authenticated_user = context.auth_provider.authenticate_user(credentials)
    except CredentialsError:
        authenticated_user = None

    if authenticated_user is None:
        logger.warning(
            'Password change for user "%s" from %s rejected: old password not verified.',
            username,
            remote_address or "unknown",
        )
        raise ForbiddenError()

    user = retrieve_user(context, username)
    user.password = new_password
    context.user_directory.update(user)
    logger.info('Password changed for user "%s"', username)
