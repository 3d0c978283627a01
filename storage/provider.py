"""
storage/provider.py -- The bundled SQL identity source.

DatabaseAuthenticationProvider authenticates against the users table and
offers a DatabaseUserContext to every user it knows, including users
authenticated by some other provider under the same username.

Security:
  Unknown user, disabled account and wrong password all take one bcrypt
  round and raise the same CredentialsError [C1].

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.models import AuthenticatedUser, Credentials
from auth.provider import AuthenticationProvider
from auth.tokens import check_password
from core.context import UserContext
from core.errors import CredentialsError, UnauthorizedError
from core.models import ROOT_IDENTIFIER, ConnectionGroup, User
from storage.directories import ConnectionDirectory, ConnectionGroupDirectory, UserDirectory
from storage.permissions import build_permission_sets
from storage.store import GatehouseStore

logger = logging.getLogger("gatehouse.storage.provider")

DEFAULT_IDENTIFIER = "database"


class DatabaseAuthenticationProvider(AuthenticationProvider):
    def __init__(self, store: GatehouseStore, identifier: str = DEFAULT_IDENTIFIER) -> None:
        self.store = store
        self._identifier = identifier

    @property
    def identifier(self) -> str:
        return self._identifier

    def authenticate_user(self, credentials: Credentials) -> AuthenticatedUser | None:
        record = self.store.get_user(credentials.username) if credentials.username else None
        hashed = record.password_hash if record is not None and not record.disabled else None
        if not check_password(credentials.password, hashed):
            if record is not None and record.disabled:
                logger.info('Login refused for disabled account "%s"', record.username)
            raise CredentialsError()
        return AuthenticatedUser(identifier=record.username, auth_provider=self, credentials=credentials)

    def get_user_context(self, authenticated_user: AuthenticatedUser) -> UserContext | None:
        if self.store.get_user(authenticated_user.identifier) is None:
            return None
        return DatabaseUserContext(self, self.store, authenticated_user.identifier)


class DatabaseUserContext(UserContext):
    """A user's view of the database. Every call reads current state.

    Nothing is cached: permission changes and deletions made by other
    sessions take effect on this session's next request.
    """

    def __init__(self, provider: DatabaseAuthenticationProvider, store: GatehouseStore, username: str) -> None:
        self._provider = provider
        self.store = store
        self.username = username

    @property
    def auth_provider(self) -> DatabaseAuthenticationProvider:
        return self._provider

    def self(self) -> User:
        return self._actor()[0]

    @property
    def user_directory(self) -> UserDirectory:
        return UserDirectory(self.store, *self._actor())

    @property
    def connection_directory(self) -> ConnectionDirectory:
        return ConnectionDirectory(self.store, *self._actor())

    @property
    def connection_group_directory(self) -> ConnectionGroupDirectory:
        return ConnectionGroupDirectory(self.store, *self._actor())

    def root_connection_group(self) -> ConnectionGroup:
        return ConnectionGroup(
            name=ROOT_IDENTIFIER,
            identifier=ROOT_IDENTIFIER,
            parent_identifier=None,
            connection_identifiers=self.store.child_connection_ids(ROOT_IDENTIFIER),
            connection_group_identifiers=self.store.child_group_ids(ROOT_IDENTIFIER),
        )

    def _actor(self) -> tuple[User, int]:
        record = self.store.get_user(self.username)
        if record is None:
            # Deleted while the session was live
            raise UnauthorizedError()
        user = User(identifier=record.username, attributes=dict(record.attributes))
        user.permissions = build_permission_sets(self.store, record.id, user)
        return user, record.id
