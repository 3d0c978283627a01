"""
tests/helpers.py -- In-memory identity source for unit tests of core/ and auth/.

MemoryProvider holds users with plaintext passwords and offers every known
user a MemoryUserContext over shared SimpleDirectory instances. It has no
visibility rules of its own beyond what a test wires in: pass `visible` to
hide identifiers from a context's directories.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.models import AuthenticatedUser, Credentials
from auth.provider import AuthenticationProvider
from core.context import UserContext
from core.directory import Directory, SimpleDirectory
from core.errors import CredentialsError
from core.models import ROOT_IDENTIFIER, Connection, ConnectionGroup, User
from core.permissions import (
    ObjectPermission,
    ObjectPermissionType,
    PermissionSets,
    SimpleObjectPermissionSet,
    SimpleSystemPermissionSet,
    SystemPermission,
    SystemPermissionType,
)


def make_user(
    username: str,
    system: Iterable[SystemPermissionType] = (),
    connections: Iterable[tuple[ObjectPermissionType, str]] = (),
    groups: Iterable[tuple[ObjectPermissionType, str]] = (),
    users: Iterable[tuple[ObjectPermissionType, str]] = (),
) -> User:
    return User(
        identifier=username,
        permissions=PermissionSets(
            system=SimpleSystemPermissionSet(SystemPermission(t) for t in system),
            connection=SimpleObjectPermissionSet(ObjectPermission(t, i) for t, i in connections),
            connection_group=SimpleObjectPermissionSet(ObjectPermission(t, i) for t, i in groups),
            user=SimpleObjectPermissionSet(ObjectPermission(t, i) for t, i in users),
        ),
    )


class HidingDirectory(Directory):
    """Wraps a directory and hides every identifier not in `visible`."""

    def __init__(self, inner: Directory, visible: set[str]) -> None:
        self.inner = inner
        self.visible = visible

    def get(self, identifier):
        return self.inner.get(identifier) if identifier in self.visible else None

    def get_all(self, identifiers):
        return self.inner.get_all(i for i in identifiers if i in self.visible)

    def get_identifiers(self):
        return self.inner.get_identifiers() & self.visible

    def add(self, obj):
        self.inner.add(obj)

    def update(self, obj):
        self.inner.update(obj)

    def remove(self, identifier):
        self.inner.remove(identifier)


class MemoryProvider(AuthenticationProvider):
    def __init__(self, identifier: str = "memory", passwords: dict[str, str] | None = None) -> None:
        self._identifier = identifier
        self.passwords = dict(passwords or {})
        self.users: SimpleDirectory[User] = SimpleDirectory()
        self.connections: SimpleDirectory[Connection] = SimpleDirectory(assign_identifiers=True)
        self.groups: SimpleDirectory[ConnectionGroup] = SimpleDirectory(assign_identifiers=True)
        self.authenticate_calls: list[Credentials] = []

    @property
    def identifier(self) -> str:
        return self._identifier

    def add_user(self, user: User, password: str) -> User:
        self.users.add(user)
        self.passwords[user.identifier] = password
        return user

    def authenticate_user(self, credentials: Credentials) -> AuthenticatedUser | None:
        self.authenticate_calls.append(credentials)
        if credentials.username not in self.passwords:
            return None
        if self.passwords[credentials.username] != credentials.password:
            raise CredentialsError()
        return AuthenticatedUser(identifier=credentials.username, auth_provider=self, credentials=credentials)

    def get_user_context(self, authenticated_user: AuthenticatedUser) -> UserContext | None:
        user = self.users.get(authenticated_user.identifier)
        return MemoryUserContext(self, user) if user is not None else None


class MemoryUserContext(UserContext):
    def __init__(
        self,
        provider: MemoryProvider,
        user: User,
        visible_groups: set[str] | None = None,
        visible_users: set[str] | None = None,
    ) -> None:
        self._provider = provider
        self._user = user
        self.visible_groups = visible_groups
        self.visible_users = visible_users
        self.self_calls = 0

    @property
    def auth_provider(self) -> MemoryProvider:
        return self._provider

    def self(self) -> User:
        self.self_calls += 1
        return self._user

    @property
    def user_directory(self) -> Directory[User]:
        if self.visible_users is None:
            return self._provider.users
        return HidingDirectory(self._provider.users, self.visible_users)

    @property
    def connection_directory(self) -> Directory[Connection]:
        return self._provider.connections

    @property
    def connection_group_directory(self) -> Directory[ConnectionGroup]:
        if self.visible_groups is None:
            return self._provider.groups
        return HidingDirectory(self._provider.groups, self.visible_groups)

    def root_connection_group(self) -> ConnectionGroup:
        groups = self._provider.groups
        connections = self._provider.connections
        return ConnectionGroup(
            name=ROOT_IDENTIFIER,
            identifier=ROOT_IDENTIFIER,
            parent_identifier=None,
            connection_identifiers={
                c.identifier
                for c in connections.get_all(connections.get_identifiers())
                if c.parent_identifier == ROOT_IDENTIFIER
            },
            connection_group_identifiers={
                g.identifier for g in groups.get_all(groups.get_identifiers()) if g.parent_identifier == ROOT_IDENTIFIER
            },
        )
