"""
storage/directories.py -- SQL-backed directories viewed through one actor.

Every directory here is constructed for a single acting user and applies
that user's permissions on each call:

  visibility   READ on the object (or administrator). Anything else behaves
               exactly as if it did not exist: get() returns None, get_all()
               and get_identifiers() omit it, update()/remove() raise
               NotFoundError.
  add          requires the matching CREATE_* system permission. The creator
               is granted READ, UPDATE, DELETE and ADMINISTER on the new
               object.
  update       requires UPDATE on the object.
  remove       requires DELETE on the object.

Connections and groups must be placed under ROOT or under a group the actor
can see, and names are unique among the children of one parent.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.tokens import hash_password
from core.directory import Directory
from core.errors import ClientError, ConflictError, ForbiddenError, NotFoundError
from core.models import ROOT_IDENTIFIER, Connection, ConnectionGroup, User
from core.permissions import (
    ObjectPermissionType,
    PermissionCategory,
    SystemPermissionType,
    filter_accessible,
    has_object_permission,
    has_system_permission,
)
from storage.models import UserRecord
from storage.permissions import build_permission_sets
from storage.store import GatehouseStore

logger = logging.getLogger("gatehouse.storage.directories")

_READ = [ObjectPermissionType.READ]

# Granted to the creator of any new object.
_CREATOR_PERMISSIONS = (
    ObjectPermissionType.READ,
    ObjectPermissionType.UPDATE,
    ObjectPermissionType.DELETE,
    ObjectPermissionType.ADMINISTER,
)


class _ActorDirectory:
    """Shared plumbing: the store, the actor, and the actor's permission checks."""

    category: PermissionCategory

    def __init__(self, store: GatehouseStore, actor: User, actor_id: int) -> None:
        self.store = store
        self.actor = actor
        self.actor_id = actor_id

    def _visible(self, identifiers: Iterable[str]) -> set[str]:
        return filter_accessible(self.actor, self.category, _READ, identifiers)

    def _can(self, type_: ObjectPermissionType, identifier: str) -> bool:
        return has_object_permission(self.actor, self.category, type_, identifier)

    def _require_system(self, type_: SystemPermissionType) -> None:
        if not has_system_permission(self.actor, type_):
            raise ForbiddenError()

    def _require_visible(self, identifier: str | None, kind: str) -> None:
        if not identifier or not self._can(ObjectPermissionType.READ, identifier):
            raise NotFoundError(f'No such {kind}: "{identifier}"')

    def _grant_creator(self, identifier: str) -> None:
        self.store.add_object_permissions(
            self.actor_id, self.category, [(t, identifier) for t in _CREATOR_PERMISSIONS]
        )

    def _require_parent(self, parent_identifier: str | None) -> None:
        """The parent must be ROOT or a connection group the actor can see."""
        if parent_identifier is None:
            raise ClientError("A parent connection group is required.")
        if parent_identifier == ROOT_IDENTIFIER:
            return
        visible = has_object_permission(
            self.actor, PermissionCategory.CONNECTION_GROUP, ObjectPermissionType.READ, parent_identifier
        )
        if not visible or self.store.get_group(parent_identifier) is None:
            raise NotFoundError(f'No such connection group: "{parent_identifier}"')


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserDirectory(_ActorDirectory, Directory[User]):
    category = PermissionCategory.USER

    def get(self, identifier: str) -> User | None:
        if not self._visible([identifier]):
            return None
        record = self.store.get_user(identifier)
        return self._to_user(record) if record is not None else None

    def get_all(self, identifiers: Iterable[str]) -> list[User]:
        return [self._to_user(r) for r in self.store.get_users(self._visible(identifiers))]

    def get_identifiers(self) -> set[str]:
        return self._visible(self.store.list_usernames())

    def add(self, obj: User) -> None:
        self._require_system(SystemPermissionType.CREATE_USER)
        if not obj.identifier:
            raise ClientError("The username cannot be blank.")
        if self.store.get_user(obj.identifier) is not None:
            raise ConflictError(f'User "{obj.identifier}" already exists.')

        user_id = self.store.create_user(
            UserRecord(
                username=obj.identifier,
                password_hash=hash_password(obj.password) if obj.password else None,
                attributes=dict(obj.attributes),
            )
        )
        self._grant_creator(obj.identifier)
        self.store.add_object_permissions(user_id, self.category, [(ObjectPermissionType.READ, obj.identifier)])
        obj.password = None
        logger.info('User "%s" created by "%s"', obj.identifier, self.actor.identifier)

    def update(self, obj: User) -> None:
        is_self = obj.identifier == self.actor.identifier
        if not is_self:
            self._require_visible(obj.identifier, "user")
        if self.store.get_user(obj.identifier) is None:
            raise NotFoundError(f'No such user: "{obj.identifier}"')
        if not is_self and not self._can(ObjectPermissionType.UPDATE, obj.identifier):
            raise ForbiddenError()

        fields: dict = {"attributes": dict(obj.attributes)}
        if obj.password:
            fields["password_hash"] = hash_password(obj.password)
        self.store.update_user(obj.identifier, **fields)
        obj.password = None

    def remove(self, identifier: str) -> None:
        self._require_visible(identifier, "user")
        if not self._can(ObjectPermissionType.DELETE, identifier):
            raise ForbiddenError()
        if not self.store.delete_user(identifier):
            raise NotFoundError(f'No such user: "{identifier}"')
        logger.info('User "%s" deleted by "%s"', identifier, self.actor.identifier)

    def _to_user(self, record: UserRecord) -> User:
        user = User(identifier=record.username, attributes=dict(record.attributes))
        user.permissions = build_permission_sets(self.store, record.id, self.actor)
        return user


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


class ConnectionDirectory(_ActorDirectory, Directory[Connection]):
    category = PermissionCategory.CONNECTION

    def get(self, identifier: str) -> Connection | None:
        if not self._visible([identifier]):
            return None
        return self.store.get_connection(identifier)

    def get_all(self, identifiers: Iterable[str]) -> list[Connection]:
        return self.store.get_connections(self._visible(identifiers))

    def get_identifiers(self) -> set[str]:
        return self._visible(self.store.list_connection_ids())

    def add(self, obj: Connection) -> None:
        self._require_system(SystemPermissionType.CREATE_CONNECTION)
        self._validate(obj)
        obj.identifier = self.store.create_connection(obj)
        self._grant_creator(obj.identifier)
        obj.parameters = {}
        logger.info('Connection "%s" (%s) created by "%s"', obj.name, obj.identifier, self.actor.identifier)

    def update(self, obj: Connection) -> None:
        self._require_visible(obj.identifier, "connection")
        if self.store.get_connection(obj.identifier) is None:
            raise NotFoundError(f'No such connection: "{obj.identifier}"')
        if not self._can(ObjectPermissionType.UPDATE, obj.identifier):
            raise ForbiddenError()
        self._validate(obj)
        self.store.update_connection(obj)
        obj.parameters = {}

    def remove(self, identifier: str) -> None:
        self._require_visible(identifier, "connection")
        if not self._can(ObjectPermissionType.DELETE, identifier):
            raise ForbiddenError()
        if not self.store.delete_connection(identifier):
            raise NotFoundError(f'No such connection: "{identifier}"')
        logger.info('Connection %s deleted by "%s"', identifier, self.actor.identifier)

    def _validate(self, obj: Connection) -> None:
        if not obj.name:
            raise ClientError("Connection names must not be blank.")
        if not obj.protocol:
            raise ClientError("A connection protocol is required.")
        self._require_parent(obj.parent_identifier)
        if self.store.connection_name_taken(obj.parent_identifier, obj.name, exclude=obj.identifier):
            raise ConflictError(f'A connection named "{obj.name}" already exists in this group.')


# ---------------------------------------------------------------------------
# Connection groups
# ---------------------------------------------------------------------------


class ConnectionGroupDirectory(_ActorDirectory, Directory[ConnectionGroup]):
    category = PermissionCategory.CONNECTION_GROUP

    def get(self, identifier: str) -> ConnectionGroup | None:
        if not self._visible([identifier]):
            return None
        return self.store.get_group(identifier)

    def get_all(self, identifiers: Iterable[str]) -> list[ConnectionGroup]:
        return self.store.get_groups(self._visible(identifiers))

    def get_identifiers(self) -> set[str]:
        return self._visible(self.store.list_group_ids())

    def add(self, obj: ConnectionGroup) -> None:
        self._require_system(SystemPermissionType.CREATE_CONNECTION_GROUP)
        self._validate(obj)
        obj.identifier = self.store.create_group(obj)
        self._grant_creator(obj.identifier)
        logger.info('Connection group "%s" (%s) created by "%s"', obj.name, obj.identifier, self.actor.identifier)

    def update(self, obj: ConnectionGroup) -> None:
        self._require_visible(obj.identifier, "connection group")
        if self.store.get_group(obj.identifier) is None:
            raise NotFoundError(f'No such connection group: "{obj.identifier}"')
        if not self._can(ObjectPermissionType.UPDATE, obj.identifier):
            raise ForbiddenError()
        self._validate(obj)
        if obj.parent_identifier == obj.identifier or obj.identifier in self.store.group_ancestors(
            obj.parent_identifier
        ):
            raise ClientError("A connection group cannot be moved into itself or one of its descendants.")
        self.store.update_group(obj)

    def remove(self, identifier: str) -> None:
        self._require_visible(identifier, "connection group")
        if not self._can(ObjectPermissionType.DELETE, identifier):
            raise ForbiddenError()
        if not self.store.delete_group(identifier):
            raise NotFoundError(f'No such connection group: "{identifier}"')

    def _validate(self, obj: ConnectionGroup) -> None:
        if not obj.name:
            raise ClientError("Connection group names must not be blank.")
        if obj.parent_identifier == obj.identifier:
            raise ClientError("A connection group cannot be moved into itself or one of its descendants.")
        self._require_parent(obj.parent_identifier)
        if self.store.group_name_taken(obj.parent_identifier, obj.name, exclude=obj.identifier):
            raise ConflictError(f'A connection group named "{obj.name}" already exists in this group.')
