"""
storage/permissions.py -- SQL-backed permission sets.

Each set is bound to an owner (the user whose permissions it holds) and an
actor (the user reading or changing them). Reads are unrestricted -- whoever
can reach the owner can see the owner's permissions. Writes are authorized
against the actor through the core predicates:

  system permissions   actor must be an administrator
  object permissions   actor must hold ADMINISTER on every object touched
                       (administrators pass via the override)

All checks for a call run before any row is written, so one rejected
permission leaves the whole call without effect.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from typing import TYPE_CHECKING

from core.errors import ForbiddenError
from core.permissions import (
    ObjectPermission,
    ObjectPermissionSet,
    ObjectPermissionType,
    PermissionCategory,
    PermissionSets,
    SystemPermission,
    SystemPermissionSet,
    has_object_permission,
    is_administrator,
)

if TYPE_CHECKING:
    from core.models import User
    from storage.store import GatehouseStore

_OBJECT_CATEGORIES = tuple(c for c in PermissionCategory if c.is_object_category)


class SQLSystemPermissionSet(SystemPermissionSet):
    def __init__(self, store: GatehouseStore, owner_id: int, actor: User | None = None) -> None:
        self.store = store
        self.owner_id = owner_id
        self.actor = actor

    def get_permissions(self) -> set[SystemPermission]:
        return {SystemPermission(t) for t in self.store.get_system_permissions(self.owner_id)}

    def has_permission(self, permission: SystemPermission) -> bool:
        return self.store.has_system_permission(self.owner_id, permission.type)

    def add_permissions(self, permissions: Iterable[SystemPermission]) -> None:
        permissions = list(permissions)
        self._authorize(permissions)
        self.store.add_system_permissions(self.owner_id, [p.type for p in permissions])

    def remove_permissions(self, permissions: Iterable[SystemPermission]) -> None:
        permissions = list(permissions)
        self._authorize(permissions)
        self.store.remove_system_permissions(self.owner_id, [p.type for p in permissions])

    def _authorize(self, permissions: list[SystemPermission]) -> None:
        if permissions and (self.actor is None or not is_administrator(self.actor)):
            raise ForbiddenError()


class SQLObjectPermissionSet(ObjectPermissionSet):
    def __init__(
        self,
        store: GatehouseStore,
        owner_id: int,
        category: PermissionCategory,
        actor: User | None = None,
    ) -> None:
        self.store = store
        self.owner_id = owner_id
        self.category = category
        self.actor = actor

    def get_permissions(self) -> set[ObjectPermission]:
        return {
            ObjectPermission(t, object_id)
            for t, object_id in self.store.get_object_permissions(self.owner_id, self.category)
        }

    def has_permission(self, permission: ObjectPermission) -> bool:
        return self.store.has_object_permission(
            self.owner_id, self.category, permission.type, permission.object_identifier
        )

    def get_accessible_objects(
        self,
        types: Collection[ObjectPermissionType],
        identifiers: Iterable[str],
    ) -> set[str]:
        return self.store.accessible_objects(self.owner_id, self.category, types, identifiers)

    def add_permissions(self, permissions: Iterable[ObjectPermission]) -> None:
        permissions = list(permissions)
        self._authorize(permissions)
        self.store.add_object_permissions(
            self.owner_id, self.category, [(p.type, p.object_identifier) for p in permissions]
        )

    def remove_permissions(self, permissions: Iterable[ObjectPermission]) -> None:
        permissions = list(permissions)
        self._authorize(permissions)
        self.store.remove_object_permissions(
            self.owner_id, self.category, [(p.type, p.object_identifier) for p in permissions]
        )

    def _authorize(self, permissions: list[ObjectPermission]) -> None:
        if not permissions:
            return
        if self.actor is None:
            raise ForbiddenError()
        for permission in permissions:
            if not has_object_permission(
                self.actor, self.category, ObjectPermissionType.ADMINISTER, permission.object_identifier
            ):
                raise ForbiddenError()


def build_permission_sets(store: GatehouseStore, owner_id: int, actor: User | None) -> PermissionSets:
    """Return the five SQL-backed sets of user `owner_id`, as seen by `actor`.

    For a user's own sets, build the User first and pass it as the actor.
    """
    sets = {c.value: SQLObjectPermissionSet(store, owner_id, c, actor) for c in _OBJECT_CATEGORIES}
    return PermissionSets(system=SQLSystemPermissionSet(store, owner_id, actor), **sets)
