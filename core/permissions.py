"""
core/permissions.py -- Permission value types, permission sets, and the
administrative-override predicate.

Two kinds of permission exist:
  ObjectPermission -- (type, object identifier). Grants READ/UPDATE/DELETE/
                      ADMINISTER on one specific connection, connection group,
                      active connection, or user.
  SystemPermission -- (type). Grants a system-wide right such as CREATE_USER.

Every user owns five permission sets, one per PermissionCategory. A
PermissionSet is the contract; identity sources supply implementations
(storage/permissions.py is the SQL one, the Simple* classes here are the
in-memory ones).

Administrative override: a user holding SystemPermission(ADMINISTER)
implicitly satisfies every object-permission check. That rule lives in
is_administrator() and NOWHERE else -- has_object_permission() and
filter_accessible() both route through it, and call sites must use those
rather than re-checking the system set themselves.

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from core.models import User

# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


class ObjectPermissionType(str, Enum):
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ADMINISTER = "ADMINISTER"


class SystemPermissionType(str, Enum):
    CREATE_CONNECTION = "CREATE_CONNECTION"
    CREATE_CONNECTION_GROUP = "CREATE_CONNECTION_GROUP"
    CREATE_USER = "CREATE_USER"
    ADMINISTER = "ADMINISTER"


class PermissionCategory(str, Enum):
    """Tag for the five permission sets a user owns."""

    CONNECTION = "connection"
    CONNECTION_GROUP = "connection_group"
    ACTIVE_CONNECTION = "active_connection"
    USER = "user"
    SYSTEM = "system"

    @property
    def is_object_category(self) -> bool:
        return self is not PermissionCategory.SYSTEM


@dataclass(frozen=True)
class ObjectPermission:
    type: ObjectPermissionType
    object_identifier: str


@dataclass(frozen=True)
class SystemPermission:
    type: SystemPermissionType


P = TypeVar("P", ObjectPermission, SystemPermission)

# ---------------------------------------------------------------------------
# Permission set contract
# ---------------------------------------------------------------------------


class PermissionSet(ABC, Generic[P]):
    """An unordered set of permissions of one kind, owned by exactly one user.

    add_permissions() of an already-held permission and remove_permissions()
    of an absent one are no-ops, never errors. Implementations may raise
    ForbiddenError if the acting user is not allowed to make the change.
    """

    @abstractmethod
    def get_permissions(self) -> set[P]: ...

    @abstractmethod
    def add_permissions(self, permissions: Iterable[P]) -> None: ...

    @abstractmethod
    def remove_permissions(self, permissions: Iterable[P]) -> None: ...

    def has_permission(self, permission: P) -> bool:
        return permission in self.get_permissions()


class ObjectPermissionSet(PermissionSet[ObjectPermission]):
    def get_accessible_objects(
        self,
        types: Collection[ObjectPermissionType],
        identifiers: Iterable[str],
    ) -> set[str]:
        """Return the identifiers against which at least one of `types` is held.

        Logical OR across types: holding READ alone is enough for a request
        of [READ, UPDATE]. An empty `types` therefore matches nothing -- the
        "no filter requested" case is handled by filter_accessible(), not here.
        """
        held = self.get_permissions()
        return {
            identifier
            for identifier in identifiers
            if any(ObjectPermission(t, identifier) in held for t in types)
        }


class SystemPermissionSet(PermissionSet[SystemPermission]):
    pass


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class _SimplePermissionSetMixin:
    _permissions: set

    def get_permissions(self) -> set:
        return set(self._permissions)

    def add_permissions(self, permissions: Iterable) -> None:
        self._permissions.update(permissions)

    def remove_permissions(self, permissions: Iterable) -> None:
        self._permissions.difference_update(permissions)


class SimpleObjectPermissionSet(_SimplePermissionSetMixin, ObjectPermissionSet):
    def __init__(self, permissions: Iterable[ObjectPermission] = ()) -> None:
        self._permissions: set[ObjectPermission] = set(permissions)


class SimpleSystemPermissionSet(_SimplePermissionSetMixin, SystemPermissionSet):
    def __init__(self, permissions: Iterable[SystemPermission] = ()) -> None:
        self._permissions: set[SystemPermission] = set(permissions)


@dataclass
class PermissionSets:
    """The five permission sets owned by one user, addressable by category."""

    system: SystemPermissionSet = field(default_factory=SimpleSystemPermissionSet)
    connection: ObjectPermissionSet = field(default_factory=SimpleObjectPermissionSet)
    connection_group: ObjectPermissionSet = field(default_factory=SimpleObjectPermissionSet)
    active_connection: ObjectPermissionSet = field(default_factory=SimpleObjectPermissionSet)
    user: ObjectPermissionSet = field(default_factory=SimpleObjectPermissionSet)

    def for_category(self, category: PermissionCategory) -> PermissionSet:
        return getattr(self, category.value)

    def object_set(self, category: PermissionCategory) -> ObjectPermissionSet:
        if not category.is_object_category:
            raise ValueError(f"{category.value!r} is not an object permission category")
        return getattr(self, category.value)


# ---------------------------------------------------------------------------
# Authorization predicates
# ---------------------------------------------------------------------------

_ADMINISTER = SystemPermission(SystemPermissionType.ADMINISTER)


def is_administrator(user: User) -> bool:
    """Return True if `user` holds system ADMINISTER.

    The single home of the administrative override. Do not inline this check.
    """
    return user.permissions.system.has_permission(_ADMINISTER)


def has_system_permission(user: User, type_: SystemPermissionType) -> bool:
    return is_administrator(user) or user.permissions.system.has_permission(SystemPermission(type_))


def has_object_permission(
    user: User,
    category: PermissionCategory,
    type_: ObjectPermissionType,
    identifier: str,
) -> bool:
    """Return True if `user` may exercise `type_` on the object `identifier`."""
    if is_administrator(user):
        return True
    return user.permissions.object_set(category).has_permission(ObjectPermission(type_, identifier))


def filter_accessible(
    user: User,
    category: PermissionCategory,
    types: Collection[ObjectPermissionType] | None,
    identifiers: Iterable[str],
) -> set[str]:
    """Narrow `identifiers` to those `user` holds at least one of `types` against.

    No requested types (None or empty) means no filtering. Administrators
    pass every identifier through without consulting the object-level set.
    """
    identifiers = set(identifiers)
    if not types or is_administrator(user):
        return identifiers
    return user.permissions.object_set(category).get_accessible_objects(types, identifiers)
