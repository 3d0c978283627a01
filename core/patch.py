"""
core/patch.py -- Batched permission patches.

A patch batch is an ordered list of operations such as

    {"op": "add",    "path": "/systemPermissions",          "value": "CREATE_USER"}
    {"op": "remove", "path": "/connectionPermissions/42",   "value": "READ"}

applied to one target user. The path selects one of the user's five
permission sets (and, for object categories, the target identifier); the
value names the permission type.

Two phases:
  1. Decode. Every operation is validated and routed into a per-category
     PermissionSetPatch accumulator. Any malformed operation (unknown path,
     empty identifier, unparseable type, unsupported verb) raises ClientError
     and the batch is abandoned -- nothing has been mutated yet.
  2. Apply. Each accumulator is applied to the live permission set of its
     category, in _APPLY_ORDER, one category at a time.

Atomicity: phase 1 is all-or-nothing. Phase 2 is NOT transactional across
categories: if applying one category fails (e.g. the store rejects it),
categories applied before it stay committed. apply() logs exactly which
categories were committed before re-raising, so a partial apply is never
silent.

Within one batch, an add and a remove of the same permission cancel each
other: "add X, remove X" leaves the set exactly as it was before the batch.

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Generic

from core.errors import ClientError
from core.permissions import (
    ObjectPermission,
    ObjectPermissionType,
    P,
    PermissionCategory,
    PermissionSet,
    PermissionSets,
    SystemPermission,
    SystemPermissionType,
)

logger = logging.getLogger("gatehouse.patch")

# ---------------------------------------------------------------------------
# Path routing
# ---------------------------------------------------------------------------

# Object-category paths: prefix + target identifier.
_OBJECT_PATH_PREFIXES: dict[str, PermissionCategory] = {
    "/connectionPermissions/": PermissionCategory.CONNECTION,
    "/connectionGroupPermissions/": PermissionCategory.CONNECTION_GROUP,
    "/activeConnectionPermissions/": PermissionCategory.ACTIVE_CONNECTION,
    "/userPermissions/": PermissionCategory.USER,
}

# The system category has one exact path and no identifier.
SYSTEM_PERMISSION_PATH = "/systemPermissions"

_APPLY_ORDER: tuple[PermissionCategory, ...] = (
    PermissionCategory.CONNECTION,
    PermissionCategory.CONNECTION_GROUP,
    PermissionCategory.ACTIVE_CONNECTION,
    PermissionCategory.USER,
    PermissionCategory.SYSTEM,
)

OP_ADD = "add"
OP_REMOVE = "remove"


@dataclass(frozen=True)
class PatchOperation:
    op: str
    path: str
    value: str | None = None


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------


class PermissionSetPatch(Generic[P]):
    """Pending additions and removals for one permission set."""

    def __init__(self) -> None:
        self.added: set[P] = set()
        self.removed: set[P] = set()

    def add_permission(self, permission: P) -> None:
        if permission in self.removed:
            self.removed.discard(permission)
        else:
            self.added.add(permission)

    def remove_permission(self, permission: P) -> None:
        if permission in self.added:
            self.added.discard(permission)
        else:
            self.removed.add(permission)

    def is_empty(self) -> bool:
        return not self.added and not self.removed

    def apply(self, permission_set: PermissionSet[P]) -> None:
        if self.added:
            permission_set.add_permissions(self.added)
        if self.removed:
            permission_set.remove_permissions(self.removed)


# ---------------------------------------------------------------------------
# Decoded batch
# ---------------------------------------------------------------------------


class PermissionPatch:
    """A fully validated batch, one accumulator per category."""

    def __init__(self) -> None:
        self._patches: dict[PermissionCategory, PermissionSetPatch] = {
            category: PermissionSetPatch() for category in _APPLY_ORDER
        }

    def __getitem__(self, category: PermissionCategory) -> PermissionSetPatch:
        return self._patches[category]

    def is_empty(self) -> bool:
        return all(p.is_empty() for p in self._patches.values())

    def apply(self, permissions: PermissionSets) -> None:
        """Apply every non-empty accumulator, category by category.

        Not rolled back on failure -- see the module docstring.
        """
        committed: list[str] = []
        for category in _APPLY_ORDER:
            patch = self._patches[category]
            if patch.is_empty():
                continue
            try:
                patch.apply(permissions.for_category(category))
            except Exception:
                if committed:
                    logger.error(
                        "Permission patch partially applied: %s committed, failed on %s",
                        ", ".join(committed),
                        category.value,
                    )
                raise
            committed.append(category.value)


def decode_patch(operations: Iterable[PatchOperation]) -> PermissionPatch:
    """Validate and route every operation. Raises ClientError on the first bad one."""
    decoded = PermissionPatch()
    for operation in operations:
        category, permission = _decode_permission(operation)
        if operation.op == OP_ADD:
            decoded[category].add_permission(permission)
        elif operation.op == OP_REMOVE:
            decoded[category].remove_permission(permission)
        else:
            raise ClientError(f'Unsupported patch operation: "{operation.op}"')
    return decoded


def apply_patch(operations: Iterable[PatchOperation], permissions: PermissionSets) -> PermissionPatch:
    """Decode `operations` in full, then apply them to `permissions`."""
    operations = list(operations)
    decoded = decode_patch(operations)
    decoded.apply(permissions)
    logger.info("Applied permission patch (%d operation(s))", len(operations))
    return decoded


def _decode_permission(operation: PatchOperation) -> tuple[PermissionCategory, ObjectPermission | SystemPermission]:
    path = operation.path or ""

    if path == SYSTEM_PERMISSION_PATH:
        type_ = _parse_type(SystemPermissionType, operation.value)
        return PermissionCategory.SYSTEM, SystemPermission(type_)

    for prefix, category in _OBJECT_PATH_PREFIXES.items():
        if path.startswith(prefix):
            identifier = path[len(prefix) :]
            if not identifier:
                raise ClientError(f'Patch path "{path}" does not name an object.')
            type_ = _parse_type(ObjectPermissionType, operation.value)
            return category, ObjectPermission(type_, identifier)

    raise ClientError(f'Unsupported patch path: "{path}"')


def _parse_type(enum_cls, value: str | None):
    if value is None:
        raise ClientError("Patch operation is missing a permission type.")
    try:
        return enum_cls(value)
    except ValueError:
        raise ClientError(f'Invalid permission type: "{value}"') from None
