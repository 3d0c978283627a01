"""Unit tests for core/patch.py -- the permission patch engine.

Covers:
- every path prefix routes to its category; /systemPermissions to SYSTEM
- malformed batches (bad op, path, value, empty identifier) raise ClientError
  and leave every permission set untouched
- add then remove of one permission cancels out within a batch
- categories apply in fixed order; a failure leaves earlier ones committed
  and is logged before re-raising
"""

from __future__ import annotations

import logging

import pytest

from core.errors import ClientError, ForbiddenError
from core.patch import PatchOperation, apply_patch, decode_patch
from core.permissions import (
    ObjectPermission,
    ObjectPermissionType,
    PermissionCategory,
    PermissionSets,
    SimpleObjectPermissionSet,
    SystemPermission,
    SystemPermissionType,
)

READ = ObjectPermissionType.READ
UPDATE = ObjectPermissionType.UPDATE


def _snapshot(sets: PermissionSets) -> dict:
    return {c: sets.for_category(c).get_permissions() for c in PermissionCategory}


class _RejectingSet(SimpleObjectPermissionSet):
    def add_permissions(self, permissions) -> None:
        raise ForbiddenError()


class TestDecode:
    @pytest.mark.parametrize(
        "path, category",
        [
            ("/connectionPermissions/12", PermissionCategory.CONNECTION),
            ("/connectionGroupPermissions/12", PermissionCategory.CONNECTION_GROUP),
            ("/activeConnectionPermissions/12", PermissionCategory.ACTIVE_CONNECTION),
            ("/userPermissions/12", PermissionCategory.USER),
        ],
    )
    def test_object_paths_route_to_category(self, path, category) -> None:
        patch = decode_patch([PatchOperation("add", path, "READ")])
        assert patch[category].added == {ObjectPermission(READ, "12")}

    def test_identifier_may_contain_slashes(self) -> None:
        patch = decode_patch([PatchOperation("add", "/userPermissions/dept/alice", "READ")])
        assert patch[PermissionCategory.USER].added == {ObjectPermission(READ, "dept/alice")}

    def test_system_path(self) -> None:
        patch = decode_patch([PatchOperation("remove", "/systemPermissions", "CREATE_USER")])
        assert patch[PermissionCategory.SYSTEM].removed == {SystemPermission(SystemPermissionType.CREATE_USER)}

    @pytest.mark.parametrize(
        "operation",
        [
            PatchOperation("replace", "/connectionPermissions/1", "READ"),
            PatchOperation("add", "/bogusPermissions/1", "READ"),
            PatchOperation("add", "/connectionPermissions/", "READ"),
            PatchOperation("add", "/connectionPermissions/1", "FLY"),
            PatchOperation("add", "/connectionPermissions/1", None),
            PatchOperation("add", "/systemPermissions", "READ"),
            PatchOperation("add", "/systemPermissions/extra", "ADMINISTER"),
        ],
    )
    def test_malformed_operation_is_client_error(self, operation) -> None:
        with pytest.raises(ClientError):
            decode_patch([operation])


class TestApply:
    def test_bad_batch_mutates_nothing(self) -> None:
        """A malformed op anywhere in the batch aborts before any category is touched."""
        sets = PermissionSets()
        sets.connection.add_permissions([ObjectPermission(READ, "1")])
        before = _snapshot(sets)
        batch = [
            PatchOperation("add", "/connectionPermissions/2", "READ"),
            PatchOperation("add", "/systemPermissions", "ADMINISTER"),
            PatchOperation("add", "/connectionPermissions/3", "NOT_A_TYPE"),
        ]
        with pytest.raises(ClientError):
            apply_patch(batch, sets)
        assert _snapshot(sets) == before

    def test_add_then_remove_restores_pre_batch_state(self) -> None:
        for held in (False, True):
            sets = PermissionSets()
            if held:
                sets.user.add_permissions([ObjectPermission(UPDATE, "bob")])
            before = _snapshot(sets)
            apply_patch(
                [
                    PatchOperation("add", "/userPermissions/bob", "UPDATE"),
                    PatchOperation("remove", "/userPermissions/bob", "UPDATE"),
                ],
                sets,
            )
            assert _snapshot(sets) == before, f"held={held}"

    def test_mixed_batch(self) -> None:
        """Grant READ on group 7, revoke CREATE_USER, and grant READ on connection 3."""
        sets = PermissionSets()
        sets.system.add_permissions([SystemPermission(SystemPermissionType.CREATE_USER)])
        apply_patch(
            [
                PatchOperation("add", "/connectionGroupPermissions/7", "READ"),
                PatchOperation("remove", "/systemPermissions", "CREATE_USER"),
                PatchOperation("add", "/connectionPermissions/3", "READ"),
            ],
            sets,
        )
        assert sets.connection_group.get_permissions() == {ObjectPermission(READ, "7")}
        assert sets.connection.get_permissions() == {ObjectPermission(READ, "3")}
        assert sets.system.get_permissions() == set()

    def test_grant_admin_and_revoke_connection_read(self) -> None:
        """[add /systemPermissions ADMINISTER, remove /connectionPermissions/42 READ]
        changes the system and connection sets and nothing else."""
        sets = PermissionSets()
        sets.connection.add_permissions([ObjectPermission(READ, "42"), ObjectPermission(READ, "43")])
        sets.connection_group.add_permissions([ObjectPermission(READ, "7")])
        sets.user.add_permissions([ObjectPermission(UPDATE, "bob")])
        before = _snapshot(sets)

        apply_patch(
            [
                PatchOperation("add", "/systemPermissions", "ADMINISTER"),
                PatchOperation("remove", "/connectionPermissions/42", "READ"),
            ],
            sets,
        )

        assert sets.system.get_permissions() == {SystemPermission(SystemPermissionType.ADMINISTER)}
        assert sets.connection.get_permissions() == {ObjectPermission(READ, "43")}
        after = _snapshot(sets)
        untouched = set(PermissionCategory) - {PermissionCategory.SYSTEM, PermissionCategory.CONNECTION}
        for category in untouched:
            assert after[category] == before[category], f"{category} changed: {before[category]} -> {after[category]}"

    def test_failure_leaves_earlier_categories_committed(self, caplog) -> None:
        sets = PermissionSets(user=_RejectingSet())
        batch = [
            PatchOperation("add", "/userPermissions/bob", "READ"),
            PatchOperation("add", "/connectionPermissions/1", "READ"),
        ]
        with caplog.at_level(logging.ERROR, logger="gatehouse.patch"):
            with pytest.raises(ForbiddenError):
                apply_patch(batch, sets)
        # connection applies before user
        assert sets.connection.get_permissions() == {ObjectPermission(READ, "1")}
        assert "partially applied" in caplog.text
        assert "connection" in caplog.text

    def test_empty_batch_is_noop(self) -> None:
        sets = PermissionSets()
        patch = apply_patch([], sets)
        assert patch.is_empty()
        assert all(not v for v in _snapshot(sets).values())
