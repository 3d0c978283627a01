"""Unit tests for core/tree.py -- permission-filtered hierarchy snapshots.

Covers:
- leaf connections filtered by requested permission types (OR), unfiltered without
- sub-groups are structural: included whatever the requested types
- administrators see every connection
- the snapshot is detached and immutable
- a cycle in the parent relation raises DataIntegrityError instead of looping
- hierarchies deeper than the interpreter recursion limit build without error
"""

from __future__ import annotations

import dataclasses
import logging

import pytest

from core.errors import DataIntegrityError
from core.models import Connection, ConnectionGroup
from core.permissions import ObjectPermissionType, SystemPermissionType
from core.tree import build_tree
from helpers import MemoryProvider, MemoryUserContext, make_user

READ = ObjectPermissionType.READ
UPDATE = ObjectPermissionType.UPDATE


@pytest.fixture
def provider() -> MemoryProvider:
    """G (group 1) holds connections R1 and R2 and an empty sub-group H (group 2)."""
    p = MemoryProvider()
    r1 = Connection(name="R1", parent_identifier="1", protocol="rdp", attributes={"max-connections": "2"})
    r2 = Connection(name="R2", parent_identifier="1", protocol="ssh")
    p.connections.add(r1)
    p.connections.add(r2)
    g = ConnectionGroup(name="G", connection_identifiers={r1.identifier, r2.identifier})
    p.groups.add(g)
    h = ConnectionGroup(name="H", parent_identifier=g.identifier)
    p.groups.add(h)
    g.connection_group_identifiers = {h.identifier}
    return p


def _context(provider: MemoryProvider, **grants) -> MemoryUserContext:
    return MemoryUserContext(provider, make_user("alice", **grants))


class TestFiltering:
    def test_read_filter_keeps_only_readable_connections(self, provider) -> None:
        """Holding READ on R1 only: the tree of G shows R1 and not R2."""
        context = _context(provider, connections=[(READ, "1")])
        tree = build_tree(context, provider.groups.get("1"), [READ])
        assert [c.name for c in tree.child_connections] == ["R1"]

    def test_any_requested_type_is_enough(self, provider) -> None:
        context = _context(provider, connections=[(READ, "1"), (UPDATE, "2")])
        tree = build_tree(context, provider.groups.get("1"), [READ, UPDATE])
        assert [c.name for c in tree.child_connections] == ["R1", "R2"]

    def test_no_requested_types_means_no_filtering(self, provider) -> None:
        context = _context(provider)
        tree = build_tree(context, provider.groups.get("1"))
        assert [c.name for c in tree.child_connections] == ["R1", "R2"]

    def test_admin_sees_every_connection(self, provider) -> None:
        context = _context(provider, system=[SystemPermissionType.ADMINISTER])
        tree = build_tree(context, provider.groups.get("1"), [UPDATE])
        assert len(tree.child_connections) == 2

    def test_sub_groups_are_structural(self, provider) -> None:
        """H is included even though the actor holds nothing on it."""
        context = _context(provider, connections=[(READ, "1")])
        tree = build_tree(context, provider.groups.get("1"), [READ])
        assert [g.name for g in tree.child_connection_groups] == ["H"]
        assert tree.child_connection_groups[0].child_connections == ()

    def test_groups_hidden_by_directory_are_omitted(self, provider) -> None:
        context = MemoryUserContext(provider, make_user("alice"), visible_groups={"1"})
        tree = build_tree(context, provider.groups.get("1"))
        assert tree.child_connection_groups == ()

    def test_actor_resolved_once(self, provider) -> None:
        context = _context(provider)
        build_tree(context, provider.groups.get("1"), [READ])
        assert context.self_calls == 1


class TestSnapshot:
    def test_snapshot_is_immutable(self, provider) -> None:
        tree = build_tree(_context(provider), provider.groups.get("1"))
        with pytest.raises(dataclasses.FrozenInstanceError):
            tree.name = "renamed"
        with pytest.raises(TypeError):
            tree.child_connections[0].attributes["max-connections"] = "99"

    def test_snapshot_is_detached(self, provider) -> None:
        tree = build_tree(_context(provider), provider.groups.get("1"))
        provider.connections.get("1").attributes["max-connections"] = "99"
        assert tree.child_connections[0].attributes["max-connections"] == "2"

    def test_root_group(self, provider) -> None:
        top = Connection(name="top", protocol="vnc")
        provider.connections.add(top)
        context = _context(provider)
        tree = build_tree(context, context.root_connection_group())
        assert tree.identifier == "ROOT"
        assert tree.parent_identifier is None
        assert [c.name for c in tree.child_connections] == ["top"]
        assert [g.name for g in tree.child_connection_groups] == ["G"]


class TestCycles:
    def test_cycle_raises_data_integrity_error(self, caplog) -> None:
        p = MemoryProvider()
        a = ConnectionGroup(name="A")
        b = ConnectionGroup(name="B")
        p.groups.add(a)
        p.groups.add(b)
        b.parent_identifier = a.identifier
        a.parent_identifier = b.identifier
        a.connection_group_identifiers = {b.identifier}
        b.connection_group_identifiers = {a.identifier}

        with caplog.at_level(logging.ERROR, logger="gatehouse.tree"):
            with pytest.raises(DataIntegrityError):
                build_tree(_context(p), a)
        assert "cycle" in caplog.text

    def test_self_parent_raises(self) -> None:
        p = MemoryProvider()
        a = ConnectionGroup(name="A")
        p.groups.add(a)
        a.connection_group_identifiers = {a.identifier}
        with pytest.raises(DataIntegrityError):
            build_tree(_context(p), a)


class TestDepth:
    def test_deep_chain_builds_without_recursion_error(self) -> None:
        """A 1200-level chain exceeds the default recursion limit; it is still valid data."""
        p = MemoryProvider()
        chain: list[ConnectionGroup] = []
        for level in range(1200):
            group = ConnectionGroup(name=f"level-{level}")
            if chain:
                group.parent_identifier = chain[-1].identifier
            p.groups.add(group)
            if chain:
                chain[-1].connection_group_identifiers = {group.identifier}
            chain.append(group)
        leaf = Connection(name="deepest", protocol="ssh", parent_identifier=chain[-1].identifier)
        p.connections.add(leaf)
        chain[-1].connection_identifiers = {leaf.identifier}

        tree = build_tree(_context(p, system=[SystemPermissionType.ADMINISTER]), chain[0])

        depth, node = 1, tree
        while node.child_connection_groups:
            assert len(node.child_connection_groups) == 1, f"Level {depth} should have exactly one sub-group"
            node = node.child_connection_groups[0]
            depth += 1
        assert depth == 1200
        assert node.name == "level-1199"
        assert [c.name for c in node.child_connections] == ["deepest"]
