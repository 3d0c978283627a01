"""
core/tree.py -- Permission-filtered snapshot of a connection group hierarchy.

build_tree() walks the hierarchy below a root group depth-first and returns
an immutable, fully detached copy: frozen dataclasses, tuple children,
read-only attribute mappings. Nothing in the result refers back to a
directory, so it can be handed straight to a serializer.

Filtering:
  - Sub-groups are structural. Every sub-group the actor's directory returns
    is included, whatever permission types were requested.
  - Connections (the leaves) are narrowed through filter_accessible(): with
    requested types, only connections the actor holds at least one of those
    types against are kept. No requested types means no filtering.

A group reached twice means the stored parent relation contains a cycle.
That is corrupt data, not a client mistake: build_tree() raises
DataIntegrityError instead of walking forever.

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional

from core.context import UserContext
from core.errors import DataIntegrityError
from core.models import Connection, ConnectionGroup, ConnectionGroupType
from core.permissions import ObjectPermissionType, PermissionCategory, filter_accessible

logger = logging.getLogger("gatehouse.tree")


@dataclass(frozen=True)
class ConnectionNode:
    identifier: str
    name: str
    parent_identifier: str
    protocol: str
    attributes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class ConnectionGroupNode:
    identifier: str
    name: str
    parent_identifier: Optional[str]
    type: ConnectionGroupType
    attributes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    child_connections: tuple[ConnectionNode, ...] = ()
    child_connection_groups: tuple[ConnectionGroupNode, ...] = ()


def build_tree(
    context: UserContext,
    root: ConnectionGroup,
    permissions: Collection[ObjectPermissionType] | None = None,
) -> ConnectionGroupNode:
    """Return a detached, filtered copy of the hierarchy rooted at `root`.

    Walks with an explicit stack, so depth is bounded by memory rather than
    the interpreter's recursion limit. Groups are recorded in pre-order;
    nodes are then built in reverse, children before their parent.
    """
    actor = context.self()
    visited: set[str] = set()
    order: list[tuple[ConnectionGroup, tuple[ConnectionNode, ...], list[ConnectionGroup]]] = []

    stack = [root]
    while stack:
        group = stack.pop()
        if group.identifier in visited:
            logger.error("Connection group hierarchy contains a cycle at group %r", group.identifier)
            raise DataIntegrityError(
                f"Connection group {group.identifier!r} appears more than once in its own hierarchy."
            )
        visited.add(group.identifier)

        connection_ids = filter_accessible(
            actor, PermissionCategory.CONNECTION, permissions, group.connection_identifiers
        )
        connections = context.connection_directory.get_all(connection_ids)
        children = sorted(context.connection_group_directory.get_all(group.connection_group_identifiers), key=_sort_key)

        order.append((group, tuple(_copy_connection(c) for c in sorted(connections, key=_sort_key)), children))
        stack.extend(children)

    nodes: dict[str, ConnectionGroupNode] = {}
    for group, connections, children in reversed(order):
        nodes[group.identifier] = ConnectionGroupNode(
            identifier=group.identifier,
            name=group.name,
            parent_identifier=group.parent_identifier,
            type=group.type,
            attributes=MappingProxyType(dict(group.attributes)),
            child_connections=connections,
            child_connection_groups=tuple(nodes[child.identifier] for child in children),
        )
    return nodes[root.identifier]


def _copy_connection(connection: Connection) -> ConnectionNode:
    return ConnectionNode(
        identifier=connection.identifier,
        name=connection.name,
        parent_identifier=connection.parent_identifier,
        protocol=connection.protocol,
        attributes=MappingProxyType(dict(connection.attributes)),
    )


def _sort_key(obj) -> tuple[str, str]:
    return (obj.name, obj.identifier or "")
