"""
core/models.py -- Domain objects stored in an identity source's directories.

User, Connection and ConnectionGroup are plain mutable dataclasses. Callers
edit an instance and pass it back to Directory.update() to persist it.
Authorization lives in the directories and permission sets, not here.

Write-only fields:
  User.password          -- set to change the password, None on every read
  Connection.parameters  -- protocol settings (hostnames, secrets), never read back

Hierarchy: every connection and group has a parent_identifier. Top-level
objects point at ROOT_IDENTIFIER, a virtual group built on demand by
UserContext.root_connection_group().

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from core.permissions import PermissionSets

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Identifier of the virtual group at the top of every connection hierarchy.
# Top-level connections and groups report this as their parent_identifier.
ROOT_IDENTIFIER = "ROOT"


class ConnectionGroupType(str, Enum):
    ORGANIZATIONAL = "ORGANIZATIONAL"
    BALANCING = "BALANCING"


# ---------------------------------------------------------------------------
# Directory entities
# ---------------------------------------------------------------------------


@dataclass
class User:
    identifier: str  # the username
    attributes: dict[str, str] = field(default_factory=dict)
    password: Optional[str] = None  # write-only: set to change, never populated on read
    permissions: PermissionSets = field(default_factory=PermissionSets)


@dataclass
class Connection:
    name: str
    parent_identifier: str = ROOT_IDENTIFIER
    protocol: str = ""
    identifier: Optional[str] = None  # assigned by the directory on add
    parameters: dict[str, str] = field(default_factory=dict)  # write-only, may hold secrets
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class ConnectionGroup:
    name: str
    parent_identifier: Optional[str] = ROOT_IDENTIFIER  # None only for the root group
    type: ConnectionGroupType = ConnectionGroupType.ORGANIZATIONAL
    identifier: Optional[str] = None  # assigned by the directory on add
    attributes: dict[str, str] = field(default_factory=dict)
    # Children, populated by the directory on read. Unfiltered: callers narrow
    # them through the actor's permissions before exposing them.
    connection_identifiers: set[str] = field(default_factory=set)
    connection_group_identifiers: set[str] = field(default_factory=set)

    @property
    def is_root(self) -> bool:
        return self.identifier == ROOT_IDENTIFIER
