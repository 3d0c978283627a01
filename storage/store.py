"""
storage/store.py -- SQLAlchemy Core persistence for users, connections,
connection groups, and permissions.

Pattern: Repository + Data Mapper (same shape as the other stores).
GatehouseStore is the repository; the _row_to_* functions are the mappers.
Nothing outside storage/ touches SQL, and nothing in this module makes
authorization decisions -- storage/directories.py and
storage/permissions.py decide who may call what.

Identifiers:
  Users are keyed by username. Connections and groups have integer row ids,
  exposed to the rest of the system as strings. A top-level connection or
  group has parent_id NULL, exposed as core.models.ROOT_IDENTIFIER.
  A non-numeric identifier simply matches nothing.

Permissions:
  One table per kind. object_permissions carries a category column
  (core.permissions.PermissionCategory values) so the five object-permission
  sets share one table and one code path.

Security:
  All queries use bound parameters. No f-strings in SQL.

Usage:
    store = GatehouseStore()                               # SQLite default
    store = GatehouseStore("postgresql://user:pw@host/db") # PostgreSQL
    user_id = store.create_user(UserRecord(username="alice", password_hash=...))
    store.add_system_permissions(user_id, [SystemPermissionType.ADMINISTER])
    store.close()
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    func,
    select,
    tuple_,
)
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.models import ROOT_IDENTIFIER, Connection, ConnectionGroup, ConnectionGroupType
from core.permissions import ObjectPermissionType, PermissionCategory, SystemPermissionType
from storage.models import UserRecord

logger = logging.getLogger("gatehouse.storage")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(128), nullable=False, unique=True),
    Column("password_hash", Text),
    Column("attributes", Text),  # JSON object serialized as text
    Column("disabled", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_groups = Table(
    "connection_groups",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(128), nullable=False),
    Column("parent_id", Integer),  # NULL = child of ROOT
    Column("type", String(16), nullable=False, server_default="ORGANIZATIONAL"),
    Column("attributes", Text),
    # Note: (parent_id, name) uniqueness is enforced in code, not SQL.
    # SQLite treats two NULL parent_ids as distinct, which would allow
    # duplicate names at the top level.
)

_connections = Table(
    "connections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(128), nullable=False),
    Column("parent_id", Integer),  # NULL = child of ROOT
    Column("protocol", String(32), nullable=False),
    Column("parameters", Text),  # JSON object; may contain secrets
    Column("attributes", Text),
)

_system_permissions = Table(
    "system_permissions",
    metadata,
    Column("user_id", Integer, nullable=False),
    Column("permission", String(32), nullable=False),
    PrimaryKeyConstraint("user_id", "permission"),
)

_object_permissions = Table(
    "object_permissions",
    metadata,
    Column("user_id", Integer, nullable=False),
    Column("category", String(32), nullable=False),
    Column("permission", String(16), nullable=False),
    Column("object_id", String(128), nullable=False),
    PrimaryKeyConstraint("user_id", "category", "permission", "object_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_id(identifier: Optional[str]) -> Optional[int]:
    """Convert a string identifier to a row id. None if it cannot name a row."""
    if identifier is None or not identifier.isdigit():
        return None
    return int(identifier)


def _parent_id(parent_identifier: Optional[str]) -> Optional[int]:
    if parent_identifier in (None, ROOT_IDENTIFIER):
        return None
    return _parse_id(parent_identifier)


def _parent_identifier(parent_id: Optional[int]) -> str:
    return ROOT_IDENTIFIER if parent_id is None else str(parent_id)


def _dumps(mapping: Optional[dict]) -> str:
    return json.dumps(mapping or {}, sort_keys=True)


def _loads(raw: Optional[str]) -> dict[str, str]:
    return json.loads(raw) if raw else {}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class GatehouseStore:
    """Repository for users, connections, groups and their permissions."""

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, record: UserRecord) -> int:
        """Insert a user and return its row id.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=record.username,
                    password_hash=record.password_hash,
                    attributes=_dumps(record.attributes),
                    disabled=1 if record.disabled else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_user(self, username: str) -> UserRecord | None:
        """Look up a user by exact username (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_users(self, usernames: Iterable[str]) -> list[UserRecord]:
        usernames = list(usernames)
        if not usernames:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.username.in_(usernames)).order_by(_users.c.username)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_usernames(self) -> set[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.username)).fetchall()
        return {r.username for r in rows}

    def update_user(self, username: str, **fields) -> bool:
        """Update mutable fields: attributes, password_hash, disabled.

        Returns True if a row was updated, False if the username was not found.
        """
        if "attributes" in fields:
            fields["attributes"] = _dumps(fields["attributes"])
        if "disabled" in fields:
            fields["disabled"] = 1 if fields["disabled"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.username == username).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, username: str) -> bool:
        """Delete a user, every permission it holds, and every permission granted on it."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.username == username)).fetchone()
            if row is None:
                return False
            conn.execute(_system_permissions.delete().where(_system_permissions.c.user_id == row.id))
            conn.execute(_object_permissions.delete().where(_object_permissions.c.user_id == row.id))
            self._delete_object_references(conn, PermissionCategory.USER, [username])
            conn.execute(_users.delete().where(_users.c.id == row.id))
            conn.commit()
        return True

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def create_connection(self, connection: Connection) -> str:
        with self.engine.connect() as conn:
            result = conn.execute(
                _connections.insert().values(
                    name=connection.name,
                    parent_id=_parent_id(connection.parent_identifier),
                    protocol=connection.protocol,
                    parameters=_dumps(connection.parameters),
                    attributes=_dumps(connection.attributes),
                )
            )
            conn.commit()
            return str(result.inserted_primary_key[0])

    def get_connection(self, identifier: str) -> Connection | None:
        row_id = _parse_id(identifier)
        if row_id is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_connections.select().where(_connections.c.id == row_id)).fetchone()
        return _row_to_connection(row) if row is not None else None

    def get_connections(self, identifiers: Iterable[str]) -> list[Connection]:
        row_ids = [i for i in (_parse_id(x) for x in identifiers) if i is not None]
        if not row_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_connections.select().where(_connections.c.id.in_(row_ids))).fetchall()
        return [_row_to_connection(r) for r in rows]

    def list_connection_ids(self) -> set[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_connections.c.id)).fetchall()
        return {str(r.id) for r in rows}

    def update_connection(self, connection: Connection) -> bool:
        row_id = _parse_id(connection.identifier)
        if row_id is None:
            return False
        values = {
            "name": connection.name,
            "parent_id": _parent_id(connection.parent_identifier),
            "protocol": connection.protocol,
            "attributes": _dumps(connection.attributes),
        }
        # Parameters are write-only and absent on read; keep the stored ones
        # unless the caller supplied replacements.
        if connection.parameters:
            values["parameters"] = _dumps(connection.parameters)
        with self.engine.connect() as conn:
            result = conn.execute(_connections.update().where(_connections.c.id == row_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def delete_connection(self, identifier: str) -> bool:
        row_id = _parse_id(identifier)
        if row_id is None:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_connections.delete().where(_connections.c.id == row_id))
            self._delete_object_references(conn, PermissionCategory.CONNECTION, [identifier])
            conn.commit()
        return result.rowcount > 0

    def connection_name_taken(self, parent_identifier: str, name: str, exclude: Optional[str] = None) -> bool:
        return self._name_taken(_connections, parent_identifier, name, exclude)

    # ------------------------------------------------------------------
    # Connection groups
    # ------------------------------------------------------------------

    def create_group(self, group: ConnectionGroup) -> str:
        with self.engine.connect() as conn:
            result = conn.execute(
                _groups.insert().values(
                    name=group.name,
                    parent_id=_parent_id(group.parent_identifier),
                    type=group.type.value,
                    attributes=_dumps(group.attributes),
                )
            )
            conn.commit()
            return str(result.inserted_primary_key[0])

    def get_group(self, identifier: str) -> ConnectionGroup | None:
        groups = self.get_groups([identifier])
        return groups[0] if groups else None

    def get_groups(self, identifiers: Iterable[str]) -> list[ConnectionGroup]:
        row_ids = [i for i in (_parse_id(x) for x in identifiers) if i is not None]
        if not row_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_groups.select().where(_groups.c.id.in_(row_ids))).fetchall()
            return [self._row_to_group(conn, r) for r in rows]

    def list_group_ids(self) -> set[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_groups.c.id)).fetchall()
        return {str(r.id) for r in rows}

    def child_connection_ids(self, parent_identifier: str) -> set[str]:
        with self.engine.connect() as conn:
            return self._child_ids(conn, _connections, _parent_id(parent_identifier))

    def child_group_ids(self, parent_identifier: str) -> set[str]:
        with self.engine.connect() as conn:
            return self._child_ids(conn, _groups, _parent_id(parent_identifier))

    def group_ancestors(self, identifier: str) -> list[str]:
        """Return the ids of every group above `identifier`, nearest first.

        Stops (without raising) if the stored parent chain loops, returning
        the chain up to the repeat -- callers use this to refuse moves, and
        core.tree reports the corruption itself.
        """
        chain: list[str] = []
        seen: set[int] = set()
        current = _parse_id(identifier)
        with self.engine.connect() as conn:
            while current is not None and current not in seen:
                seen.add(current)
                row = conn.execute(select(_groups.c.parent_id).where(_groups.c.id == current)).fetchone()
                if row is None or row.parent_id is None:
                    break
                current = row.parent_id
                chain.append(str(current))
        return chain

    def update_group(self, group: ConnectionGroup) -> bool:
        row_id = _parse_id(group.identifier)
        if row_id is None:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(
                _groups.update()
                .where(_groups.c.id == row_id)
                .values(
                    name=group.name,
                    parent_id=_parent_id(group.parent_identifier),
                    type=group.type.value,
                    attributes=_dumps(group.attributes),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_group(self, identifier: str) -> bool:
        """Delete a group with all descendant groups and connections, and every
        permission granted on any of them."""
        row_id = _parse_id(identifier)
        if row_id is None:
            return False
        with self.engine.connect() as conn:
            if conn.execute(select(_groups.c.id).where(_groups.c.id == row_id)).fetchone() is None:
                return False

            group_ids: list[int] = []
            frontier = [row_id]
            while frontier:
                group_ids.extend(frontier)
                rows = conn.execute(
                    select(_groups.c.id).where(_groups.c.parent_id.in_(frontier) & _groups.c.id.not_in(group_ids))
                ).fetchall()
                frontier = [r.id for r in rows]

            connection_rows = conn.execute(
                select(_connections.c.id).where(_connections.c.parent_id.in_(group_ids))
            ).fetchall()
            connection_ids = [r.id for r in connection_rows]

            conn.execute(_connections.delete().where(_connections.c.id.in_(connection_ids)))
            conn.execute(_groups.delete().where(_groups.c.id.in_(group_ids)))
            self._delete_object_references(conn, PermissionCategory.CONNECTION, [str(i) for i in connection_ids])
            self._delete_object_references(conn, PermissionCategory.CONNECTION_GROUP, [str(i) for i in group_ids])
            conn.commit()
        logger.info("Deleted connection group %s (%d group(s), %d connection(s))", identifier, len(group_ids), len(connection_ids))
        return True

    def group_name_taken(self, parent_identifier: str, name: str, exclude: Optional[str] = None) -> bool:
        return self._name_taken(_groups, parent_identifier, name, exclude)

    # ------------------------------------------------------------------
    # System permissions
    # ------------------------------------------------------------------

    def get_system_permissions(self, user_id: int) -> set[SystemPermissionType]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_system_permissions.c.permission).where(_system_permissions.c.user_id == user_id)
            ).fetchall()
        return {SystemPermissionType(r.permission) for r in rows}

    def has_system_permission(self, user_id: int, type_: SystemPermissionType) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_system_permissions.c.user_id).where(
                    (_system_permissions.c.user_id == user_id) & (_system_permissions.c.permission == type_.value)
                )
            ).fetchone()
        return row is not None

    def add_system_permissions(self, user_id: int, types: Iterable[SystemPermissionType]) -> None:
        wanted = set(types) - self.get_system_permissions(user_id)
        if not wanted:
            return
        with self.engine.connect() as conn:
            conn.execute(
                _system_permissions.insert(),
                [{"user_id": user_id, "permission": t.value} for t in sorted(wanted, key=lambda t: t.value)],
            )
            conn.commit()

    def remove_system_permissions(self, user_id: int, types: Iterable[SystemPermissionType]) -> None:
        values = [t.value for t in types]
        if not values:
            return
        with self.engine.connect() as conn:
            conn.execute(
                _system_permissions.delete().where(
                    (_system_permissions.c.user_id == user_id) & (_system_permissions.c.permission.in_(values))
                )
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Object permissions
    # ------------------------------------------------------------------

    def get_object_permissions(
        self, user_id: int, category: PermissionCategory
    ) -> set[tuple[ObjectPermissionType, str]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_object_permissions.c.permission, _object_permissions.c.object_id).where(
                    (_object_permissions.c.user_id == user_id) & (_object_permissions.c.category == category.value)
                )
            ).fetchall()
        return {(ObjectPermissionType(r.permission), r.object_id) for r in rows}

    def has_object_permission(
        self, user_id: int, category: PermissionCategory, type_: ObjectPermissionType, object_id: str
    ) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_object_permissions.c.user_id).where(
                    (_object_permissions.c.user_id == user_id)
                    & (_object_permissions.c.category == category.value)
                    & (_object_permissions.c.permission == type_.value)
                    & (_object_permissions.c.object_id == object_id)
                )
            ).fetchone()
        return row is not None

    def accessible_objects(
        self,
        user_id: int,
        category: PermissionCategory,
        types: Iterable[ObjectPermissionType],
        object_ids: Iterable[str],
    ) -> set[str]:
        """Return the subset of object_ids against which any of `types` is held."""
        type_values = [t.value for t in types]
        object_ids = list(object_ids)
        if not type_values or not object_ids:
            return set()
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_object_permissions.c.object_id)
                .where(
                    (_object_permissions.c.user_id == user_id)
                    & (_object_permissions.c.category == category.value)
                    & (_object_permissions.c.permission.in_(type_values))
                    & (_object_permissions.c.object_id.in_(object_ids))
                )
                .distinct()
            ).fetchall()
        return {r.object_id for r in rows}

    def add_object_permissions(
        self, user_id: int, category: PermissionCategory, permissions: Iterable[tuple[ObjectPermissionType, str]]
    ) -> None:
        wanted = set(permissions) - self.get_object_permissions(user_id, category)
        if not wanted:
            return
        with self.engine.connect() as conn:
            conn.execute(
                _object_permissions.insert(),
                [
                    {"user_id": user_id, "category": category.value, "permission": t.value, "object_id": object_id}
                    for t, object_id in sorted(wanted, key=lambda p: (p[1], p[0].value))
                ],
            )
            conn.commit()

    def remove_object_permissions(
        self, user_id: int, category: PermissionCategory, permissions: Iterable[tuple[ObjectPermissionType, str]]
    ) -> None:
        pairs = [(t.value, object_id) for t, object_id in permissions]
        if not pairs:
            return
        with self.engine.connect() as conn:
            conn.execute(
                _object_permissions.delete().where(
                    and_(
                        _object_permissions.c.user_id == user_id,
                        _object_permissions.c.category == category.value,
                        tuple_(_object_permissions.c.permission, _object_permissions.c.object_id).in_(pairs),
                    )
                )
            )
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _child_ids(self, conn, table: Table, parent_id: Optional[int]) -> set[str]:
        if parent_id is None:
            clause = table.c.parent_id.is_(None)
        else:
            clause = table.c.parent_id == parent_id
        rows = conn.execute(select(table.c.id).where(clause)).fetchall()
        return {str(r.id) for r in rows}

    def _name_taken(self, table: Table, parent_identifier: str, name: str, exclude: Optional[str]) -> bool:
        parent_id = _parent_id(parent_identifier)
        clause = table.c.parent_id.is_(None) if parent_id is None else table.c.parent_id == parent_id
        query = select(table.c.id).where(clause & (table.c.name == name))
        exclude_id = _parse_id(exclude)
        if exclude_id is not None:
            query = query.where(table.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(query).fetchone() is not None

    def _delete_object_references(self, conn, category: PermissionCategory, object_ids: list[str]) -> None:
        if not object_ids:
            return
        conn.execute(
            _object_permissions.delete().where(
                (_object_permissions.c.category == category.value) & (_object_permissions.c.object_id.in_(object_ids))
            )
        )

    def _row_to_group(self, conn, row) -> ConnectionGroup:
        return ConnectionGroup(
            identifier=str(row.id),
            name=row.name,
            parent_identifier=_parent_identifier(row.parent_id),
            type=ConnectionGroupType(row.type),
            attributes=_loads(row.attributes),
            connection_identifiers=self._child_ids(conn, _connections, row.id),
            connection_group_identifiers=self._child_ids(conn, _groups, row.id),
        )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        attributes=_loads(row.attributes),
        disabled=bool(row.disabled),
        created_at=row.created_at,
    )


def _row_to_connection(row) -> Connection:
    # parameters are deliberately not mapped: they are write-only
    return Connection(
        identifier=str(row.id),
        name=row.name,
        parent_identifier=_parent_identifier(row.parent_id),
        protocol=row.protocol,
        attributes=_loads(row.attributes),
    )
