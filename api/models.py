"""
API request and response models for Gatehouse REST endpoints.

Pydantic v2 models for the JSON bodies the API accepts and returns. Routes
convert between these and the core/models.py dataclasses, so the wire format
can change without touching the domain layer.

Write-only fields (passwords, connection parameters) appear on request
models only. No response model has a field that could carry them.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import ConnectionGroupType, User
from core.permissions import PermissionCategory, PermissionSets
from core.tree import ConnectionGroupNode

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error envelope returned by every exception handler."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=1, max_length=255)


class TokenResponse(BaseModel):
    """Response body for POST /api/v1/tokens.

    data_source is the identity source that authenticated the user;
    available_data_sources lists every source the session holds a context for.
    """

    model_config = ConfigDict(frozen=True)

    auth_token: str
    username: str
    data_source: str
    available_data_sources: list[str]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserRequest(BaseModel):
    """Request body for POST /users and PUT /users/{username}.

    password is optional on both: POST assigns a random one, PUT leaves the
    stored one unchanged.
    """

    username: Optional[str] = Field(default=None, max_length=128)
    password: Optional[str] = Field(default=None, max_length=255)
    attributes: dict[str, str] = Field(default_factory=dict)


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    attributes: dict[str, str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(username=user.identifier, attributes=dict(user.attributes))


class PasswordChangeRequest(BaseModel):
    """Request body for PUT /users/{username}/password."""

    old_password: str = Field(max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class PatchOperationRequest(BaseModel):
    """One element of a PATCH /users/{username}/permissions body.

    op and value stay plain strings: unsupported verbs and unknown
    permission types are reported by the patch engine as 400 bad_request,
    in the same envelope as every other malformed patch.
    """

    op: str
    path: str
    value: Optional[str] = None


class PermissionsResponse(BaseModel):
    """Every permission a user holds, grouped by category.

    Object categories map object identifier -> sorted permission types.
    """

    model_config = ConfigDict(frozen=True)

    connection_permissions: dict[str, list[str]]
    connection_group_permissions: dict[str, list[str]]
    active_connection_permissions: dict[str, list[str]]
    user_permissions: dict[str, list[str]]
    system_permissions: list[str]

    @classmethod
    def from_permission_sets(cls, permissions: PermissionSets) -> "PermissionsResponse":
        def by_object(category: PermissionCategory) -> dict[str, list[str]]:
            grouped: dict[str, list[str]] = {}
            for p in permissions.object_set(category).get_permissions():
                grouped.setdefault(p.object_identifier, []).append(p.type.value)
            return {k: sorted(v) for k, v in sorted(grouped.items())}

        return cls(
            connection_permissions=by_object(PermissionCategory.CONNECTION),
            connection_group_permissions=by_object(PermissionCategory.CONNECTION_GROUP),
            active_connection_permissions=by_object(PermissionCategory.ACTIVE_CONNECTION),
            user_permissions=by_object(PermissionCategory.USER),
            system_permissions=sorted(p.type.value for p in permissions.system.get_permissions()),
        )


# ---------------------------------------------------------------------------
# Connections / connection groups
# ---------------------------------------------------------------------------


class ConnectionRequest(BaseModel):
    identifier: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=128)
    parent_identifier: Optional[str] = None
    protocol: Optional[str] = Field(default=None, max_length=32)
    parameters: dict[str, str] = Field(default_factory=dict)
    attributes: dict[str, str] = Field(default_factory=dict)


class ConnectionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    name: str
    parent_identifier: str
    protocol: str
    attributes: dict[str, str]

    @classmethod
    def from_domain(cls, connection) -> "ConnectionResponse":
        """Build from a core Connection or a detached ConnectionNode."""
        return cls(
            identifier=connection.identifier,
            name=connection.name,
            parent_identifier=connection.parent_identifier,
            protocol=connection.protocol,
            attributes=dict(connection.attributes),
        )


class ConnectionGroupRequest(BaseModel):
    identifier: Optional[str] = None
    name: Optional[str] = Field(default=None, max_length=128)
    parent_identifier: Optional[str] = None
    type: ConnectionGroupType = ConnectionGroupType.ORGANIZATIONAL
    attributes: dict[str, str] = Field(default_factory=dict)


class ConnectionGroupResponse(BaseModel):
    """A connection group; child lists are present only in /tree responses."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    name: str
    parent_identifier: Optional[str]
    type: ConnectionGroupType
    attributes: dict[str, str]
    child_connections: Optional[list[ConnectionResponse]] = None
    child_connection_groups: Optional[list[ConnectionGroupResponse]] = None

    @classmethod
    def from_domain(cls, group) -> "ConnectionGroupResponse":
        return cls(
            identifier=group.identifier,
            name=group.name,
            parent_identifier=group.parent_identifier,
            type=group.type,
            attributes=dict(group.attributes),
        )

    @classmethod
    def from_tree(cls, node: ConnectionGroupNode) -> "ConnectionGroupResponse":
        # Children first (reverse pre-order); deep hierarchies must not recurse
        order: list[ConnectionGroupNode] = []
        stack = [node]
        while stack:
            current = stack.pop()
            order.append(current)
            stack.extend(current.child_connection_groups)

        built: dict[str, ConnectionGroupResponse] = {}
        for current in reversed(order):
            built[current.identifier] = cls(
                identifier=current.identifier,
                name=current.name,
                parent_identifier=current.parent_identifier,
                type=current.type,
                attributes=dict(current.attributes),
                child_connections=[ConnectionResponse.from_domain(c) for c in current.child_connections],
                child_connection_groups=[built[g.identifier] for g in current.child_connection_groups],
            )
        return built[node.identifier]

