"""
api/routes/v1/connection_groups.py -- Connection group endpoints.

Routes (all under /api/v1/data/{source}):
  GET    /connectionGroups            -- list visible groups (?permission= filter)
  POST   /connectionGroups            -- create group
  GET    /connectionGroups/{id}       -- one group ("ROOT" is the root group)
  PUT    /connectionGroups/{id}       -- update / move group
  DELETE /connectionGroups/{id}       -- delete group and everything below it
  GET    /connectionGroups/{id}/tree  -- the hierarchy below a group, with
                                         connections filtered by ?permission=
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from api.models import ConnectionGroupRequest, ConnectionGroupResponse
from auth.dependencies import get_user_context
from auth.retrieval import retrieve_connection_group
from core.context import UserContext
from core.errors import ClientError
from core.models import ROOT_IDENTIFIER, ConnectionGroup
from core.permissions import ObjectPermissionType, PermissionCategory, filter_accessible
from core.tree import build_tree

# Auth policy: every route requires a live session with a context on {source}.
router = APIRouter()


@router.get("/data/{source}/connectionGroups", response_model=list[ConnectionGroupResponse])
def list_connection_groups(
    context: UserContext = Depends(get_user_context),
    permission: Optional[list[ObjectPermissionType]] = Query(default=None),
) -> list[ConnectionGroupResponse]:
    directory = context.connection_group_directory
    identifiers = filter_accessible(
        context.self(), PermissionCategory.CONNECTION_GROUP, permission, directory.get_identifiers()
    )
    groups = sorted(directory.get_all(identifiers), key=lambda g: (g.name, g.identifier))
    return [ConnectionGroupResponse.from_domain(g) for g in groups]


@router.post("/data/{source}/connectionGroups", response_model=ConnectionGroupResponse, status_code=201)
def create_connection_group(
    body: Optional[ConnectionGroupRequest] = None,
    context: UserContext = Depends(get_user_context),
) -> ConnectionGroupResponse:
    if body is None:
        raise ClientError("Connection group JSON must be submitted when creating connection groups.")
    group = ConnectionGroup(
        name=body.name or "",
        parent_identifier=body.parent_identifier or ROOT_IDENTIFIER,
        type=body.type,
        attributes=dict(body.attributes),
    )
    context.connection_group_directory.add(group)
    return ConnectionGroupResponse.from_domain(group)


@router.get("/data/{source}/connectionGroups/{group_id}", response_model=ConnectionGroupResponse)
def get_connection_group(group_id: str, context: UserContext = Depends(get_user_context)) -> ConnectionGroupResponse:
    return ConnectionGroupResponse.from_domain(retrieve_connection_group(context, group_id))


@router.get("/data/{source}/connectionGroups/{group_id}/tree", response_model=ConnectionGroupResponse)
def get_connection_group_tree(
    group_id: str,
    context: UserContext = Depends(get_user_context),
    permission: Optional[list[ObjectPermissionType]] = Query(default=None),
) -> ConnectionGroupResponse:
    """Return `group_id` with every descendant group and the connections the
    caller holds at least one of `permission` on (all visible ones if none)."""
    root = retrieve_connection_group(context, group_id)
    return ConnectionGroupResponse.from_tree(build_tree(context, root, permission))


@router.put("/data/{source}/connectionGroups/{group_id}", status_code=204)
def update_connection_group(
    group_id: str,
    body: Optional[ConnectionGroupRequest] = None,
    context: UserContext = Depends(get_user_context),
) -> Response:
    if body is None:
        raise ClientError("Connection group JSON must be submitted when updating connection groups.")
    if body.identifier is not None and body.identifier != group_id:
        raise ClientError("Connection group identifier in path does not match identifier provided JSON data.")

    group = retrieve_connection_group(context, group_id)
    group.name = body.name or ""
    group.parent_identifier = body.parent_identifier or ROOT_IDENTIFIER
    group.type = body.type
    group.attributes = dict(body.attributes)
    context.connection_group_directory.update(group)
    return Response(status_code=204)


@router.delete("/data/{source}/connectionGroups/{group_id}", status_code=204)
def delete_connection_group(group_id: str, context: UserContext = Depends(get_user_context)) -> Response:
    retrieve_connection_group(context, group_id)
    context.connection_group_directory.remove(group_id)
    return Response(status_code=204)
