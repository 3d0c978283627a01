"""
api/routes/v1/connections.py -- Connection endpoints.

Routes (all under /api/v1/data/{source}):
  GET    /connections         -- list visible connections (?permission= filter)
  POST   /connections         -- create connection
  GET    /connections/{id}    -- one connection
  PUT    /connections/{id}    -- update connection
  DELETE /connections/{id}    -- delete connection

Connection parameters are write-only: accepted on POST / PUT, never
returned.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from api.models import ConnectionRequest, ConnectionResponse
from auth.dependencies import get_user_context
from auth.retrieval import retrieve_connection
from core.context import UserContext
from core.errors import ClientError
from core.models import ROOT_IDENTIFIER, Connection
from core.permissions import ObjectPermissionType, PermissionCategory, filter_accessible

# Auth policy: every route requires a live session with a context on {source}.
router = APIRouter()


@router.get("/data/{source}/connections", response_model=list[ConnectionResponse])
def list_connections(
    context: UserContext = Depends(get_user_context),
    permission: Optional[list[ObjectPermissionType]] = Query(default=None),
) -> list[ConnectionResponse]:
    directory = context.connection_directory
    identifiers = filter_accessible(
        context.self(), PermissionCategory.CONNECTION, permission, directory.get_identifiers()
    )
    connections = sorted(directory.get_all(identifiers), key=lambda c: (c.name, c.identifier))
    return [ConnectionResponse.from_domain(c) for c in connections]


@router.post("/data/{source}/connections", response_model=ConnectionResponse, status_code=201)
def create_connection(
    body: Optional[ConnectionRequest] = None,
    context: UserContext = Depends(get_user_context),
) -> ConnectionResponse:
    if body is None:
        raise ClientError("Connection JSON must be submitted when creating connections.")
    connection = Connection(
        name=body.name or "",
        parent_identifier=body.parent_identifier or ROOT_IDENTIFIER,
        protocol=body.protocol or "",
        parameters=dict(body.parameters),
        attributes=dict(body.attributes),
    )
    context.connection_directory.add(connection)
    return ConnectionResponse.from_domain(connection)


@router.get("/data/{source}/connections/{connection_id}", response_model=ConnectionResponse)
def get_connection(connection_id: str, context: UserContext = Depends(get_user_context)) -> ConnectionResponse:
    return ConnectionResponse.from_domain(retrieve_connection(context, connection_id))


@router.put("/data/{source}/connections/{connection_id}", status_code=204)
def update_connection(
    connection_id: str,
    body: Optional[ConnectionRequest] = None,
    context: UserContext = Depends(get_user_context),
) -> Response:
    """Replace a connection's name, parent, protocol and attributes.

    Parameters are replaced only if the payload carries any.
    """
    if body is None:
        raise ClientError("Connection JSON must be submitted when updating connections.")
    if body.identifier is not None and body.identifier != connection_id:
        raise ClientError("Connection identifier in path does not match identifier provided JSON data.")

    connection = retrieve_connection(context, connection_id)
    connection.name = body.name or ""
    connection.parent_identifier = body.parent_identifier or ROOT_IDENTIFIER
    connection.protocol = body.protocol or ""
    connection.parameters = dict(body.parameters)
    connection.attributes = dict(body.attributes)
    context.connection_directory.update(connection)
    return Response(status_code=204)


@router.delete("/data/{source}/connections/{connection_id}", status_code=204)
def delete_connection(connection_id: str, context: UserContext = Depends(get_user_context)) -> Response:
    retrieve_connection(context, connection_id)
    context.connection_directory.remove(connection_id)
    return Response(status_code=204)
