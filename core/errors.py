"""
core/errors.py -- Error taxonomy for Gatehouse.

Every failure the management API can report is one of the classes below.
Each class carries the HTTP status and the machine-readable error code the
API layer puts in the ErrorResponse envelope, so route handlers never pick
status codes themselves -- they raise, and api/main.py translates.

Taxonomy:
  ClientError     -- malformed input; raised before any mutation.
  NotFoundError   -- identifier absent OR invisible to the actor. The two
                     causes are never distinguished (no enumeration oracle).
  ForbiddenError  -- authorization / re-authentication failure. Messages are
                     always generic ("Permission denied.").
  ConflictError   -- duplicate identifier on create.
  InternalError   -- unexpected collaborator failure. The message is logged,
                     never sent to the client.

UnauthorizedError and CredentialsError are Forbidden-category failures that
map to 401 instead of 403: the caller has no valid session, or the login
itself was rejected.

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations


class GatehouseError(Exception):
    """Base class for every error Gatehouse reports to a client."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ClientError(GatehouseError):
    status_code = 400
    code = "bad_request"
    default_message = "The request was malformed."


class NotFoundError(GatehouseError):
    status_code = 404
    code = "not_found"
    default_message = "No such object."


class ForbiddenError(GatehouseError):
    status_code = 403
    code = "forbidden"
    default_message = "Permission denied."


class UnauthorizedError(ForbiddenError):
    """No session, or the session token is invalid or expired."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class CredentialsError(UnauthorizedError):
    """Raised by an identity source when the supplied credentials are rejected.

    Re-verification flows (password change) must catch this and re-raise a
    plain ForbiddenError -- see auth/retrieval.update_password().
    """

    code = "bad_credentials"
    default_message = "Invalid username or password."


class ConflictError(GatehouseError):
    status_code = 409
    code = "conflict"
    default_message = "An object with that identifier already exists."


class InternalError(GatehouseError):
    """Unexpected collaborator failure. Surfaced to clients as a generic 500."""


class DataIntegrityError(InternalError):
    """Stored data violates a structural invariant (e.g. a cyclic group hierarchy).

    Fatal for the current operation. Raised instead of recursing or looping
    over corrupt data.
    """
