"""
auth/models.py -- Dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors core/models.py
-- dataclasses own domain shape; providers, the session registry and routes
do the work.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Credentials:
    """What a caller presents to an identity source.

    remote_address and request carry the in-flight request's transport
    context. Identity sources may use them (e.g. for auditing or address
    restrictions); the core passes them through untouched.

    password is never logged and never stored on the session.
    """

    username: str | None = None
    password: str | None = field(default=None, repr=False)
    remote_address: str | None = None
    request: Any = field(default=None, repr=False, compare=False)


@dataclass
class AuthenticatedUser:
    """The result of a successful authenticate_user() call.

    identifier is the username as the identity source knows it -- it may be
    canonicalized (e.g. case-folded) relative to what the caller typed.
    """

    identifier: str
    auth_provider: Any  # auth.provider.AuthenticationProvider
    credentials: Credentials = field(repr=False)
