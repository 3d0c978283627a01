"""
auth/provider.py -- The identity-source contract.

An AuthenticationProvider is a pluggable source of identities. Gatehouse
consults every configured provider at login:

  authenticate_user(credentials)
      Return an AuthenticatedUser if this provider recognizes and accepts the
      credentials, None if it has no opinion, or raise CredentialsError if it
      recognizes the user and rejects the credentials.

  get_user_context(authenticated_user)
      Return the UserContext this provider offers the (possibly foreign)
      authenticated user, or None if it offers nothing.

storage/provider.py holds the bundled SQL implementation.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from auth.models import AuthenticatedUser, Credentials
from core.context import UserContext


class AuthenticationProvider(ABC):
    @property
    @abstractmethod
    def identifier(self) -> str:
        """Unique identifier of this identity source (the {source} path segment)."""

    @abstractmethod
    def authenticate_user(self, credentials: Credentials) -> AuthenticatedUser | None: ...

    @abstractmethod
    def get_user_context(self, authenticated_user: AuthenticatedUser) -> UserContext | None: ...
