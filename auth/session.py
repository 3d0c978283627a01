"""
auth/session.py -- Process-wide registry of authenticated sessions.

A GatehouseSession is created on successful login and holds one UserContext
per identity source that offered the user one. The SessionRegistry maps
session tokens to sessions and is the only structure shared between
concurrent requests of the same caller.

Concurrency:
  The token map is guarded by a threading.Lock. create(), destroy(),
  resolve() and purge_expired() hold it only while reading or mutating the
  map; authentication against providers runs outside it. Once resolved, a
  session's contexts are used without further locking -- they are never
  replaced for the lifetime of the session.

Expiry:
  A session expires after settings.session_timeout_seconds without use
  (resolve() refreshes last_accessed), or when its signed token's hard expiry
  passes. Expired sessions are removed lazily by resolve() and in bulk by
  purge_expired(), which api/main.py runs periodically.

Layer rule: no imports from api/ or storage/.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence

from auth.models import AuthenticatedUser, Credentials
from auth.provider import AuthenticationProvider
from auth.tokens import create_session_token, decode_session_token
from core.config import get_settings
from core.context import UserContext
from core.errors import CredentialsError, UnauthorizedError

logger = logging.getLogger("gatehouse.auth.session")


class GatehouseSession:
    def __init__(self, token: str, authenticated_user: AuthenticatedUser, user_contexts: dict[str, UserContext]) -> None:
        self.token = token
        self.authenticated_user = authenticated_user
        self.user_contexts = user_contexts
        self.created_at = time.monotonic()
        self.last_accessed = self.created_at

    @property
    def username(self) -> str:
        return self.authenticated_user.identifier

    def get_user_context(self, source_id: str) -> UserContext | None:
        return self.user_contexts.get(source_id)

    def touch(self) -> None:
        self.last_accessed = time.monotonic()

    def is_expired(self, timeout_seconds: int) -> bool:
        return time.monotonic() - self.last_accessed > timeout_seconds


class SessionRegistry:
    """Token -> GatehouseSession store.

    Usage:
        registry = SessionRegistry([provider])
        token, session = registry.create(Credentials(username="alice", password="..."))
        session = registry.resolve(token)
        registry.destroy(token)
    """

    def __init__(self, providers: Sequence[AuthenticationProvider], timeout_seconds: int | None = None) -> None:
        if not providers:
            raise ValueError("At least one authentication provider is required.")
        self.providers = list(providers)
        if timeout_seconds is None:
            timeout_seconds = get_settings().session_timeout_seconds
        elif timeout_seconds <= 0:
            raise ValueError("Session timeout must be positive.")
        self.timeout_seconds = timeout_seconds
        self._sessions: dict[str, GatehouseSession] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, credentials: Credentials) -> tuple[str, GatehouseSession]:
        """Authenticate `credentials` and register a new session.

        Raises CredentialsError (generic message) if no provider accepts
        the credentials.
        """
        authenticated_user = self._authenticate(credentials)

        user_contexts: dict[str, UserContext] = {}
        for provider in self.providers:
            context = provider.get_user_context(authenticated_user)
            if context is not None:
                user_contexts[provider.identifier] = context

        token = create_session_token(authenticated_user.identifier, authenticated_user.auth_provider.identifier)
        session = GatehouseSession(token, authenticated_user, user_contexts)
        with self._lock:
            self._sessions[token] = session

        logger.info(
            'User "%s" successfully authenticated from %s',
            authenticated_user.identifier,
            credentials.remote_address or "unknown",
        )
        return token, session

    def resolve(self, token: str | None) -> GatehouseSession:
        """Return the live session for `token`. Raises UnauthorizedError otherwise."""
        if not token or decode_session_token(token) is None:
            # Forged, malformed, or past its hard expiry: also drop any entry.
            if token:
                self._discard(token)
            raise UnauthorizedError()
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and session.is_expired(self.timeout_seconds):
                del self._sessions[token]
                logger.info('Session for user "%s" expired', session.username)
                session = None
            if session is None:
                raise UnauthorizedError()
            session.touch()
        return session

    def destroy(self, token: str) -> bool:
        """Remove the session for `token`. Returns False if there was none."""
        session = self._discard(token)
        if session is None:
            return False
        logger.info('User "%s" logged out', session.username)
        return True

    def purge_expired(self) -> int:
        """Remove every idle-expired or token-expired session. Returns the count removed."""
        with self._lock:
            expired = [
                token
                for token, session in self._sessions.items()
                if session.is_expired(self.timeout_seconds) or decode_session_token(token) is None
            ]
            for token in expired:
                del self._sessions[token]
        if expired:
            logger.info("Purged %d expired session(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _discard(self, token: str) -> GatehouseSession | None:
        with self._lock:
            return self._sessions.pop(token, None)

    def _authenticate(self, credentials: Credentials) -> AuthenticatedUser:
        rejected: CredentialsError | None = None
        for provider in self.providers:
            try:
                authenticated_user = provider.authenticate_user(credentials)
            except CredentialsError as exc:
                rejected = rejected or exc
                continue
            if authenticated_user is not None:
                return authenticated_user

        logger.warning(
            'Authentication attempt from %s for user "%s" failed.',
            credentials.remote_address or "unknown",
            credentials.username,
        )
        # Generic message whatever the cause [C1]
        raise CredentialsError() from rejected
