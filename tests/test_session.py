"""Unit tests for auth/session.py -- the session registry.

Covers:
- create() authenticates, collects one context per willing provider, and
  returns a resolvable signed token
- rejected credentials raise a generic CredentialsError
- destroy(), idle expiry, purge_expired(), and forged tokens
- the idle timeout defaults from settings; explicit non-positive values are rejected
- concurrent create()/resolve() from many threads
"""

from __future__ import annotations

import threading

import pytest

from auth.models import Credentials
from auth.session import SessionRegistry
from core.config import get_settings
from core.errors import CredentialsError, UnauthorizedError
from core.models import User
from helpers import MemoryProvider


@pytest.fixture
def provider() -> MemoryProvider:
    p = MemoryProvider("memory")
    p.add_user(User(identifier="alice"), "s3cret")
    return p


@pytest.fixture
def registry(provider) -> SessionRegistry:
    return SessionRegistry([provider], timeout_seconds=60)


class TestCreate:
    def test_create_and_resolve(self, registry) -> None:
        token, session = registry.create(Credentials(username="alice", password="s3cret", remote_address="10.0.0.1"))
        assert registry.resolve(token) is session
        assert session.username == "alice"
        assert set(session.user_contexts) == {"memory"}

    def test_each_login_gets_its_own_session(self, registry) -> None:
        t1, _ = registry.create(Credentials(username="alice", password="s3cret"))
        t2, _ = registry.create(Credentials(username="alice", password="s3cret"))
        assert t1 != t2
        assert len(registry) == 2

    def test_wrong_password_is_generic_credentials_error(self, registry) -> None:
        with pytest.raises(CredentialsError) as exc_info:
            registry.create(Credentials(username="alice", password="nope"))
        assert exc_info.value.message == CredentialsError.default_message
        assert len(registry) == 0

    def test_unknown_user_is_same_error(self, registry) -> None:
        with pytest.raises(CredentialsError) as exc_info:
            registry.create(Credentials(username="mallory", password="s3cret"))
        assert exc_info.value.message == CredentialsError.default_message

    def test_context_from_every_provider_that_knows_the_user(self, provider) -> None:
        """A foreign provider that also knows alice contributes a second context."""
        other = MemoryProvider("other")
        other.users.add(User(identifier="alice"))
        stranger = MemoryProvider("stranger")
        registry = SessionRegistry([provider, other, stranger])
        _, session = registry.create(Credentials(username="alice", password="s3cret"))
        assert set(session.user_contexts) == {"memory", "other"}
        assert session.authenticated_user.auth_provider is provider

    def test_requires_a_provider(self) -> None:
        with pytest.raises(ValueError):
            SessionRegistry([])

    def test_default_timeout_comes_from_settings(self, provider) -> None:
        assert SessionRegistry([provider]).timeout_seconds == get_settings().session_timeout_seconds

    @pytest.mark.parametrize("timeout", [0, -5])
    def test_explicit_nonpositive_timeout_rejected(self, provider, timeout) -> None:
        """An explicit 0 is not silently replaced by the configured default."""
        with pytest.raises(ValueError):
            SessionRegistry([provider], timeout_seconds=timeout)


class TestResolve:
    def test_missing_token(self, registry) -> None:
        with pytest.raises(UnauthorizedError):
            registry.resolve(None)

    def test_forged_token(self, registry) -> None:
        with pytest.raises(UnauthorizedError):
            registry.resolve("not.a.jwt")

    def test_destroyed_token(self, registry) -> None:
        token, _ = registry.create(Credentials(username="alice", password="s3cret"))
        assert registry.destroy(token) is True
        assert registry.destroy(token) is False
        with pytest.raises(UnauthorizedError):
            registry.resolve(token)

    def test_idle_session_expires(self, registry) -> None:
        token, session = registry.create(Credentials(username="alice", password="s3cret"))
        session.last_accessed -= 120
        with pytest.raises(UnauthorizedError):
            registry.resolve(token)
        assert len(registry) == 0

    def test_resolve_refreshes_idle_timer(self, registry) -> None:
        token, session = registry.create(Credentials(username="alice", password="s3cret"))
        session.last_accessed -= 50
        registry.resolve(token)
        assert not session.is_expired(60)


class TestPurge:
    def test_purge_removes_only_expired(self, registry) -> None:
        _, stale = registry.create(Credentials(username="alice", password="s3cret"))
        fresh_token, _ = registry.create(Credentials(username="alice", password="s3cret"))
        stale.last_accessed -= 120
        assert registry.purge_expired() == 1
        assert len(registry) == 1
        registry.resolve(fresh_token)


class TestConcurrency:
    def test_parallel_logins(self, registry) -> None:
        tokens: list[str] = []
        errors: list[Exception] = []
        lock = threading.Lock()

        def worker() -> None:
            try:
                token, _ = registry.create(Credentials(username="alice", password="s3cret"))
                registry.resolve(token)
                with lock:
                    tokens.append(token)
            except Exception as e:  # noqa: BLE001 -- surfaced by the assertion below
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(set(tokens)) == 16
        assert len(registry) == 16
