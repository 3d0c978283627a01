"""
core/context.py -- UserContext: an authenticated view of one identity source.

A UserContext is bound to exactly one identity source and one authenticated
user. It exposes that user (self()) -- including the user's own permission
sets -- and the directories the user can see. Contexts are created by an
identity source after login and owned by the session for its lifetime.

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from core.directory import Directory
from core.models import Connection, ConnectionGroup, User


class UserContext(ABC):
    @property
    @abstractmethod
    def auth_provider(self) -> Any:
        """The identity source that produced this context (an auth.provider.AuthenticationProvider)."""

    @abstractmethod
    def self(self) -> User:
        """The user this context was created for, with their own permission sets."""

    @property
    @abstractmethod
    def user_directory(self) -> Directory[User]: ...

    @property
    @abstractmethod
    def connection_directory(self) -> Directory[Connection]: ...

    @property
    @abstractmethod
    def connection_group_directory(self) -> Directory[ConnectionGroup]: ...

    @abstractmethod
    def root_connection_group(self) -> ConnectionGroup:
        """The virtual ROOT group, with its (unfiltered) top-level children."""
