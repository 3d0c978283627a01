"""
core/directory.py -- The Directory contract every resource kind implements.

A Directory is an identifier-keyed collection of one resource kind (users,
connections, connection groups), scoped to one identity source and viewed
through one acting user. Visibility is the implementation's job; the core
never bypasses it.

Contract:
  get(id)            -> object, or None if absent OR invisible. The two cases
                        must be indistinguishable to the caller.
  get_all(ids)       -> the existing, visible subset, in no particular order.
  get_identifiers()  -> every visible identifier.
  add(obj)           -> assigns (or validates) obj.identifier. ConflictError if taken.
  update(obj)        -> NotFoundError if obj.identifier is absent.
  remove(id)         -> NotFoundError if absent. Not idempotent.

SimpleDirectory is the in-memory implementation for identity sources that
keep their objects in process memory. It has no visibility rules of its own:
everything stored is visible.

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Generic, TypeVar

from core.errors import ClientError, ConflictError, NotFoundError

T = TypeVar("T")


class Directory(ABC, Generic[T]):
    @abstractmethod
    def get(self, identifier: str) -> T | None: ...

    @abstractmethod
    def get_all(self, identifiers: Iterable[str]) -> list[T]: ...

    @abstractmethod
    def get_identifiers(self) -> set[str]: ...

    @abstractmethod
    def add(self, obj: T) -> None: ...

    @abstractmethod
    def update(self, obj: T) -> None: ...

    @abstractmethod
    def remove(self, identifier: str) -> None: ...


class SimpleDirectory(Directory[T]):
    """In-memory Directory keyed by each object's `identifier` attribute.

    If assign_identifiers is True, add() ignores any identifier on the object
    and assigns the next integer (as a string), the way connections and
    groups are numbered. Otherwise the object's own identifier is used and
    must be non-empty (users are keyed by username).
    """

    def __init__(self, objects: Iterable[T] = (), assign_identifiers: bool = False) -> None:
        self._objects: dict[str, T] = {}
        self._assign_identifiers = assign_identifiers
        self._counter = itertools.count(1)
        for obj in objects:
            self._objects[obj.identifier] = obj

    def get(self, identifier: str) -> T | None:
        return self._objects.get(identifier)

    def get_all(self, identifiers: Iterable[str]) -> list[T]:
        return [self._objects[i] for i in identifiers if i in self._objects]

    def get_identifiers(self) -> set[str]:
        return set(self._objects)

    def add(self, obj: T) -> None:
        if self._assign_identifiers:
            identifier = str(next(self._counter))
            while identifier in self._objects:
                identifier = str(next(self._counter))
            obj.identifier = identifier
        elif not obj.identifier:
            raise ClientError("An identifier is required.")
        if obj.identifier in self._objects:
            raise ConflictError(f'"{obj.identifier}" already exists.')
        self._objects[obj.identifier] = obj

    def update(self, obj: T) -> None:
        if obj.identifier not in self._objects:
            raise NotFoundError(f'No such object: "{obj.identifier}"')
        self._objects[obj.identifier] = obj

    def remove(self, identifier: str) -> None:
        if identifier not in self._objects:
            raise NotFoundError(f'No such object: "{identifier}"')
        del self._objects[identifier]
