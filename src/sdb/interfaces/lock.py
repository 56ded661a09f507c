"""Protocol definition for the database lock."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Protocol, TypeVar

from ..core.paths import DatabasePaths
from ..core.types import LockInfo

T = TypeVar("T")


class DatabaseLock(Protocol):
    """Exclusive cross-process lock on one database folder."""

    def acquire(self, paths: DatabasePaths, operation: str) -> LockInfo:
        """Block until the lock is held.

        Invariants:
            - Fails loudly once the wait budget is exhausted
            - Never blocks indefinitely
        """
        ...

    def release(self, paths: DatabasePaths) -> None:
        """Remove the lock if present; must never raise."""
        ...

    def locked(self, paths: DatabasePaths, operation: str) -> AbstractContextManager[LockInfo]:
        """Hold the lock for the duration of a with-block."""
        ...

    def with_lock(self, paths: DatabasePaths, operation: str, fn: Callable[[], T]) -> T:
        """Acquire, run fn, always release."""
        ...
