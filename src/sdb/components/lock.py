"""Cross-process lock manager.

The lock is a JSON file (``{pid, timestamp, operation}``) inside the database
folder; its presence on disk IS the lock. Acquisition is an explicit
bounded-retry state machine so the wait budget can be driven by a fake clock.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import random
import time
import uuid
from collections.abc import Callable, Iterator
from enum import Enum
from typing import TypeVar

from ..core.config import SDBConfig
from ..core.errors import LockError, OperationFailedError
from ..core.paths import DatabasePaths
from ..core.types import LockInfo
from .timeutil import format_iso, parse_timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockState(Enum):
    """States of the acquisition state machine."""

    NO_LOCK = "no_lock"          # inspect the lock file
    TRY_CREATE = "try_create"    # no lock seen, attempt exclusive create
    STALE = "stale"              # corrupt or expired lock, reclaim it
    CONTENDED = "contended"      # fresh lock held by someone else
    RETRY = "retry"              # back off, then inspect again
    ACQUIRED = "acquired"


class _Corrupt:
    """Marker for a lock file that exists but cannot be read or parsed."""


CORRUPT = _Corrupt()


class LockManager:
    """Exclusive advisory lock on a database folder.

    Args:
        config: Lock timing parameters (staleness, retry base, wait budget)
        clock: Returns epoch seconds; used for lock timestamps and the deadline
        sleep: Sleep function taking seconds
        rng: Random source for backoff jitter
        pid: Process id written into the lock file

    Invariants:
        - A lock is only ever created with exclusive-create semantics
        - Lock contents are complete the moment the lock becomes visible
        - Acquisition never waits past the wait budget
        - release() never raises
    """

    def __init__(
        self,
        config: SDBConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        pid: int | None = None,
    ):
        self.config = config or SDBConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._pid = os.getpid() if pid is None else pid

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def acquire(self, paths: DatabasePaths, operation: str) -> LockInfo:
        """Block until the lock is held or the wait budget runs out.

        Returns:
            The lock contents written to disk

        Raises:
            LockError: Wait budget exhausted while another process holds the lock
            OperationFailedError: The lock file could not be created
        """
        deadline = self._now_ms() + self.config.effective_wait_ms
        state = LockState.NO_LOCK
        existing: LockInfo | None = None
        suspect: LockInfo | _Corrupt | None = None
        attempts = 0

        while True:
            logger.debug(f"Lock state {state.value} for {paths.lock_file}")

            if state is LockState.NO_LOCK:
                current = self.read_lock(paths)
                suspect = current
                if current is None:
                    state = LockState.TRY_CREATE
                elif current is CORRUPT:
                    logger.warning(f"Removing unreadable lock file {paths.lock_file}")
                    state = LockState.STALE
                elif self._is_stale(current):
                    logger.warning(
                        f"Reclaiming stale lock {paths.lock_file} "
                        f"(pid={current.get('pid')}, since {current.get('timestamp')})"
                    )
                    state = LockState.STALE
                else:
                    existing = current
                    state = LockState.CONTENDED

            elif state is LockState.STALE:
                if self.read_lock(paths) != suspect:
                    # replaced since inspection; another process reclaimed it
                    state = LockState.NO_LOCK
                elif self._remove(paths):
                    state = LockState.NO_LOCK
                else:
                    # cannot reclaim, wait it out like any other holder
                    state = LockState.CONTENDED

            elif state is LockState.TRY_CREATE:
                attempts += 1
                info: LockInfo = {
                    "pid": self._pid,
                    "timestamp": format_iso(self._now_ms()),
                    "operation": operation,
                }
                if self._try_create(paths, info):
                    state = LockState.ACQUIRED
                    logger.info(f"Acquired lock {paths.lock_file} for '{operation}' after {attempts} attempt(s)")
                    return info
                existing = None
                state = LockState.CONTENDED

            elif state is LockState.CONTENDED:
                if self._now_ms() >= deadline:
                    if existing is None:
                        current = self.read_lock(paths)
                        existing = current if isinstance(current, dict) else None
                    logger.warning(f"Gave up waiting for lock {paths.lock_file}")
                    raise LockError(str(paths.lock_file), dict(existing) if existing else None)
                state = LockState.RETRY

            elif state is LockState.RETRY:
                remaining_ms = max(0, deadline - self._now_ms())
                self._sleep(min(self._backoff_ms(), remaining_ms) / 1000)
                state = LockState.NO_LOCK

    def release(self, paths: DatabasePaths) -> None:
        """Remove the lock file if present. Never raises."""
        try:
            paths.lock_file.unlink()
            logger.info(f"Released lock {paths.lock_file}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to release lock {paths.lock_file}: {e}")

    @contextlib.contextmanager
    def locked(self, paths: DatabasePaths, operation: str) -> Iterator[LockInfo]:
        """Hold the lock for the duration of the block."""
        info = self.acquire(paths, operation)
        try:
            yield info
        finally:
            self.release(paths)

    def with_lock(self, paths: DatabasePaths, operation: str, fn: Callable[[], T]) -> T:
        """Acquire, run fn, always release."""
        with self.locked(paths, operation):
            return fn()

    def read_lock(self, paths: DatabasePaths) -> LockInfo | _Corrupt | None:
        """Return the current lock contents, None if unlocked, CORRUPT if unusable."""
        try:
            with open(paths.lock_file, encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError):
            return CORRUPT
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return CORRUPT
        if not isinstance(data, dict) or parse_timestamp(data.get("timestamp")) is None:
            return CORRUPT
        return data  # type: ignore[return-value]

    def _is_stale(self, info: LockInfo) -> bool:
        acquired_ms = parse_timestamp(info.get("timestamp"))
        if acquired_ms is None:
            return True
        return self._now_ms() - acquired_ms > self.config.lock_stale_ms

    def _backoff_ms(self) -> float:
        base = self.config.lock_retry_ms
        return base + self._rng.uniform(0, base)

    def _remove(self, paths: DatabasePaths) -> bool:
        try:
            paths.lock_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove lock file {paths.lock_file}: {e}")
            return False
        return True

    def _try_create(self, paths: DatabasePaths, info: LockInfo) -> bool:
        """Exclusively create the lock file with info.

        The contents go to a private temp file first and are hard-linked into
        place; link() fails if the lock already exists, so the lock is never
        visible half-written.
        """
        temp_path = paths.lock_file.with_name(f"{paths.lock_file.name}.{self._pid}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            try:
                os.write(fd, json.dumps(info).encode("utf-8"))
            finally:
                os.close(fd)
            try:
                os.link(temp_path, paths.lock_file)
            except FileExistsError:
                logger.debug(f"Lost race creating {paths.lock_file}")
                return False
            return True
        except OSError as e:
            raise OperationFailedError(
                "acquire_lock", f"Failed to create lock: {e}", {"path": str(paths.lock_file)}
            ) from e
        finally:
            with contextlib.suppress(OSError):
                temp_path.unlink()
