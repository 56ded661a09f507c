"""Unit tests for the cross-process lock manager."""

import errno
import json
import random
import shutil
import tempfile
from unittest.mock import patch

import pytest

from sdb.components.lock import CORRUPT, LockManager
from sdb.components.timeutil import format_iso
from sdb.core.config import SDBConfig
from sdb.core.errors import LockError, OperationFailedError
from sdb.core.paths import DatabasePaths

START = 1_714_564_800.0


class FakeClock:
    """Manual clock; sleeping advances time instead of blocking."""

    def __init__(self, now=START):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def paths(temp_dir):
    return DatabasePaths.resolve(temp_dir)


@pytest.fixture
def clock():
    return FakeClock()


def make_manager(clock, **config):
    return LockManager(
        SDBConfig(**config),
        clock=clock,
        sleep=clock.sleep,
        rng=random.Random(0),
        pid=4242,
    )


def write_lock(paths, timestamp, pid=1, operation="add"):
    paths.lock_file.write_text(json.dumps({"pid": pid, "timestamp": timestamp, "operation": operation}))


def test_acquire_and_release(paths, clock):
    """Test a free lock is taken immediately and removed on release."""
    manager = make_manager(clock)

    info = manager.acquire(paths, "add")

    assert info == {"pid": 4242, "timestamp": format_iso(int(START * 1000)), "operation": "add"}
    assert json.loads(paths.lock_file.read_text()) == info
    assert clock.sleeps == []

    manager.release(paths)
    assert not paths.lock_file.exists()


def test_no_temp_files_left_behind(paths, clock):
    """Test the staging file used to create the lock is cleaned up."""
    manager = make_manager(clock)

    manager.acquire(paths, "add")

    assert sorted(p.name for p in paths.folder.iterdir()) == [".sdb.lock"]


def test_release_without_lock_does_not_raise(paths, clock):
    """Test releasing an absent lock is a no-op."""
    make_manager(clock).release(paths)


def test_release_swallows_os_errors(paths, clock):
    """Test release never raises even if removal fails."""
    manager = make_manager(clock)
    manager.acquire(paths, "add")

    with patch("pathlib.Path.unlink", side_effect=OSError(errno.EACCES, "denied")):
        manager.release(paths)


def test_stale_lock_is_reclaimed(paths, clock):
    """Test a lock older than the staleness timeout is taken over."""
    write_lock(paths, format_iso(int(START * 1000) - 10_001), pid=999)
    manager = make_manager(clock, lock_stale_ms=10_000)

    info = manager.acquire(paths, "delete")

    assert info["pid"] == 4242
    assert clock.sleeps == []


def test_lock_at_stale_boundary_is_not_reclaimed(paths, clock):
    """Test a lock exactly at the timeout still counts as held."""
    write_lock(paths, format_iso(int(START * 1000) - 10_000))
    manager = make_manager(clock, lock_stale_ms=10_000, lock_wait_ms=0)

    with pytest.raises(LockError):
        manager.acquire(paths, "add")


@pytest.mark.parametrize("content", ["", "{not json", '{"pid": 1}', '{"pid": 1, "timestamp": "whenever"}', "[1]"])
def test_corrupt_lock_is_reclaimed(paths, clock, content):
    """Test unreadable or timestamp-less locks are treated as abandoned."""
    paths.lock_file.write_text(content)
    manager = make_manager(clock, lock_wait_ms=0)

    assert manager.read_lock(paths) is CORRUPT
    assert manager.acquire(paths, "gc")["operation"] == "gc"


def test_wait_budget_exhausted(paths, clock):
    """Test a fresh foreign lock fails after the wait budget, carrying its metadata."""
    write_lock(paths, format_iso(int(START * 1000)), pid=7, operation="update")
    manager = make_manager(clock, lock_wait_ms=1_000, lock_retry_ms=100)

    with pytest.raises(LockError) as exc_info:
        manager.acquire(paths, "add")

    error = exc_info.value
    assert error.context["path"] == str(paths.lock_file)
    assert error.context["existingLock"]["pid"] == 7
    assert error.context["existingLock"]["operation"] == "update"
    # never waits past the budget
    assert sum(clock.sleeps) == pytest.approx(1.0, abs=0.005)
    assert json.loads(paths.lock_file.read_text())["pid"] == 7


def test_backoff_is_jittered_within_bounds(paths, clock):
    """Test each sleep lies in [base, 2 * base)."""
    write_lock(paths, format_iso(int(START * 1000)))
    manager = make_manager(clock, lock_wait_ms=5_000, lock_retry_ms=100, lock_stale_ms=60_000)

    with pytest.raises(LockError):
        manager.acquire(paths, "add")

    full = [s for s in clock.sleeps if s >= 0.1]
    assert len(full) > 10
    assert all(s < 0.2 for s in clock.sleeps)
    # only the sleeps clipped to the deadline are shorter than the base
    assert len(clock.sleeps) - len(full) <= 2


def test_lock_released_by_holder_is_acquired(paths, clock):
    """Test a waiter succeeds once the holder releases mid-wait."""
    write_lock(paths, format_iso(int(START * 1000)))
    manager = make_manager(clock, lock_wait_ms=10_000)

    def sleep_then_release(seconds):
        clock.sleep(seconds)
        if len(clock.sleeps) == 3:
            paths.lock_file.unlink()

    manager._sleep = sleep_then_release

    info = manager.acquire(paths, "add")

    assert info["pid"] == 4242
    assert len(clock.sleeps) == 3


def test_lock_goes_stale_while_waiting(paths, clock):
    """Test a holder that stops refreshing is reclaimed within the same wait."""
    write_lock(paths, format_iso(int(START * 1000)))
    manager = make_manager(clock, lock_stale_ms=1_000, lock_wait_ms=5_000, lock_retry_ms=100)

    info = manager.acquire(paths, "add")

    assert info["pid"] == 4242
    assert 1.0 <= sum(clock.sleeps) < 1.5


def test_other_os_error_is_operation_failed(paths, clock):
    """Test creation errors other than 'exists' fail immediately."""
    manager = make_manager(clock)

    with patch("sdb.components.lock.os.link", side_effect=PermissionError(errno.EPERM, "nope")):
        with pytest.raises(OperationFailedError):
            manager.acquire(paths, "add")

    assert not paths.lock_file.exists()
    assert list(paths.folder.iterdir()) == []


def test_lost_create_race_counts_as_contention(paths, clock):
    """Test losing the exclusive create behaves like a held lock."""
    manager = make_manager(clock, lock_wait_ms=0)

    with patch("sdb.components.lock.os.link", side_effect=FileExistsError(errno.EEXIST, "exists")):
        with pytest.raises(LockError):
            manager.acquire(paths, "add")


def test_locked_releases_on_exception(paths, clock):
    """Test the context manager always releases."""
    manager = make_manager(clock)

    with pytest.raises(RuntimeError):
        with manager.locked(paths, "add"):
            assert paths.lock_file.exists()
            raise RuntimeError("boom")

    assert not paths.lock_file.exists()


def test_with_lock_returns_value(paths, clock):
    """Test with_lock runs the callable under the lock."""
    manager = make_manager(clock)

    result = manager.with_lock(paths, "count", lambda: paths.lock_file.exists())

    assert result is True
    assert not paths.lock_file.exists()
