"""Unit tests for the deleted-log garbage collector."""

import pytest

from sdb.components.gc import GcSweeper
from sdb.components.timeutil import format_iso, parse_timestamp

CUTOFF = "2024-05-01T12:00:00.000Z"


@pytest.fixture
def sweeper():
    return GcSweeper()


def deleted(record_id, when):
    return {"_id": record_id, "_deleted": when}


def test_boundary_is_inclusive(sweeper):
    """Test a record deleted exactly at the cutoff is removed, one ms later survives."""
    cutoff_ms = parse_timestamp(CUTOFF)
    records = [
        deleted("at", CUTOFF),
        deleted("after", format_iso(cutoff_ms + 1)),
        deleted("before", format_iso(cutoff_ms - 1)),
    ]

    result = sweeper.sweep(records, cutoff_ms=cutoff_ms)

    assert [r["_id"] for r in result.remaining] == ["after"]
    assert {r["_id"] for r in result.removed} == {"at", "before"}
    assert result.stats.removed == 2
    assert result.stats.remaining == 1
    assert result.stats.cutoff == CUTOFF


def test_invalid_timestamps_kept_and_counted(sweeper):
    """Test missing or unparseable _deleted survives an age sweep."""
    records = [
        {"_id": "missing"},
        deleted("garbage", "not-a-date"),
        deleted("old", "2020-01-01T00:00:00.000Z"),
        deleted("number", 12345),
    ]

    result = sweeper.sweep(records, cutoff_ms=parse_timestamp(CUTOFF))

    assert [r["_id"] for r in result.remaining] == ["missing", "garbage", "number"]
    assert result.stats.skipped_invalid == 3
    assert result.stats.total == 4


def test_survivors_keep_disk_order(sweeper):
    """Test remaining records are not reordered by age."""
    records = [
        deleted("c", "2030-03-01T00:00:00.000Z"),
        deleted("x", "2001-01-01T00:00:00.000Z"),
        deleted("a", "2030-01-01T00:00:00.000Z"),
        deleted("b", "2030-02-01T00:00:00.000Z"),
    ]

    result = sweeper.sweep(records, cutoff_ms=parse_timestamp(CUTOFF))

    assert [r["_id"] for r in result.remaining] == ["c", "a", "b"]


def test_prune_all(sweeper):
    """Test prune-all removes everything including invalid entries."""
    records = [deleted("a", CUTOFF), {"_id": "b"}, deleted("c", "junk")]

    result = sweeper.sweep(records, prune_all=True)

    assert result.remaining == []
    assert result.stats.to_dict() == {
        "total": 3,
        "removed": 3,
        "remaining": 0,
        "skipped_invalid": 0,
        "cutoff": None,
    }


def test_empty_log(sweeper):
    """Test sweeping nothing."""
    result = sweeper.sweep([], cutoff_ms=0)

    assert result.remaining == []
    assert result.stats.total == 0


def test_cutoff_required(sweeper):
    """Test an age sweep needs a cutoff."""
    with pytest.raises(ValueError):
        sweeper.sweep([deleted("a", CUTOFF)])
