"""Garbage collection of the deleted log.

Permanently prunes soft-deleted records by age, keeping entries whose
``_deleted`` timestamp is missing or unparseable.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field

from sortedcontainers import SortedKeyList

from ..core.types import DELETED_FIELD, Record
from .timeutil import format_iso, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GcStats:
    """Counts reported by a sweep."""

    total: int
    removed: int
    remaining: int
    skipped_invalid: int
    cutoff: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class GcResult:
    remaining: list[Record]
    stats: GcStats
    removed: list[Record] = field(default_factory=list)


class GcSweeper:
    """Computes which deleted records are old enough to purge.

    Invariants:
        - A record with a valid ``_deleted`` <= cutoff is removed
        - A record with a missing or unparseable ``_deleted`` survives an age sweep
        - Survivors keep their on-disk order
        - sweep() never touches the filesystem
    """

    def sweep(
        self,
        records: Sequence[Record],
        cutoff_ms: int | None = None,
        prune_all: bool = False,
    ) -> GcResult:
        """Split records into survivors and removals.

        Args:
            records: Deleted-log entries in on-disk order
            cutoff_ms: Epoch ms; entries deleted at or before it are removed
            prune_all: Remove every entry regardless of its timestamp
        """
        if prune_all:
            logger.info(f"GC removing all {len(records)} deleted records")
            return GcResult(
                remaining=[],
                removed=list(records),
                stats=GcStats(total=len(records), removed=len(records), remaining=0, skipped_invalid=0),
            )
        if cutoff_ms is None:
            raise ValueError("cutoff_ms is required unless prune_all is set")

        # (deleted_ms, position) for every entry with a usable timestamp
        by_age = SortedKeyList(key=lambda item: item[0])
        skipped_invalid = 0
        for position, record in enumerate(records):
            deleted_ms = parse_timestamp(record.get(DELETED_FIELD))
            if deleted_ms is None:
                skipped_invalid += 1
                continue
            by_age.add((deleted_ms, position))

        expired = by_age[: by_age.bisect_key_right(cutoff_ms)]
        expired_positions = {position for _, position in expired}

        remaining = [r for i, r in enumerate(records) if i not in expired_positions]
        removed = [r for i, r in enumerate(records) if i in expired_positions]

        if skipped_invalid:
            logger.warning(f"GC kept {skipped_invalid} deleted records with missing or invalid {DELETED_FIELD}")
        stats = GcStats(
            total=len(records),
            removed=len(removed),
            remaining=len(remaining),
            skipped_invalid=skipped_invalid,
            cutoff=format_iso(cutoff_ms),
        )
        logger.info(f"GC cutoff {stats.cutoff}: removing {stats.removed} of {stats.total} deleted records")
        return GcResult(remaining=remaining, removed=removed, stats=stats)
