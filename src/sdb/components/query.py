"""Query pipeline over an in-memory record set.

Applies, in fixed order: content filter, time windows, optional merge of
the deleted set, stable sort, limit.
"""

from __future__ import annotations

import functools
import json
import locale
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from ..core.errors import InvalidInputError
from ..core.types import CREATED_FIELD, DELETED_FIELD, ID_FIELD, TIMESTAMP_FIELDS, UPDATED_FIELD, Record
from .filter import MatchAll, Predicate, compile_filter, is_number
from .timeutil import Clock, now_ms, parse_duration_ms, parse_timestamp

logger = logging.getLogger(__name__)

SortOrder = Literal["asc", "desc"]

SORT_ALIASES = {
    "created": CREATED_FIELD,
    "updated": UPDATED_FIELD,
    "deleted": DELETED_FIELD,
    "id": ID_FIELD,
}


def normalize_sort_field(text: str | None) -> str | None:
    if text is None or not text.strip():
        return None
    name = text.strip()
    return SORT_ALIASES.get(name, name)


def normalize_sort_order(text: str | None) -> SortOrder:
    if text is None:
        return "asc"
    order = text.strip().lower()
    if order in ("asc", "desc"):
        return order  # type: ignore[return-value]
    raise InvalidInputError(f"Invalid order '{text}'. Use 'asc' or 'desc'.", context={"input": text})


def parse_limit(value: int | str | None) -> int | None:
    """Parse a non-negative integer limit; None means unbounded."""
    if value is None:
        return None
    error = InvalidInputError(
        f"Invalid limit '{value}'. Must be a non-negative integer.", context={"input": value}
    )
    if isinstance(value, bool):
        raise error
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise error
        number = int(value)
    else:
        text = str(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                as_float = float(text)
            except ValueError:
                raise error from None
            if not as_float.is_integer():
                raise error from None
            number = int(as_float)
    if number < 0:
        raise error
    return number


@dataclass(frozen=True)
class QueryOptions:
    """Validated query options.

    Build with ``QueryOptions.parse`` so every bad input is rejected before
    any file is read.
    """

    filter: str | None = None
    include_deleted: bool = False
    sort_field: str | None = None
    order: SortOrder = "asc"
    limit: int | None = None
    created_within_ms: int | None = None
    updated_within_ms: int | None = None
    deleted_within_ms: int | None = None
    predicate: Predicate = field(default_factory=MatchAll, compare=False, repr=False)

    @classmethod
    def parse(
        cls,
        *,
        filter: str | None = None,
        include_deleted: bool = False,
        sort: str | None = None,
        order: str | None = None,
        limit: int | str | None = None,
        created_within: str | None = None,
        updated_within: str | None = None,
        deleted_within: str | None = None,
    ) -> QueryOptions:
        if deleted_within is not None and not include_deleted:
            raise InvalidInputError(
                "deleted_within requires include_deleted", context={"deletedWithin": deleted_within}
            )
        return cls(
            filter=filter,
            include_deleted=include_deleted,
            sort_field=normalize_sort_field(sort),
            order=normalize_sort_order(order),
            limit=parse_limit(limit),
            created_within_ms=parse_duration_ms(created_within) if created_within is not None else None,
            updated_within_ms=parse_duration_ms(updated_within) if updated_within is not None else None,
            deleted_within_ms=parse_duration_ms(deleted_within) if deleted_within is not None else None,
            predicate=compile_filter(filter),
        )

    def windows(self) -> list[tuple[str, int]]:
        pairs = [
            (CREATED_FIELD, self.created_within_ms),
            (UPDATED_FIELD, self.updated_within_ms),
            (DELETED_FIELD, self.deleted_within_ms),
        ]
        return [(name, ms) for name, ms in pairs if ms is not None]


class QueryPipeline:
    """Filter, window, merge, sort and limit a loaded record set.

    Args:
        clock: Epoch-seconds clock used as "now" for time windows
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock

    def run(
        self,
        active: Sequence[Record],
        deleted: Sequence[Record] | None,
        options: QueryOptions,
    ) -> list[Record]:
        live, legacy = split_legacy_deleted(active)
        now = now_ms(self._clock)

        results = self._select(live, options, now)
        if options.include_deleted:
            deleted_set = merge_deleted_sets(deleted or [], legacy)
            active_ids = {r.get(ID_FIELD) for r in live}
            unique_deleted = [r for r in deleted_set if r.get(ID_FIELD) not in active_ids]
            results.extend(self._select(unique_deleted, options, now))

        if options.sort_field:
            results = sort_records(results, options.sort_field, options.order)
        results = apply_limit(results, options.limit)
        logger.debug(f"Query matched {len(results)} records")
        return results

    def _select(self, records: Iterable[Record], options: QueryOptions, now: int) -> list[Record]:
        selected = [r for r in records if options.predicate(r)]
        for field_name, within_ms in options.windows():
            selected = filter_by_time(selected, field_name, within_ms, now)
        return selected


def split_legacy_deleted(active: Iterable[Record]) -> tuple[list[Record], list[Record]]:
    """Separate live records from legacy deleted ones kept in the active log."""
    live: list[Record] = []
    legacy: list[Record] = []
    for record in active:
        (legacy if record.get(DELETED_FIELD) else live).append(record)
    return live, legacy


def merge_deleted_sets(deleted: Iterable[Record], legacy: Iterable[Record] = ()) -> list[Record]:
    """Combine deleted-log entries and legacy deleted records, one per id.

    The deleted log wins over a legacy copy; within one source the first
    occurrence wins.
    """
    seen: set[Any] = set()
    merged: list[Record] = []
    for record in list(deleted) + list(legacy):
        record_id = record.get(ID_FIELD)
        if record_id in seen:
            continue
        seen.add(record_id)
        merged.append(record)
    return merged


def filter_by_time(records: Iterable[Record], field_name: str, within_ms: int, now: int) -> list[Record]:
    """Keep records whose timestamp field is within the last within_ms."""
    cutoff = now - within_ms
    kept = []
    for record in records:
        ts = parse_timestamp(record.get(field_name))
        if ts is not None and ts >= cutoff:
            kept.append(record)
    return kept


def apply_limit(records: list[Record], limit: int | None) -> list[Record]:
    if limit is None:
        return records
    return records[:limit]


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, sort_keys=True)


def _compare_present(a: Any, b: Any, field_name: str) -> int:
    """Compare two non-null values; timestamps, numbers, booleans, then text."""
    if field_name in TIMESTAMP_FIELDS:
        at, bt = parse_timestamp(a), parse_timestamp(b)
        if at is not None and bt is not None:
            return (at > bt) - (at < bt)
    if is_number(a) and is_number(b):
        return (a > b) - (a < b)
    if isinstance(a, bool) and isinstance(b, bool):
        return int(a) - int(b)
    return locale.strcoll(_as_text(a), _as_text(b))


def _rank(value: Any, field_name: str) -> int:
    """0 for sortable values, 1 for values that always sort last."""
    if value is None:
        return 1
    if field_name in TIMESTAMP_FIELDS and parse_timestamp(value) is None:
        return 1
    return 0


def sort_records(records: Sequence[Record], field_name: str, order: SortOrder = "asc") -> list[Record]:
    """Stable sort by one field.

    Missing, null and (for timestamp fields) unparseable values sort after
    every valid value in both directions. Ties keep original order.
    """
    direction = -1 if order == "desc" else 1

    def compare(x: tuple[int, Record], y: tuple[int, Record]) -> int:
        (ix, rx), (iy, ry) = x, y
        a, b = rx.get(field_name), ry.get(field_name)
        ra, rb = _rank(a, field_name), _rank(b, field_name)
        if ra != rb:
            return ra - rb
        if ra == 0:
            cmp = _compare_present(a, b, field_name)
        elif a is not None and b is not None:
            # both unparseable timestamps
            cmp = locale.strcoll(_as_text(a), _as_text(b))
        else:
            cmp = 0
        if cmp:
            return cmp * direction
        return ix - iy

    indexed = list(enumerate(records))
    indexed.sort(key=functools.cmp_to_key(compare))
    return [record for _, record in indexed]
