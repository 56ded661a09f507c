"""JSON Lines record codec.

One record per line, compact JSON, newline terminated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from ..core.errors import MalformedDataError
from ..core.types import Record

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 100


def encode_record(record: Record) -> str:
    """Serialize one record as a newline-terminated compact JSON line."""
    return json.dumps(record, ensure_ascii=False, separators=(",", ":")) + "\n"


def encode_records(records: Iterable[Record]) -> str:
    return "".join(encode_record(r) for r in records)


def decode_record(line: str, line_no: int, source: str | None = None) -> Record:
    """Parse one log line.

    Raises:
        MalformedDataError: If the line is not a JSON object
    """
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedDataError(
            f"Invalid JSON on line {line_no}",
            context={"line": line_no, "content": line[:SNIPPET_CHARS], "path": source, "parseError": str(e)},
        ) from None
    if not isinstance(obj, dict):
        raise MalformedDataError(
            f"Line {line_no} is not a JSON object",
            context={"line": line_no, "content": line[:SNIPPET_CHARS], "path": source},
        )
    return obj


def decode_records(
    data: bytes | str, *, tolerate_torn_tail: bool = False, source: str | None = None
) -> list[Record]:
    """Parse a JSON Lines document, preserving line order.

    Lines are decoded from UTF-8 one at a time, so a line cut inside a
    multi-byte character is malformed like any other. Blank lines are
    skipped. With ``tolerate_torn_tail`` a malformed final line lacking a
    trailing newline is treated as an interrupted append and dropped
    instead of raising.

    Invariants:
        - Line numbers in errors are 1-based physical line numbers
        - A malformed line anywhere but the unterminated tail always raises
    """
    raw = data.encode("utf-8") if isinstance(data, str) else data
    lines = raw.split(b"\n")
    # data ending in "\n" yields a final empty element; otherwise the last
    # element is an unterminated tail
    has_unterminated_tail = not raw.endswith(b"\n") and raw != b""
    last_index = len(lines) - 1

    records: list[Record] = []
    for index, line in enumerate(lines):
        if not line.strip():
            continue
        try:
            records.append(_decode_line(line, index + 1, source))
        except MalformedDataError:
            if tolerate_torn_tail and has_unterminated_tail and index == last_index:
                logger.warning(
                    f"Dropping partial record at end of {source or 'log'} (line {index + 1})"
                )
                break
            raise
    return records


def _decode_line(raw: bytes, line_no: int, source: str | None) -> Record:
    try:
        line = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedDataError(
            f"Invalid UTF-8 on line {line_no}",
            context={
                "line": line_no,
                "content": raw[:SNIPPET_CHARS].decode("utf-8", errors="replace"),
                "path": source,
                "parseError": str(e),
            },
        ) from None
    return decode_record(line, line_no, source)
