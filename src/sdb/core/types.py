"""Common type definitions for SDB.

Defines the record shape, reserved field names and on-disk file names.
"""

from __future__ import annotations

from typing import Any, TypedDict

# Core primitive types
Record = dict[str, Any]
Timestamp = str  # ISO 8601

# Reserved fields managed by the store; user fields may not use the sigil
RESERVED_SIGIL = "_"
ID_FIELD = "_id"
CREATED_FIELD = "_created"
UPDATED_FIELD = "_updated"
DELETED_FIELD = "_deleted"
TIMESTAMP_FIELDS = frozenset({CREATED_FIELD, UPDATED_FIELD, DELETED_FIELD})

# Files inside a database folder
SCHEMA_FILE = "schema.json"
DATA_FILE = "data.jsonl"
DELETED_FILE = "data.deleted.jsonl"
LOCK_FILE = ".sdb.lock"
TEMP_SUFFIX = ".tmp"


class LockInfo(TypedDict):
    """Contents of the lock file."""
    pid: int
    timestamp: Timestamp
    operation: str


def is_reserved(field_name: str) -> bool:
    return field_name.startswith(RESERVED_SIGIL)


def user_fields(record: Record) -> Record:
    """Return a copy of record without reserved fields."""
    return {k: v for k, v in record.items() if not is_reserved(k)}
