"""Protocol definition for the record logs."""

from __future__ import annotations

from typing import Any, Protocol

from ..core.types import Record


class RecordLog(Protocol):
    """Active and deleted logs of one database folder."""

    def is_initialized(self) -> bool:
        ...

    def ensure_exists(self) -> None:
        """Raise NotInitializedError if the folder has no schema."""
        ...

    def load_schema(self) -> dict[str, Any]:
        ...

    def initialize(self, schema: dict[str, Any], force: bool = False) -> None:
        ...

    def load_active(self) -> list[Record]:
        """Return active records in on-disk order."""
        ...

    def load_deleted(self) -> list[Record]:
        """Return deleted records in on-disk order, tolerating a torn tail."""
        ...

    def write_full(self, records: list[Record]) -> None:
        """Atomically replace the active log.

        Invariants:
            - Readers see either the old or the new file, never a mix
        """
        ...

    def write_deleted(self, records: list[Record]) -> None:
        """Atomically replace the deleted log."""
        ...

    def append_deleted(self, record: Record) -> None:
        """Append one record to the deleted log."""
        ...
