"""Record store implementation.

Loads the active and deleted logs into memory and writes them back with
either an atomic full rewrite (temp file + rename) or a single-line append.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from ..core.errors import AlreadyExistsError, MalformedDataError, NotInitializedError, OperationFailedError
from ..core.paths import DatabasePaths
from ..core.types import Record
from .codec import decode_record, decode_records, encode_record, encode_records

logger = logging.getLogger(__name__)


class RecordStore:
    """File-backed store for one database folder.

    Args:
        paths: Resolved paths of the database

    Invariants:
        - Full rewrites are atomic via write-temp-then-rename
        - Readers never observe a half-written log
        - On-disk line order is preserved by every load
        - Only a lock holder mutates the logs (by convention)
    """

    def __init__(self, paths: DatabasePaths):
        self.paths = paths

    def is_initialized(self) -> bool:
        return self.paths.schema_file.exists()

    def ensure_exists(self) -> None:
        """Raise NotInitializedError unless the folder holds a schema."""
        if not self.is_initialized():
            raise NotInitializedError(str(self.paths.folder))

    def load_schema(self) -> dict[str, Any]:
        try:
            with open(self.paths.schema_file, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise NotInitializedError(str(self.paths.folder)) from None
        except (OSError, ValueError) as e:
            raise OperationFailedError(
                "load_schema", f"Failed to load schema: {e}", {"path": str(self.paths.schema_file)}
            ) from e

    def initialize(self, schema: dict[str, Any], force: bool = False) -> None:
        """Create the folder, write the schema and create empty logs."""
        folder = self.paths.folder
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OperationFailedError("initialize", f"Failed to create folder: {e}", {"path": str(folder)}) from e

        if self.is_initialized() and not force:
            raise AlreadyExistsError(
                f"Database '{folder}' already exists",
                context={"type": "Database", "id": str(folder), "path": str(self.paths.schema_file)},
            )

        self._atomic_write(
            self.paths.schema_file,
            self.paths.schema_file.with_name(self.paths.schema_file.name + ".tmp"),
            json.dumps(schema, indent=2, ensure_ascii=False),
            "write_schema",
        )
        for path in (self.paths.data_file, self.paths.deleted_file):
            if not path.exists():
                path.touch()
        logger.info(f"Initialized database at {folder}")

    def load_active(self) -> list[Record]:
        """Load every record of the active log in on-disk order."""
        return self._load(self.paths.data_file, tolerate_torn_tail=False)

    def load_deleted(self) -> list[Record]:
        """Load the deleted log, dropping an interrupted trailing append."""
        return self._load(self.paths.deleted_file, tolerate_torn_tail=True)

    def write_full(self, records: list[Record]) -> None:
        """Atomically replace the active log with records."""
        self._atomic_write(self.paths.data_file, self.paths.temp_file, encode_records(records), "write_records")
        logger.debug(f"Wrote {len(records)} records to {self.paths.data_file}")

    def write_deleted(self, records: list[Record]) -> None:
        """Atomically replace the deleted log with records."""
        self._atomic_write(
            self.paths.deleted_file, self.paths.deleted_temp_file, encode_records(records), "write_deleted_records"
        )
        logger.debug(f"Wrote {len(records)} records to {self.paths.deleted_file}")

    def append_deleted(self, record: Record) -> None:
        """Append one record to the deleted log.

        An unterminated tail left by a crashed append is repaired first: a
        tail that parses is terminated, garbage is truncated, so the new line
        never merges with it.
        """
        path = self.paths.deleted_file
        line = encode_record(record).encode("utf-8")
        try:
            with open(path, "a+b") as f:
                f.seek(0, os.SEEK_END)
                size = f.tell()
                if size > 0:
                    f.seek(size - 1)
                    if f.read(1) != b"\n":
                        self._repair_tail(f)
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise OperationFailedError(
                "append_deleted_record", f"Failed to append deleted record: {e}", {"path": str(path)}
            ) from e
        logger.debug(f"Appended record {record.get('_id')} to {path}")

    def _repair_tail(self, f) -> None:
        f.seek(0)
        data = f.read()
        cut = data.rfind(b"\n") + 1
        tail = data[cut:]
        try:
            decode_record(tail.decode("utf-8"), 0)
        except (MalformedDataError, UnicodeDecodeError):
            logger.warning(f"Truncating partial record at end of {self.paths.deleted_file}")
            f.truncate(cut)
        else:
            f.seek(0, os.SEEK_END)
            f.write(b"\n")

    def _load(self, path: Path, *, tolerate_torn_tail: bool) -> list[Record]:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise OperationFailedError("load_records", f"Failed to load records: {e}", {"path": str(path)}) from e
        return decode_records(data, tolerate_torn_tail=tolerate_torn_tail, source=str(path))

    def _atomic_write(self, target: Path, temp_path: Path, content: str, operation: str) -> None:
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            # Atomic rename
            os.replace(temp_path, target)
        except OSError as e:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                logger.debug(f"Could not remove temp file {temp_path}")
            raise OperationFailedError(operation, f"Failed to write {target.name}: {e}", {"path": str(target)}) from e
