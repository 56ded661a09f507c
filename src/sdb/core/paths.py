"""Path resolution for a database folder."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .types import DATA_FILE, DELETED_FILE, LOCK_FILE, SCHEMA_FILE, TEMP_SUFFIX


@dataclass(frozen=True)
class DatabasePaths:
    """Canonical absolute paths for one database folder.

    Temp files live in the same directory as their target so the final
    rename never crosses a filesystem boundary.
    """

    folder: Path
    data_file: Path
    deleted_file: Path
    schema_file: Path
    lock_file: Path
    temp_file: Path
    deleted_temp_file: Path

    @classmethod
    def resolve(cls, folder: str | Path) -> DatabasePaths:
        root = Path(folder).expanduser().resolve()
        return cls(
            folder=root,
            data_file=root / DATA_FILE,
            deleted_file=root / DELETED_FILE,
            schema_file=root / SCHEMA_FILE,
            lock_file=root / LOCK_FILE,
            temp_file=root / (DATA_FILE + TEMP_SUFFIX),
            deleted_temp_file=root / (DELETED_FILE + TEMP_SUFFIX),
        )


def get_database_paths(folder: str | Path) -> DatabasePaths:
    return DatabasePaths.resolve(folder)
