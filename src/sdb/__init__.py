"""SDB - schema-validated JSON-lines record store in Python."""

from .core.config import SDBConfig
from .core.errors import (
    SDBError,
    ErrorCode,
    ExitCode,
    Outcome,
    NotInitializedError,
    NotFoundError,
    AlreadyExistsError,
    LockError,
    MalformedDataError,
    InvalidFilterError,
    InvalidInputError,
    MissingOptionError,
    SchemaValidationError,
    SafetyCheckError,
    OperationFailedError,
)
from .core.database import Database, OperationResult
from .core.paths import DatabasePaths, get_database_paths
from .core.types import Record, LockInfo

__all__ = [
    "SDBConfig",
    "SDBError",
    "ErrorCode",
    "ExitCode",
    "Outcome",
    "NotInitializedError",
    "NotFoundError",
    "AlreadyExistsError",
    "LockError",
    "MalformedDataError",
    "InvalidFilterError",
    "InvalidInputError",
    "MissingOptionError",
    "SchemaValidationError",
    "SafetyCheckError",
    "OperationFailedError",
    "Database",
    "OperationResult",
    "DatabasePaths",
    "get_database_paths",
    "Record",
    "LockInfo",
]
