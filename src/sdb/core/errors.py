"""Exception hierarchy for SDB.

Every failure raised by the store is a typed ``SDBError`` carrying a stable
error code, a suggestion for the caller and a machine-readable context map.
``Outcome`` wraps a call at the outermost boundary so callers can map a
failure to a process exit status without catching exceptions themselves.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Stable taxonomy tags attached to every SDBError."""

    MISSING_REQUIRED_OPTION = "MISSING_REQUIRED_OPTION"
    INVALID_INPUT = "INVALID_INPUT"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_EXISTS = "RESOURCE_EXISTS"
    OPERATION_FAILED = "OPERATION_FAILED"
    SAFETY_CHECK_FAILED = "SAFETY_CHECK_FAILED"
    SCHEMA_VALIDATION_FAILED = "SCHEMA_VALIDATION_FAILED"
    LOCK_FAILED = "LOCK_FAILED"
    INVALID_FILTER = "INVALID_FILTER"
    MALFORMED_DATA = "MALFORMED_DATA"
    DATABASE_NOT_INITIALIZED = "DATABASE_NOT_INITIALIZED"


class ExitCode(IntEnum):
    """Process exit codes a CLI layer maps errors onto."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_USAGE = 2
    PERMISSION_DENIED = 3
    NOT_FOUND = 4


class SDBError(Exception):
    """Base exception for all SDB errors."""

    code: ErrorCode = ErrorCode.OPERATION_FAILED
    exit_code: ExitCode = ExitCode.GENERAL_ERROR
    default_suggestion: str = "Check the error details and try again"

    def __init__(
        self,
        message: str,
        *,
        suggestion: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion or self.default_suggestion
        self.context: dict[str, Any] = dict(context or {})

    def to_response(self, debug: bool = False) -> dict[str, Any]:
        """Return the structured error payload for this failure."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "suggestion": self.suggestion,
            "context": self.context,
        }
        if debug:
            error["stack"] = "".join(
                traceback.format_exception(type(self), self, self.__traceback__)
            )
        return {"success": False, "error": error}


class NotInitializedError(SDBError):
    """Raised when a database folder has no schema."""

    code = ErrorCode.DATABASE_NOT_INITIALIZED
    exit_code = ExitCode.NOT_FOUND

    def __init__(self, folder: str):
        super().__init__(
            f"Database not initialized at '{folder}'",
            suggestion="Initialize the database with a schema first",
            context={"folder": folder},
        )


class NotFoundError(SDBError):
    """Raised when a record id or a file is missing."""

    code = ErrorCode.RESOURCE_NOT_FOUND
    exit_code = ExitCode.NOT_FOUND

    @classmethod
    def resource(cls, kind: str, ident: str, path: str | None = None) -> NotFoundError:
        return cls(
            f"{kind} '{ident}' not found",
            suggestion=f"Check if the path exists: {path}" if path else "Verify the ID and try again",
            context={"type": kind, "id": ident, "path": path},
        )

    @classmethod
    def records(cls, ids: list[str], path: str | None = None) -> NotFoundError:
        return cls(
            f"Records not found: {', '.join(ids)}",
            suggestion=f"Check if the path exists: {path}" if path else "Verify the IDs and try again",
            context={"ids": list(ids), "path": path},
        )


class AlreadyExistsError(SDBError):
    """Raised when initializing over a live database without force."""

    code = ErrorCode.RESOURCE_EXISTS
    default_suggestion = "Use force to overwrite, or choose a different folder"


class LockError(SDBError):
    """Raised when the database lock cannot be acquired."""

    code = ErrorCode.LOCK_FAILED
    default_suggestion = "Another process may be writing. Wait and try again, or remove stale lock"

    def __init__(self, path: str, existing_lock: dict[str, Any] | None = None):
        super().__init__(
            "Failed to acquire database lock",
            context={"path": path, "existingLock": existing_lock},
        )


class MalformedDataError(SDBError):
    """Raised when a log line fails to parse."""

    code = ErrorCode.MALFORMED_DATA
    default_suggestion = "Inspect the log file and repair or remove the offending line"


class InvalidFilterError(SDBError):
    """Raised when a filter expression fails to parse."""

    code = ErrorCode.INVALID_FILTER
    exit_code = ExitCode.INVALID_USAGE

    def __init__(self, fragment: str, reason: str):
        super().__init__(
            f"Invalid filter expression: {reason}",
            suggestion='Check filter syntax. Use simple expressions like .field == "value"',
            context={"filter": fragment, "parseError": reason},
        )


class InvalidInputError(SDBError):
    """Raised for bad limits, orders, durations, ids, paths and field arguments."""

    code = ErrorCode.INVALID_INPUT
    exit_code = ExitCode.INVALID_USAGE
    default_suggestion = "Check the input format and try again"


class MissingOptionError(InvalidInputError):
    """Raised when an operation is called without one of its required options."""

    code = ErrorCode.MISSING_REQUIRED_OPTION

    def __init__(self, message: str, options: list[str]):
        super().__init__(
            message,
            suggestion=f"Provide one of: {', '.join(options)}",
            context={"options": list(options)},
        )


class SchemaValidationError(SDBError):
    """Raised when data fails schema validation."""

    code = ErrorCode.SCHEMA_VALIDATION_FAILED
    exit_code = ExitCode.INVALID_USAGE

    def __init__(self, errors: list[Any], context: dict[str, Any] | None = None):
        super().__init__(
            "Schema validation failed",
            suggestion="Check the data against the schema and correct any issues",
            context={"validationErrors": list(errors), **(context or {})},
        )
        self.errors = list(errors)


class SafetyCheckError(SDBError):
    """Raised when a destructive operation is attempted without force."""

    code = ErrorCode.SAFETY_CHECK_FAILED
    exit_code = ExitCode.PERMISSION_DENIED

    def __init__(self, operation: str, resource: str):
        super().__init__(
            "Destructive operation requires force",
            suggestion=f"Run with force to confirm {operation}",
            context={"operation": operation, "resource": resource},
        )


class OperationFailedError(SDBError):
    """Raised when an I/O operation fails."""

    code = ErrorCode.OPERATION_FAILED
    default_suggestion = "Check permissions and try again"

    def __init__(self, operation: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, context={"operation": operation, **(context or {})})


@dataclass
class Outcome(Generic[T]):
    """Result of running one store operation at the outermost boundary.

    Exactly one of ``value`` or ``error`` is meaningful; ``ok`` tells which.
    Non-SDB exceptions are wrapped as ``OperationFailedError`` so every
    failure carries a taxonomy tag.
    """

    ok: bool
    value: T | None = None
    error: SDBError | None = None
    debug: bool = field(default=False, repr=False)

    @classmethod
    def capture(cls, fn: Callable[..., T], *args: Any, debug: bool = False, **kwargs: Any) -> Outcome[T]:
        try:
            return cls(ok=True, value=fn(*args, **kwargs), debug=debug)
        except SDBError as e:
            return cls(ok=False, error=e, debug=debug)
        except Exception as e:
            wrapped = OperationFailedError(getattr(fn, "__name__", "operation"), str(e))
            wrapped.__traceback__ = e.__traceback__
            return cls(ok=False, error=wrapped, debug=debug)

    @property
    def exit_code(self) -> ExitCode:
        if self.ok or self.error is None:
            return ExitCode.SUCCESS
        return self.error.exit_code

    def unwrap(self) -> T:
        """Return the value or re-raise the captured error."""
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]

    def to_response(self) -> dict[str, Any]:
        if self.ok:
            to_response = getattr(self.value, "to_response", None)
            if callable(to_response):
                return to_response()
            return {"success": True, "data": self.value}
        assert self.error is not None
        return self.error.to_response(debug=self.debug)
