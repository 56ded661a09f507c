"""Protocol definitions for the pluggable seams of SDB."""

from .lock import DatabaseLock
from .store import RecordLog
from .validator import IdFactory, SchemaValidatorFactory

__all__ = ["DatabaseLock", "RecordLog", "IdFactory", "SchemaValidatorFactory"]
