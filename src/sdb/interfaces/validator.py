"""Protocol definitions for external collaborators: schema validation and ids."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from ..components.validation import ValidationResult


class SchemaValidatorFactory(Protocol):
    """compile(schema) -> validate(data) -> ValidationResult.

    Callers never pass reserved fields to the compiled validator.
    """

    def __call__(self, schema: dict[str, Any]) -> Callable[[Any], ValidationResult]:
        ...


class IdFactory(Protocol):
    """Produces globally unique, lexicographically sortable record ids."""

    def __call__(self) -> str:
        ...
