"""Schema validation adapter and input checks.

The structural validator is pluggable; the default factory compiles a
JSON Schema with the ``jsonschema`` library. Reserved fields are always
stripped before data reaches a validator.
"""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator, FormatChecker

from ..core.errors import InvalidInputError
from ..core.types import RESERVED_SIGIL, Record, is_reserved

ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_ID_LENGTH = 128


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


Validator = Callable[[Any], ValidationResult]
ValidatorFactory = Callable[[dict[str, Any]], Validator]


def compile_schema_validator(schema: dict[str, Any]) -> Validator:
    """Compile a JSON Schema into a validate(data) callable.

    The ``$schema`` declaration is ignored. Error messages are
    ``"/path: message"`` or just ``message`` at the document root.
    """
    schema_for_validation = {k: v for k, v in schema.items() if k != "$schema"}
    validator = Draft202012Validator(schema_for_validation, format_checker=FormatChecker())

    def validate(data: Any) -> ValidationResult:
        errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
        if not errors:
            return ValidationResult(valid=True)
        messages = []
        for error in errors:
            path = "".join(f"/{part}" for part in error.absolute_path)
            messages.append(f"{path}: {error.message}" if path else error.message)
        return ValidationResult(valid=False, errors=messages)

    return validate


def validate_against_schema(data: Any, schema: dict[str, Any]) -> ValidationResult:
    return compile_schema_validator(schema)(data)


def validate_schema_document(schema: Any) -> None:
    """Check the minimal structure a database schema must have.

    Raises:
        InvalidInputError: Not an object schema with properties, or a property uses the reserved sigil
    """
    if not isinstance(schema, dict):
        raise InvalidInputError("Schema must be a JSON object", context={"type": type(schema).__name__})
    if schema.get("type") != "object":
        raise InvalidInputError("Schema must have type 'object'", context={"type": schema.get("type")})
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        raise InvalidInputError("Schema must have properties defined")
    reserved = [name for name in properties if is_reserved(name)]
    if reserved:
        raise InvalidInputError(
            f"Schema properties may not start with '{RESERVED_SIGIL}': {', '.join(reserved)}",
            context={"fields": reserved},
        )


def apply_schema_defaults(data: Record, schema: dict[str, Any]) -> Record:
    """Return data with top-level schema defaults filled in for absent fields."""
    result = dict(data)
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return result
    for name, prop in properties.items():
        if name not in result and isinstance(prop, dict) and "default" in prop:
            result[name] = copy.deepcopy(prop["default"])
    return result


def parse_field_args(args: Sequence[str]) -> Record:
    """Parse ``["--name", "value", ...]`` pairs into a field map.

    Values are parsed as JSON when possible, else kept as strings.
    """
    fields: Record = {}
    for i in range(0, len(args), 2):
        key = args[i]
        if not key or not key.startswith("--"):
            raise InvalidInputError(f"Expected --field, got '{key}'", context={"position": i})
        name = key[2:]
        if not name:
            raise InvalidInputError("Field name cannot be empty", context={"position": i})
        if is_reserved(name):
            raise InvalidInputError(f"Cannot set reserved field '{name}'", context={"field": name})
        if i + 1 >= len(args):
            raise InvalidInputError(f"Missing value for field '{name}'", context={"field": name})
        value = args[i + 1]
        try:
            fields[name] = json.loads(value)
        except ValueError:
            fields[name] = value
    return fields


def check_user_fields(fields: Record) -> None:
    reserved = [name for name in fields if is_reserved(name)]
    if reserved:
        raise InvalidInputError(
            f"Cannot set reserved field '{reserved[0]}'", context={"field": reserved[0], "fields": reserved}
        )


def validate_id(record_id: Any) -> None:
    if not isinstance(record_id, str) or not record_id.strip():
        raise InvalidInputError("ID cannot be empty", context={"id": record_id})
    if not ID_RE.match(record_id):
        raise InvalidInputError("ID contains invalid characters", context={"id": record_id})
    if len(record_id) > MAX_ID_LENGTH:
        raise InvalidInputError(
            f"ID too long (max {MAX_ID_LENGTH} characters)", context={"id": record_id, "length": len(record_id)}
        )


def validate_folder_path(path: Any) -> None:
    text = str(path) if path is not None else ""
    if not text.strip():
        raise InvalidInputError("Folder path cannot be empty", context={"path": text})
    normalized = text.replace("\\", "/")
    if ".." in normalized or "//" in normalized:
        raise InvalidInputError("Path traversal not allowed", context={"path": text})
    if any(c in text for c in ("\0", "\n", "\r")):
        raise InvalidInputError("Invalid characters in path", context={"path": text})
