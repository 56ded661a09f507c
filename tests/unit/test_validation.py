"""Unit tests for the schema validation adapter and input checks."""

import pytest

from sdb.components.validation import (
    apply_schema_defaults,
    check_user_fields,
    compile_schema_validator,
    parse_field_args,
    validate_against_schema,
    validate_folder_path,
    validate_id,
    validate_schema_document,
)
from sdb.core.errors import InvalidInputError

SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "priority": {"type": "string", "enum": ["low", "medium", "high"], "default": "medium"},
        "tags": {"type": "array", "items": {"type": "string"}, "default": []},
        "due": {"type": "string", "format": "date"},
    },
    "required": ["title"],
}


def test_valid_data():
    """Test conforming data passes."""
    result = validate_against_schema({"title": "Buy milk", "priority": "high"}, SCHEMA)

    assert result.valid
    assert result.errors == []


def test_missing_required_reported_at_root():
    """Test root-level errors have no path prefix."""
    result = validate_against_schema({"priority": "low"}, SCHEMA)

    assert not result.valid
    assert result.errors == ["'title' is a required property"]


def test_nested_error_has_path():
    """Test errors below the root are prefixed with their path."""
    result = validate_against_schema({"title": "x", "tags": ["ok", 3]}, SCHEMA)

    assert not result.valid
    assert result.errors[0].startswith("/tags/1: ")


def test_compiled_validator_is_reusable():
    """Test one compiled validator checks many documents."""
    validate = compile_schema_validator(SCHEMA)

    assert validate({"title": "a"}).valid
    assert not validate({"title": ""}).valid
    assert validate({"title": "b"}).valid


def test_apply_defaults_fills_absent_fields_only():
    """Test schema defaults are applied without overriding given values."""
    data = apply_schema_defaults({"title": "x", "priority": "high"}, SCHEMA)

    assert data == {"title": "x", "priority": "high", "tags": []}


def test_defaults_are_copied():
    """Test mutable defaults are not shared between records."""
    first = apply_schema_defaults({"title": "a"}, SCHEMA)
    first["tags"].append("mutated")

    assert apply_schema_defaults({"title": "b"}, SCHEMA)["tags"] == []


class TestSchemaDocument:
    """Structural checks on a database schema."""

    def test_accepts_object_schema(self):
        """Test a well formed schema passes."""
        validate_schema_document(SCHEMA)

    @pytest.mark.parametrize(
        "schema",
        [
            [],
            {"type": "array", "properties": {}},
            {"type": "object"},
            {"type": "object", "properties": {"_secret": {"type": "string"}}},
        ],
    )
    def test_rejects(self, schema):
        """Test malformed schemas and reserved property names are rejected."""
        with pytest.raises(InvalidInputError):
            validate_schema_document(schema)


class TestFieldArgs:
    """Parsing of --name value argument pairs."""

    def test_json_values_with_string_fallback(self):
        """Test values parse as JSON and fall back to strings."""
        fields = parse_field_args(["--title", "Buy milk", "--count", "3", "--tags", '["a","b"]', "--done", "false"])

        assert fields == {"title": "Buy milk", "count": 3, "tags": ["a", "b"], "done": False}

    def test_quoted_number_stays_string(self):
        """Test a JSON string literal keeps its type."""
        assert parse_field_args(["--code", '"007"']) == {"code": "007"}

    @pytest.mark.parametrize(
        "args",
        [
            ["title", "x"],
            ["--", "x"],
            ["--_id", "x"],
            ["--title"],
        ],
    )
    def test_rejects(self, args):
        """Test malformed pairs and reserved names are rejected."""
        with pytest.raises(InvalidInputError):
            parse_field_args(args)


def test_check_user_fields_rejects_reserved():
    """Test reserved fields cannot be set directly."""
    check_user_fields({"title": "x"})
    with pytest.raises(InvalidInputError):
        check_user_fields({"title": "x", "_created": "2024-01-01"})


@pytest.mark.parametrize("record_id", ["01HXYZ", "abc_def-123", "a" * 128])
def test_valid_ids(record_id):
    """Test accepted id shapes."""
    validate_id(record_id)


@pytest.mark.parametrize("record_id", ["", "  ", "a/b", "a b", "a.b", "a" * 129, None, 42])
def test_invalid_ids(record_id):
    """Test rejected id shapes."""
    with pytest.raises(InvalidInputError):
        validate_id(record_id)


@pytest.mark.parametrize("path", ["", "   ", "../etc", "a//b", "db\nname", "db\0"])
def test_invalid_folder_paths(path):
    """Test unsafe folder paths are rejected."""
    with pytest.raises(InvalidInputError):
        validate_folder_path(path)


def test_valid_folder_path():
    """Test an ordinary path passes."""
    validate_folder_path("/tmp/my-db")
