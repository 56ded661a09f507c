"""Unit tests for the filter expression engine."""

import pytest

from sdb.components.filter import apply_filter, compile_filter, parse_literal, split_top_level, strict_equal
from sdb.core.errors import InvalidFilterError


@pytest.fixture
def records():
    """Sample records covering the value types filters see."""
    return [
        {"_id": "1", "status": "pending", "priority": "high", "age": 30, "tags": ["urgent", "home"], "vip": True},
        {"_id": "2", "status": "pending", "priority": "low", "age": 17, "tags": ["work"], "vip": False},
        {"_id": "3", "status": "done", "priority": "high", "age": "thirty", "tags": "urgent"},
        {"_id": "4", "status": "done", "priority": "medium", "age": 21.0, "note": None},
    ]


def ids(records):
    return [r["_id"] for r in records]


def test_empty_filter_matches_everything(records):
    """Test empty and missing expressions match all records."""
    assert ids(apply_filter(records, "")) == ["1", "2", "3", "4"]
    assert ids(apply_filter(records, None)) == ["1", "2", "3", "4"]
    assert ids(apply_filter(records, "   ")) == ["1", "2", "3", "4"]


def test_select_wrapper_with_and(records):
    """Test a select() wrapped conjunction."""
    result = apply_filter(records, 'select(.status == "pending" and .priority == "high")')

    assert ids(result) == ["1"]


def test_or_binds_looser_than_and(records):
    """Test a or b and c parses as a or (b and c)."""
    result = apply_filter(records, '.status == "done" or .priority == "high" and .age > 20')

    assert ids(result) == ["1", "3", "4"]


def test_parentheses_group(records):
    """Test parentheses override precedence."""
    result = apply_filter(records, '(.status == "done" or .priority == "high") and .age > 20')

    assert ids(result) == ["1", "4"]


def test_numeric_comparison_skips_non_numbers(records):
    """Test ordering is false when the field is not a number."""
    assert ids(apply_filter(records, ".age >= 21")) == ["1", "4"]
    assert ids(apply_filter(records, ".age < 21")) == ["2"]


def test_ordering_against_string_literal_is_false(records):
    """Test ordering with a non-numeric literal never matches."""
    assert apply_filter(records, '.status > "a"') == []


def test_contains(records):
    """Test contains requires an array field and exact membership."""
    assert ids(apply_filter(records, '.tags | contains("urgent")')) == ["1"]
    assert apply_filter(records, '.tags | contains("urg")') == []


def test_existence_and_negation(records):
    """Test .field and not .field treat null as absent."""
    assert ids(apply_filter(records, ".tags")) == ["1", "2", "3"]
    assert ids(apply_filter(records, "not .tags")) == ["4"]
    assert ids(apply_filter(records, "not .note")) == ["1", "2", "3", "4"]


def test_bool_literal_strict_equality(records):
    """Test booleans only equal booleans."""
    assert ids(apply_filter(records, ".vip == true")) == ["1"]
    assert ids(apply_filter(records, ".vip != true")) == ["2", "3", "4"]


def test_int_equals_float(records):
    """Test integers and floats compare as one number type."""
    assert ids(apply_filter(records, ".age == 21")) == ["4"]


def test_quoted_keywords_do_not_split(records):
    """Test 'and' and 'or' inside quotes are literal text."""
    data = [{"_id": "x", "title": "rock and roll"}, {"_id": "y", "title": "this or that"}]

    assert ids(apply_filter(data, '.title == "rock and roll"')) == ["x"]
    assert ids(apply_filter(data, ".title == 'this or that'")) == ["y"]


def test_single_quoted_string_literal():
    """Test single quoted literals are strings."""
    assert parse_literal("'high'") == "high"


@pytest.mark.parametrize(
    "text,expected",
    [
        ('"42"', "42"),
        ("42", 42),
        ("-3.5", -3.5),
        ("+1", 1),
        ("+2.5", 2.5),
        ("1e3", 1000.0),
        ("true", True),
        ("false", False),
        ("null", None),
        ("pending", "pending"),
    ],
)
def test_parse_literal(text, expected):
    """Test literal parsing rules."""
    value = parse_literal(text)
    assert value == expected
    assert type(value) is type(expected)


def test_strict_equal_rules():
    """Test strict equality across types."""
    assert strict_equal(1, 1.0)
    assert not strict_equal(1, True)
    assert not strict_equal(0, False)
    assert not strict_equal("1", 1)
    assert not strict_equal(["a"], "a")
    assert strict_equal(None, None)


@pytest.mark.parametrize(
    "expression",
    [
        ".status ~ 1",
        "status == 1",
        ".a == 1 and",
        "or .a == 1",
        ".a == 1 and and .b == 2",
        "select()",
        "()",
    ],
)
def test_invalid_syntax_raises(expression):
    """Test unrecognized fragments raise InvalidFilterError."""
    with pytest.raises(InvalidFilterError):
        compile_filter(expression)


def test_invalid_filter_names_fragment():
    """Test the error context carries the offending fragment."""
    with pytest.raises(InvalidFilterError) as exc_info:
        compile_filter('.a == 1 and .b ~ 2')

    assert exc_info.value.context["filter"] == ".b ~ 2"


def test_split_top_level_respects_parentheses():
    """Test splitting ignores keywords nested in parentheses."""
    parts = split_top_level('(.a == 1 or .b == 2) or .c == "x or y"', "or")

    assert parts == ["(.a == 1 or .b == 2)", '.c == "x or y"']
