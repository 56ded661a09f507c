"""Filter expression engine.

Supports a small jq-like subset:

    select(.status == "pending" and .priority == "high")
    .age >= 21 or .vip
    .tags | contains("urgent")
    not .archived

Precedence, loosest first: ``or``, ``and``, then a single term. Parentheses
group sub-expressions. Field names are case-sensitive and prefixed by ``.``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from ..core.errors import InvalidFilterError
from ..core.types import Record

Predicate = Callable[[Record], bool]

MISSING = object()

_SELECT_RE = re.compile(r"^select\s*\((.*)\)$", re.DOTALL)
_CONTAINS_RE = re.compile(r"""^\.(\w+)\s*\|\s*contains\(\s*(["'])(.*)\2\s*\)$""", re.DOTALL)
_COMPARISON_RE = re.compile(r"^\.(\w+)\s*(==|!=|>=|<=|>|<)\s*(.+)$", re.DOTALL)
_EXISTS_RE = re.compile(r"^\.(\w+)$")
_NOT_EXISTS_RE = re.compile(r"^not\s+\.(\w+)$")
_NUMBER_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")

_KEYWORD_RES = {
    "or": re.compile(r"(?:^|\s+)or(?:\s+|$)"),
    "and": re.compile(r"(?:^|\s+)and(?:\s+|$)"),
}


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equal(a: Any, b: Any) -> bool:
    """Value and type equality; ints and floats are one number type."""
    if a is MISSING or b is MISSING:
        return a is b
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_number(a) and is_number(b):
        return a == b
    if a is None or b is None:
        return a is b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    # arrays and objects never equal a literal
    return False


_ORDERING = {
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
}


@dataclass(frozen=True)
class MatchAll:
    def __call__(self, record: Record) -> bool:
        return True


@dataclass(frozen=True)
class AnyOf:
    clauses: tuple[Predicate, ...]

    def __call__(self, record: Record) -> bool:
        return any(clause(record) for clause in self.clauses)


@dataclass(frozen=True)
class AllOf:
    clauses: tuple[Predicate, ...]

    def __call__(self, record: Record) -> bool:
        return all(clause(record) for clause in self.clauses)


@dataclass(frozen=True)
class Comparison:
    field: str
    op: str
    value: Any

    def __call__(self, record: Record) -> bool:
        actual = record.get(self.field, MISSING)
        if self.op == "==":
            return strict_equal(actual, self.value)
        if self.op == "!=":
            return not strict_equal(actual, self.value)
        # ordering is only defined between numbers
        if not (is_number(actual) and is_number(self.value)):
            return False
        return _ORDERING[self.op](actual, self.value)


@dataclass(frozen=True)
class Contains:
    field: str
    item: str

    def __call__(self, record: Record) -> bool:
        values = record.get(self.field)
        if not isinstance(values, list):
            return False
        return any(isinstance(v, str) and v == self.item for v in values)


@dataclass(frozen=True)
class Exists:
    field: str

    def __call__(self, record: Record) -> bool:
        return record.get(self.field) is not None


@dataclass(frozen=True)
class NotExists:
    field: str

    def __call__(self, record: Record) -> bool:
        return record.get(self.field) is None


def compile_filter(expression: str | None) -> Predicate:
    """Parse a filter expression into a predicate over one record.

    Raises:
        InvalidFilterError: If any fragment of the expression is not recognized
    """
    text = (expression or "").strip()
    if not text:
        return MatchAll()

    match = _SELECT_RE.match(text)
    if match and _is_balanced(match.group(1)):
        text = match.group(1).strip()
        if not text:
            raise InvalidFilterError(expression or "", "Empty select()")

    return _parse_or(text)


def apply_filter(records: Iterable[Record], expression: str | None) -> list[Record]:
    """Return the records matching expression, in their original order."""
    predicate = compile_filter(expression)
    return [r for r in records if predicate(r)]


def _parse_or(text: str) -> Predicate:
    parts = split_top_level(text, "or")
    if len(parts) > 1:
        return AnyOf(tuple(_parse_and(p) for p in parts))
    return _parse_and(text)


def _parse_and(text: str) -> Predicate:
    parts = split_top_level(text, "and")
    if len(parts) > 1:
        return AllOf(tuple(_parse_term(p) for p in parts))
    return _parse_term(text)


def _parse_term(text: str) -> Predicate:
    term = text.strip()
    if not term:
        raise InvalidFilterError(text, "Empty expression around operator")

    # parenthesized group
    if term.startswith("(") and term.endswith(")") and _is_balanced(term[1:-1]):
        return _parse_or(term[1:-1].strip())

    match = _CONTAINS_RE.match(term)
    if match:
        field, quote, raw = match.groups()
        return Contains(field, _unquote(quote + raw + quote))

    match = _COMPARISON_RE.match(term)
    if match:
        field, op, literal = match.groups()
        return Comparison(field, op, parse_literal(literal))

    match = _EXISTS_RE.match(term)
    if match:
        return Exists(match.group(1))

    match = _NOT_EXISTS_RE.match(term)
    if match:
        return NotExists(match.group(1))

    raise InvalidFilterError(term, "Unrecognized filter syntax")


def parse_literal(text: str) -> Any:
    """Parse a literal: quoted string, true/false, null, number, else bare string."""
    literal = text.strip()
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "\"'":
        return _unquote(literal)
    if literal == "true":
        return True
    if literal == "false":
        return False
    if literal == "null":
        return None
    if _NUMBER_RE.match(literal):
        if any(c in literal for c in ".eE"):
            return float(literal)
        return int(literal)
    return literal


def _unquote(literal: str) -> str:
    if literal[0] == '"':
        try:
            return json.loads(literal)
        except json.JSONDecodeError:
            return literal[1:-1]
    return literal[1:-1].replace("\\'", "'").replace("\\\\", "\\")


def split_top_level(text: str, keyword: str) -> list[str]:
    """Split text on a keyword outside quotes and parentheses.

    Raises:
        InvalidFilterError: If a side of the keyword is empty
    """
    pattern = _KEYWORD_RES[keyword]
    parts: list[str] = []
    start = 0
    depth = 0
    quote: str | None = None
    i = 0
    while i < len(text):
        char = text[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif depth == 0 and (i == 0 or char.isspace()):
            match = pattern.match(text, i)
            if match:
                parts.append(text[start:i])
                start = i = match.end()
                continue
        i += 1
    parts.append(text[start:])

    if len(parts) > 1 and any(not p.strip() for p in parts):
        raise InvalidFilterError(text, f"Missing operand for '{keyword}'")
    return [p.strip() for p in parts]


def _is_balanced(text: str) -> bool:
    """True if parentheses outside quotes never go negative and end at zero."""
    depth = 0
    quote: str | None = None
    i = 0
    while i < len(text):
        char = text[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
        i += 1
    return depth == 0 and quote is None
