"""Coercion and comparison rules for query values.

Values are plain Python objects: ``None``, ``bool``, ``int``/``float`` and
``str``. Two values compare numerically when both parse as numbers and fall
back to a case-insensitive string comparison otherwise. None of the helpers
here raise on odd input; every combination has a defined result.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

# Display marker for an absent value in projected rows
NULL_MARKER = "NULL"

_NUMBER_RE = re.compile(r"^\s*[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?\s*$")


def is_missing(value: Any) -> bool:
    """Return True for Null and the display null marker."""
    return value is None or value == NULL_MARKER


def to_number(value: Any) -> int | float | None:
    """Coerce a value to a number, or return None if it does not parse as one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value
    if isinstance(value, str) and _NUMBER_RE.match(value):
        text = value.strip()
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)
    return None


def normalize_number(value: int | float) -> int | float:
    """Collapse integral floats to int so 6 / 2 displays as 3."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_text(value: Any) -> str:
    """Coerce a value to its string form."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(normalize_number(value))
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


def is_truthy(value: Any) -> bool:
    """Truthiness used by bare-expression predicates."""
    if isinstance(value, bool):
        return value
    if is_missing(value):
        return False
    number = to_number(value)
    if number is not None:
        return number != 0
    return to_text(value).strip().lower() not in ("", "false")


def compare_values(left: Any, right: Any) -> int:
    """Three-way compare two values: numeric if both parse, else by folded text."""
    left_num = to_number(left)
    right_num = to_number(right)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)
    left_text = to_text(left)
    right_text = to_text(right)
    left_key = left_text.casefold()
    right_key = right_text.casefold()
    return (left_key > right_key) - (left_key < right_key)


def sort_compare(left: Any, right: Any) -> int:
    """Ordering comparison for ORDER BY: like compare_values, with case as a tiebreak."""
    result = compare_values(left, right)
    if result != 0:
        return result
    if to_number(left) is not None and to_number(right) is not None:
        return 0
    left_text = to_text(left)
    right_text = to_text(right)
    return (left_text > right_text) - (left_text < right_text)


def values_equal(left: Any, right: Any) -> bool:
    return compare_values(left, right) == 0


def hashable_key(value: Any) -> tuple[str, Any]:
    """Return a hashable grouping key for a value.

    Numbers and numeric strings share a key (1 and "1" group together); Null
    is kept apart from the empty string.
    """
    if value is None:
        return ("null", None)
    number = to_number(value)
    if number is not None:
        return ("number", normalize_number(number))
    return ("text", to_text(value))
