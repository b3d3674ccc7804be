"""Function and constant registry used by the expression evaluator.

The table is closed: every entry is registered explicitly with its arity.
Callers may extend a registry with ``register`` before running queries.
Every function receives its evaluated arguments as a single list.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable

from tabql.values import NULL_MARKER, is_missing, normalize_number, sort_compare, to_number, to_text


@dataclass(frozen=True)
class FunctionSpec:
    """A registered function: name, evaluator and accepted argument count."""

    name: str
    func: Callable[[list[Any]], Any]
    min_args: int = 0
    max_args: int | None = None
    aggregate: bool = False

    def arity_error(self, count: int) -> str | None:
        """Return a message if ``count`` arguments are not accepted, else None."""
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = f"exactly {self.min_args}"
            else:
                expected = f"{self.min_args} to {self.max_args}"
            plural = "" if expected.endswith(" 1") else "s"
            return f"{self.name}() takes {expected} argument{plural}, got {count}"
        return None


class FunctionRegistry:
    """Case-insensitive mapping of function names and named constants."""

    def __init__(self) -> None:
        self._functions: dict[str, FunctionSpec] = {}
        self._constants: dict[str, Any] = {}

    def register(
        self,
        name: str,
        func: Callable[[list[Any]], Any],
        min_args: int = 0,
        max_args: int | None = None,
        aggregate: bool = False,
    ) -> None:
        """Register (or replace) a function."""
        key = name.lower()
        self._functions[key] = FunctionSpec(key, func, min_args, max_args, aggregate)

    def register_constant(self, name: str, value: Any) -> None:
        self._constants[name.lower()] = value

    def lookup(self, name: str) -> FunctionSpec | None:
        return self._functions.get(name.lower())

    def constant(self, name: str) -> tuple[bool, Any]:
        """Return (found, value) for a named constant."""
        key = name.lower()
        if key in self._constants:
            return True, self._constants[key]
        return False, None

    def is_aggregate(self, name: str) -> bool:
        spec = self.lookup(name)
        return spec is not None and spec.aggregate

    def names(self) -> list[str]:
        return sorted(self._functions)

    def copy(self) -> FunctionRegistry:
        """Return an independent registry with the same entries."""
        clone = FunctionRegistry()
        clone._functions = dict(self._functions)
        clone._constants = dict(self._constants)
        return clone


# --- Argument helpers ---

def _text(args: list[Any], index: int) -> str:
    if index >= len(args):
        return ""
    return to_text(args[index])


def _num(args: list[Any], index: int) -> int | float:
    if index >= len(args):
        return 0
    number = to_number(args[index])
    return 0 if number is None else number


def _present(values: list[Any]) -> list[Any]:
    return [v for v in values if not is_missing(v)]


# --- String functions ---

def _upper(args: list[Any]) -> str:
    return _text(args, 0).upper()


def _lower(args: list[Any]) -> str:
    return _text(args, 0).lower()


def _initcap(args: list[Any]) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in _text(args, 0).split(" "))


def _trim(args: list[Any]) -> str:
    return _text(args, 0).strip()


def _ltrim(args: list[Any]) -> str:
    return _text(args, 0).lstrip()


def _rtrim(args: list[Any]) -> str:
    return _text(args, 0).rstrip()


def _length(args: list[Any]) -> int:
    return len(_text(args, 0))


def _substr(args: list[Any]) -> str:
    """substr(s, start[, length]) with a 1-based start."""
    text = _text(args, 0)
    start = max(int(_num(args, 1)) - 1, 0) if len(args) > 1 else 0
    if len(args) > 2:
        return text[start:start + max(int(_num(args, 2)), 0)]
    return text[start:]


def _replace(args: list[Any]) -> str:
    search = _text(args, 1)
    if not search:
        return _text(args, 0)
    return _text(args, 0).replace(search, _text(args, 2))


def _instr(args: list[Any]) -> int:
    """1-based position of the second argument, 0 when absent."""
    return _text(args, 0).lower().find(_text(args, 1).lower()) + 1


def _contains(args: list[Any]) -> bool:
    return _text(args, 1).lower() in _text(args, 0).lower()


def _concat(args: list[Any]) -> str:
    return "".join(to_text(a) for a in args)


# --- Numeric functions ---

def _math1(func: Callable[[float], float]) -> Callable[[list[Any]], Any]:
    def apply(args: list[Any]) -> Any:
        try:
            return normalize_number(func(_num(args, 0)))
        except (ValueError, OverflowError):
            return None
    return apply


def _round(args: list[Any]) -> int | float:
    digits = int(_num(args, 1)) if len(args) > 1 else 0
    # Half away from zero, not banker's rounding
    factor = 10 ** digits
    value = _num(args, 0) * factor
    rounded = math.floor(abs(value) + 0.5) * (1 if value >= 0 else -1)
    return normalize_number(rounded / factor)


def _pow(args: list[Any]) -> Any:
    try:
        return normalize_number(math.pow(_num(args, 0), _num(args, 1)))
    except (ValueError, OverflowError):
        return None


def _mod(args: list[Any]) -> int | float:
    divisor = _num(args, 1)
    if divisor == 0:
        return _num(args, 0)
    return normalize_number(math.fmod(_num(args, 0), divisor))


# --- Aggregates (receive every value of a group) ---

def _sum(values: list[Any]) -> int | float:
    return normalize_number(sum(to_number(v) or 0 for v in _present(values)))


def _count(values: list[Any]) -> int:
    return len(_present(values))


def _avg(values: list[Any]) -> int | float:
    present = _present(values)
    if not present:
        return 0
    return normalize_number(sum(to_number(v) or 0 for v in present) / len(present))


def _extreme(values: list[Any], sign: int) -> Any:
    present = _present(values)
    if not present:
        return NULL_MARKER
    best = present[0]
    for value in present[1:]:
        if sort_compare(value, best) * sign > 0:
            best = value
    number = to_number(best)
    return best if number is None else normalize_number(number)


def _min(values: list[Any]) -> Any:
    return _extreme(values, -1)


def _max(values: list[Any]) -> Any:
    return _extreme(values, 1)


def _coalesce(values: list[Any]) -> Any:
    for value in values:
        if not is_missing(value) and value != "":
            return value
    return NULL_MARKER


def default_registry() -> FunctionRegistry:
    """Build a registry holding the built-in functions and constants."""
    registry = FunctionRegistry()

    registry.register("upper", _upper, 1, 1)
    registry.register("lower", _lower, 1, 1)
    registry.register("initcap", _initcap, 1, 1)
    registry.register("trim", _trim, 1, 1)
    registry.register("ltrim", _ltrim, 1, 1)
    registry.register("rtrim", _rtrim, 1, 1)
    registry.register("length", _length, 1, 1)
    registry.register("substr", _substr, 2, 3)
    registry.register("replace", _replace, 3, 3)
    registry.register("instr", _instr, 2, 2)
    registry.register("contains", _contains, 2, 2)
    registry.register("concat", _concat, 1)

    registry.register("abs", _math1(abs), 1, 1)
    registry.register("ceil", _math1(math.ceil), 1, 1)
    registry.register("floor", _math1(math.floor), 1, 1)
    registry.register("sqrt", _math1(math.sqrt), 1, 1)
    registry.register("exp", _math1(math.exp), 1, 1)
    registry.register("log", _math1(math.log), 1, 1)
    registry.register("log10", _math1(math.log10), 1, 1)
    registry.register("sin", _math1(math.sin), 1, 1)
    registry.register("cos", _math1(math.cos), 1, 1)
    registry.register("tan", _math1(math.tan), 1, 1)
    registry.register("round", _round, 1, 2)
    registry.register("pow", _pow, 2, 2)
    registry.register("power", _pow, 2, 2)
    registry.register("mod", _mod, 2, 2)

    registry.register("sum", _sum, 1, aggregate=True)
    registry.register("count", _count, 0, aggregate=True)
    registry.register("avg", _avg, 1, aggregate=True)
    registry.register("min", _min, 1, aggregate=True)
    registry.register("max", _max, 1, aggregate=True)
    registry.register("coalesce", _coalesce, 1, aggregate=True)

    registry.register_constant("pi", math.pi)
    registry.register_constant("e", math.e)
    return registry
