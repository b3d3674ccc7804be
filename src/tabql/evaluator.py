"""Expression and predicate evaluation against a single row."""

from __future__ import annotations

import logging
import math
from typing import Any

from tabql.errors import UNKNOWN_FUNCTION, Diagnostic
from tabql.functions import FunctionRegistry, default_registry
from tabql.parsing.query_parser import (
    BinaryExpr,
    ColumnRef,
    CompoundCondition,
    Condition,
    FunctionCall,
    Literal,
    UnaryExpr,
    WindowCall,
    expression_key,
)
from tabql.values import (
    compare_values,
    is_missing,
    is_truthy,
    normalize_number,
    to_number,
    to_text,
    values_equal,
)

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class ExpressionEvaluator:
    """Evaluates expression trees and predicates against rows.

    An evaluator collects diagnostics for the query it is used with, so a
    fresh one is created per execution.
    """

    def __init__(self, registry: FunctionRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.diagnostics: list[Diagnostic] = []
        self._reported: set[str] = set()

    # --- Name resolution ---

    def resolve_column(
        self, name: str, row: Row, variables: dict[str, Any] | None = None
    ) -> tuple[bool, Any]:
        """Resolve an identifier, returning (found, value).

        Lookup order: variables, the exact row key, the last segment of a
        qualified name, any ``table.name`` key with a matching suffix, then
        named constants.
        """
        if variables and name in variables:
            return True, variables[name]
        if name in row:
            return True, row[name]
        leaf = name.rsplit(".", 1)[-1]
        if leaf != name and leaf in row:
            return True, row[leaf]
        suffix = "." + leaf
        for key, value in row.items():
            if key.endswith(suffix):
                return True, value
        return self.registry.constant(name)

    def is_aggregate_call(self, expr: Any) -> bool:
        """True for sum/count/avg/min/max/coalesce with one argument, or count(*)."""
        return (
            isinstance(expr, FunctionCall)
            and self.registry.is_aggregate(expr.name)
            and (expr.star or len(expr.args) == 1)
        )

    def aggregate_calls(self, node: Any) -> list[FunctionCall]:
        """Collect the aggregate calls in an expression or predicate, outermost only."""
        if node is None:
            return []
        if isinstance(node, CompoundCondition):
            return self.aggregate_calls(node.left) + self.aggregate_calls(node.right)
        if isinstance(node, Condition):
            return self.aggregate_calls(node.left) + self.aggregate_calls(node.right)
        if self.is_aggregate_call(node):
            return [node]
        if isinstance(node, FunctionCall):
            return [call for arg in node.args for call in self.aggregate_calls(arg)]
        if isinstance(node, BinaryExpr):
            return self.aggregate_calls(node.left) + self.aggregate_calls(node.right)
        if isinstance(node, UnaryExpr):
            return self.aggregate_calls(node.operand)
        if isinstance(node, WindowCall):
            calls = [call for expr in node.partition_by for call in self.aggregate_calls(expr)]
            return calls + [call for item in node.order_by for call in self.aggregate_calls(item.expr)]
        return []

    # --- Expressions ---

    def evaluate(self, expr: Any, row: Row, variables: dict[str, Any] | None = None) -> Any:
        """Recursively evaluate an expression tree against a row."""
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, ColumnRef):
            found, value = self.resolve_column(expr.name, row, variables)
            # Unresolved identifiers read as their own text
            return value if found else expr.name
        if isinstance(expr, FunctionCall):
            return self._call(expr, row, variables)
        if isinstance(expr, BinaryExpr):
            left = self.evaluate(expr.left, row, variables)
            right = self.evaluate(expr.right, row, variables)
            return self._apply_binary(left, right, expr.op)
        if isinstance(expr, UnaryExpr):
            operand = to_number(self.evaluate(expr.operand, row, variables))
            if operand is None:
                return None
            return normalize_number(-operand) if expr.op == "-" else operand
        return None

    def _call(self, call: FunctionCall, row: Row, variables: dict[str, Any] | None) -> Any:
        if self.is_aggregate_call(call):
            key = expression_key(call)
            if key in row:
                return row[key]

        spec = self.registry.lookup(call.name)
        if spec is None:
            self._report_unknown(call.name)
            return None
        if call.star:
            return spec.func([1])
        args = [self.evaluate(arg, row, variables) for arg in call.args]
        return spec.func(args)

    def _report_unknown(self, name: str) -> None:
        key = name.lower()
        if key in self._reported:
            return
        self._reported.add(key)
        message = f"Unknown function '{name}'"
        self.diagnostics.append(Diagnostic(UNKNOWN_FUNCTION, message))
        logger.warning(message)

    def _apply_binary(self, left: Any, right: Any, op: str) -> Any:
        """Apply an arithmetic operator after numeric coercion; Null if either side is not a number."""
        lv = to_number(left)
        rv = to_number(right)
        if lv is None or rv is None:
            return None
        if op == "+":
            result = lv + rv
        elif op == "-":
            result = lv - rv
        elif op == "*":
            result = lv * rv
        elif op == "/":
            # Zero divisor yields the dividend
            result = lv if rv == 0 else lv / rv
        elif op == "%":
            result = lv if rv == 0 else math.fmod(lv, rv)
        else:
            return None
        return normalize_number(result)

    # --- Predicates ---

    def test(
        self,
        condition: Condition | CompoundCondition,
        row: Row,
        variables: dict[str, Any] | None = None,
    ) -> bool:
        """Evaluate a predicate against a row."""
        if isinstance(condition, CompoundCondition):
            if condition.operator == "and":
                return self.test(condition.left, row, variables) and self.test(condition.right, row, variables)
            else:  # or
                return self.test(condition.left, row, variables) or self.test(condition.right, row, variables)

        left = self.evaluate(condition.left, row, variables)
        if condition.operator is None:
            return is_truthy(left)
        right = self.evaluate(condition.right, row, variables)
        return self._compare(left, condition.operator, right)

    def _compare(self, left: Any, operator: str, right: Any) -> bool:
        """Compare two evaluated values with a predicate operator."""
        if operator == "contains":
            return to_text(right).lower() in to_text(left).lower()
        if is_missing(left) or is_missing(right):
            # Null only equals Null; ordering against Null is false
            if operator == "=":
                return is_missing(left) and is_missing(right)
            if operator == "!=":
                return not (is_missing(left) and is_missing(right))
            return False
        if operator == "=":
            return values_equal(left, right)
        elif operator == "!=":
            return not values_equal(left, right)
        result = compare_values(left, right)
        if operator == "<":
            return result < 0
        elif operator == "<=":
            return result <= 0
        elif operator == ">":
            return result > 0
        elif operator == ">=":
            return result >= 0
        return False
