"""Query executor: runs a QueryPlan against an in-memory dataset."""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator

from tabql.dataset import Dataset, qualify_rows, resolve_table, table_name
from tabql.errors import Diagnostic, MalformedQuery
from tabql.evaluator import ExpressionEvaluator
from tabql.functions import FunctionRegistry, default_registry
from tabql.grouping import group_rows
from tabql.joins import apply_joins
from tabql.parsing.clauses import Hint
from tabql.parsing.query_parser import (
    BinaryExpr,
    ColumnRef,
    CompoundCondition,
    Condition,
    FunctionCall,
    OrderItem,
    QueryParser,
    QueryPlan,
    SelectItem,
    Star,
    UnaryExpr,
    WindowCall,
    expression_key,
    format_expr,
)
from tabql.values import NULL_MARKER, sort_compare
from tabql.window import WINDOW_FUNCTIONS, apply_windows

logger = logging.getLogger(__name__)

Row = dict[str, Any]


@dataclass
class QueryResult:
    """Result of a query execution."""

    columns: list[str]
    rows: list[dict[str, Any]]
    output: str | None = None
    paginate: bool = False
    warnings: list[Diagnostic] = field(default_factory=list)

    @property
    def value(self) -> str | list[dict[str, Any]]:
        """The JSON text when OUTPUTJSON was requested, otherwise the rows."""
        return self.output if self.output is not None else self.rows


def _iter_nodes(node: Any) -> Iterator[Any]:
    """Yield a node and every expression nested in it."""
    if node is None:
        return
    yield node
    if isinstance(node, (Condition, CompoundCondition)):
        yield from _iter_nodes(node.left)
        yield from _iter_nodes(node.right)
    elif isinstance(node, FunctionCall):
        for arg in node.args:
            yield from _iter_nodes(arg)
    elif isinstance(node, BinaryExpr):
        yield from _iter_nodes(node.left)
        yield from _iter_nodes(node.right)
    elif isinstance(node, UnaryExpr):
        yield from _iter_nodes(node.operand)
    elif isinstance(node, WindowCall):
        for expr in node.partition_by:
            yield from _iter_nodes(expr)
        for item in node.order_by:
            yield from _iter_nodes(item.expr)


def _unique_names(names: list[str]) -> list[str]:
    """Suffix repeated column names with _2, _3, ..."""
    used: set[str] = set()
    result = []
    for name in names:
        candidate = name
        n = 2
        while candidate in used:
            candidate = f"{name}_{n}"
            n += 1
        used.add(candidate)
        result.append(candidate)
    return result


class QueryExecutor:
    """Executes query plans against datasets.

    The executor holds no per-query state; each call to ``execute`` builds
    a fresh evaluator.
    """

    def __init__(self, registry: FunctionRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry()

    def execute(self, plan: QueryPlan, dataset: Dataset) -> QueryResult:
        """Execute a query plan and return results."""
        evaluator = ExpressionEvaluator(self.registry)
        self._validate(plan)

        base_rows = resolve_table(dataset, plan.base_table)
        for join in plan.joins:
            resolve_table(dataset, join.table_path)

        rows = qualify_rows(base_rows, table_name(plan.base_table))
        logger.debug("FROM %s: %d rows", plan.base_table, len(rows))
        rows = apply_joins(rows, plan.joins, dataset, evaluator)

        if plan.where is not None:
            rows = [row for row in rows if evaluator.test(plan.where, row)]
            logger.debug("WHERE: %d rows", len(rows))

        has_aggregates = any(evaluator.aggregate_calls(item.expr) for item in plan.select)
        if plan.group_by or has_aggregates or evaluator.aggregate_calls(plan.having):
            rows = group_rows(rows, plan.group_by, plan.select, plan.having, evaluator, order_by=plan.order_by)

        if plan.having is not None:
            rows = [row for row in rows if evaluator.test(plan.having, row)]
            logger.debug("HAVING: %d rows", len(rows))

        rows = apply_windows(rows, plan.select, evaluator)

        columns, pairs = self._project(plan, rows, evaluator)

        if plan.distinct and not plan.group_by:
            pairs = self._apply_distinct(pairs)
            logger.debug("DISTINCT: %d rows", len(pairs))

        if plan.order_by:
            pairs = self._apply_order_by(pairs, plan.order_by, evaluator)

        end = plan.offset + plan.limit if plan.limit is not None else None
        out_rows = [out for out, _ in pairs[plan.offset:end]]

        result = QueryResult(columns=columns, rows=out_rows, warnings=list(evaluator.diagnostics))
        self._apply_hints(result, plan.hints)
        logger.debug("Result: %d rows, %d columns", len(result.rows), len(result.columns))
        return result

    # --- Validation ---

    def _validate(self, plan: QueryPlan) -> None:
        """Check function arity and window function names before touching any rows."""
        roots: list[Any] = [item.expr for item in plan.select]
        roots += [plan.where, plan.having]
        roots += list(plan.group_by)
        roots += [item.expr for item in plan.order_by]

        for root in roots:
            for node in _iter_nodes(root):
                if isinstance(node, WindowCall):
                    if node.function_name.lower() not in WINDOW_FUNCTIONS:
                        raise MalformedQuery(f"Unknown window function: {node.function_name}")
                elif isinstance(node, FunctionCall):
                    spec = self.registry.lookup(node.name)
                    if spec is None:
                        continue
                    error = spec.arity_error(1 if node.star else len(node.args))
                    if error:
                        raise MalformedQuery(error)

    # --- Projection ---

    def _star_columns(self, plan: QueryPlan, rows: list[Row], evaluator: ExpressionEvaluator) -> list[str]:
        """Unqualified columns across all rows, in first-seen order."""
        tables = {table_name(plan.base_table)} | {table_name(j.table_path) for j in plan.joins}
        hidden = {item.output_name for item in plan.select if isinstance(item.expr, WindowCall)}
        for item in plan.select:
            hidden.update(expression_key(call) for call in evaluator.aggregate_calls(item.expr))
        hidden.update(expression_key(call) for call in evaluator.aggregate_calls(plan.having))
        hidden.update(expression_key(call) for o in plan.order_by for call in evaluator.aggregate_calls(o.expr))

        columns: dict[str, None] = {}
        for row in rows:
            for key in row:
                prefix, dot, _ = key.partition(".")
                if dot and prefix in tables:
                    continue
                if key in hidden:
                    continue
                columns.setdefault(key, None)
        return list(columns)

    def _project(
        self, plan: QueryPlan, rows: list[Row], evaluator: ExpressionEvaluator
    ) -> tuple[list[str], list[tuple[Row, Row]]]:
        """Project rows to the select list, pairing each output row with its source row."""
        # (output name, select item or None for a star column, star column key)
        slots: list[tuple[str, SelectItem, str | None]] = []
        for item in plan.select:
            if isinstance(item.expr, Star):
                for column in self._star_columns(plan, rows, evaluator):
                    slots.append((column, item, column))
            else:
                slots.append((item.output_name, item, None))

        columns = _unique_names([name for name, _, _ in slots])

        pairs = []
        for row in rows:
            out: Row = {}
            for column, (_, item, star_key) in zip(columns, slots):
                if star_key is not None:
                    value = row.get(star_key)
                elif isinstance(item.expr, WindowCall):
                    value = row.get(item.output_name)
                elif isinstance(item.expr, ColumnRef):
                    found, value = evaluator.resolve_column(item.expr.name, row)
                    if not found:
                        value = None
                else:
                    value = evaluator.evaluate(item.expr, row)
                out[column] = NULL_MARKER if value is None else value
            pairs.append((out, row))
        return columns, pairs

    def _apply_distinct(self, pairs: list[tuple[Row, Row]]) -> list[tuple[Row, Row]]:
        """Keep the first of each set of structurally equal output rows."""
        seen: set[str] = set()
        result = []
        for out, row in pairs:
            key = json.dumps(out, sort_keys=True, default=str)
            if key not in seen:
                seen.add(key)
                result.append((out, row))
        return result

    def _sort_value(self, item: OrderItem, out: Row, row: Row, evaluator: ExpressionEvaluator) -> Any:
        """Resolve an ORDER BY key against the projected row, then the source row."""
        candidates = [format_expr(item.expr), expression_key(item.expr)]
        if isinstance(item.expr, ColumnRef):
            candidates.insert(0, item.expr.name)
        for name in candidates:
            if name in out:
                return out[name]
        return evaluator.evaluate(item.expr, row)

    def _apply_order_by(
        self, pairs: list[tuple[Row, Row]], order_by: tuple[OrderItem, ...], evaluator: ExpressionEvaluator
    ) -> list[tuple[Row, Row]]:
        """Apply ORDER BY as a stable multi-key sort."""
        keyed = [([self._sort_value(item, out, row, evaluator) for item in order_by], (out, row)) for out, row in pairs]

        def compare(a: tuple[list[Any], Any], b: tuple[list[Any], Any]) -> int:
            for lv, rv, item in zip(a[0], b[0], order_by):
                result = sort_compare(lv, rv)
                if result:
                    return -result if item.direction == "DESC" else result
            return 0

        keyed.sort(key=functools.cmp_to_key(compare))
        return [pair for _, pair in keyed]

    # --- Hints ---

    def _apply_hints(self, result: QueryResult, hints: frozenset[Hint]) -> None:
        if Hint.HEADER_COLUMN_UPPERCASE in hints:
            result.columns = [c.upper() for c in result.columns]
            result.rows = [{k.upper(): v for k, v in row.items()} for row in result.rows]
        if Hint.OUTPUT_JSON in hints:
            result.output = json.dumps(result.rows, indent=2)
            # JSON text is final; later hints do not apply
            return
        if Hint.PAGINATE in hints:
            result.paginate = True


@functools.lru_cache(maxsize=None)
def _shared_parser() -> QueryParser:
    return QueryParser()


def execute_query(text: str, dataset: Dataset, registry: FunctionRegistry | None = None) -> QueryResult:
    """Parse and execute a query string against a dataset."""
    plan = _shared_parser().parse(text)
    return QueryExecutor(registry).execute(plan, dataset)
