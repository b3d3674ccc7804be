"""GROUP BY bucketing and aggregate computation."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from tabql.evaluator import ExpressionEvaluator
from tabql.parsing.query_parser import (
    ColumnRef,
    CompoundCondition,
    Condition,
    FunctionCall,
    OrderItem,
    SelectItem,
    expression_key,
)
from tabql.values import hashable_key

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def collect_aggregates(
    select_items: Sequence[SelectItem],
    having: Condition | CompoundCondition | None,
    evaluator: ExpressionEvaluator,
    order_by: Sequence[OrderItem] = (),
) -> dict[str, FunctionCall]:
    """Map canonical key to aggregate call for the select list, HAVING and ORDER BY."""
    calls: dict[str, FunctionCall] = {}
    for item in select_items:
        for call in evaluator.aggregate_calls(item.expr):
            calls.setdefault(expression_key(call), call)
    for call in evaluator.aggregate_calls(having):
        calls.setdefault(expression_key(call), call)
    for item in order_by:
        for call in evaluator.aggregate_calls(item.expr):
            calls.setdefault(expression_key(call), call)
    return calls


def _compute_aggregate(call: FunctionCall, rows: list[Row], evaluator: ExpressionEvaluator) -> Any:
    """Compute an aggregate function over the rows of one group."""
    spec = evaluator.registry.lookup(call.name)
    if call.star:
        return spec.func([1] * len(rows))
    arg = call.args[0]
    values = []
    for row in rows:
        if isinstance(arg, ColumnRef):
            # A column missing from a row counts as Null here, not as literal text
            values.append(evaluator.resolve_column(arg.name, row)[1])
        else:
            values.append(evaluator.evaluate(arg, row))
    return spec.func(values)


def group_rows(
    rows: list[Row],
    group_by: Sequence[Any],
    select_items: Sequence[SelectItem],
    having: Condition | CompoundCondition | None,
    evaluator: ExpressionEvaluator,
    order_by: Sequence[OrderItem] = (),
) -> list[Row]:
    """Bucket rows by their GROUP BY values and compute aggregates per bucket.

    Buckets keep first-seen order. Each output row is a copy of its bucket's
    first row plus one entry per aggregate call, keyed by the call's
    canonical text. Without GROUP BY every row falls into a single bucket,
    which exists even when there are no rows.
    """
    groups: dict[tuple, list[Row]] = {}
    if not group_by:
        groups[()] = list(rows)
    else:
        for row in rows:
            key = tuple(hashable_key(evaluator.evaluate(expr, row)) for expr in group_by)
            if key not in groups:
                groups[key] = []
            groups[key].append(row)

    aggregates = collect_aggregates(select_items, having, evaluator, order_by)

    result = []
    for group in groups.values():
        representative = dict(group[0]) if group else {}
        for key, call in aggregates.items():
            representative[key] = _compute_aggregate(call, group, evaluator)
        result.append(representative)

    logger.debug("Grouped %d rows into %d groups", len(rows), len(result))
    return result
