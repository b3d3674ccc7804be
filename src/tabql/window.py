"""Ranking window functions: row_number, rank and dense_rank."""

from __future__ import annotations

import functools
import logging
from typing import Any, Sequence

from tabql.evaluator import ExpressionEvaluator
from tabql.parsing.query_parser import OrderItem, SelectItem, WindowCall
from tabql.values import hashable_key, sort_compare

logger = logging.getLogger(__name__)

Row = dict[str, Any]

WINDOW_FUNCTIONS = frozenset({"row_number", "rank", "dense_rank"})


def _order_values(order_by: Sequence[OrderItem], row: Row, evaluator: ExpressionEvaluator) -> list[Any]:
    return [evaluator.evaluate(item.expr, row) for item in order_by]


def _compare_keys(left: list[Any], right: list[Any], order_by: Sequence[OrderItem]) -> int:
    for lv, rv, item in zip(left, right, order_by):
        result = sort_compare(lv, rv)
        if result:
            return -result if item.direction == "DESC" else result
    return 0


def _rank_partition(
    window: WindowCall, rows: list[Row], indices: list[int], evaluator: ExpressionEvaluator
) -> dict[int, int]:
    """Rank the rows at ``indices`` (one partition) and map row index to rank."""
    keys = {i: _order_values(window.order_by, rows[i], evaluator) for i in indices}
    ordered = sorted(
        indices,
        key=functools.cmp_to_key(lambda a, b: _compare_keys(keys[a], keys[b], window.order_by)),
    )

    name = window.function_name.lower()
    ranks: dict[int, int] = {}
    rank = 0
    dense = 0
    previous: list[Any] | None = None
    for position, i in enumerate(ordered, start=1):
        tied = previous is not None and _compare_keys(previous, keys[i], window.order_by) == 0
        if not tied:
            rank = position
            dense += 1
        if name == "row_number":
            ranks[i] = position
        elif name == "rank":
            ranks[i] = rank
        else:  # dense_rank
            ranks[i] = dense
        previous = keys[i]
    return ranks


def apply_windows(
    rows: list[Row], items: Sequence[SelectItem], evaluator: ExpressionEvaluator
) -> list[Row]:
    """Compute every window select item and write it under the item's output name.

    All windows are computed against the incoming rows before any result is
    written, so one window never sees another's output.
    """
    windows = [item for item in items if isinstance(item.expr, WindowCall)]
    if not windows:
        return rows

    computed: list[tuple[str, dict[int, int]]] = []
    for item in windows:
        window = item.expr
        partitions: dict[tuple, list[int]] = {}
        for i, row in enumerate(rows):
            key = tuple(hashable_key(evaluator.evaluate(expr, row)) for expr in window.partition_by)
            partitions.setdefault(key, []).append(i)

        ranks: dict[int, int] = {}
        for indices in partitions.values():
            ranks.update(_rank_partition(window, rows, indices, evaluator))
        computed.append((item.output_name, ranks))

    result = []
    for i, row in enumerate(rows):
        out = dict(row)
        for name, ranks in computed:
            out[name] = ranks[i]
        result.append(out)

    logger.debug("Applied %d window functions to %d rows", len(windows), len(rows))
    return result
