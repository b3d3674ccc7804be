"""Equality joins between row lists."""

from __future__ import annotations

import logging
from typing import Any

from tabql.dataset import Dataset, qualify_rows, resolve_table, table_name
from tabql.evaluator import ExpressionEvaluator
from tabql.parsing.query_parser import ColumnRef, JoinKind, JoinSpec
from tabql.values import is_missing, to_text

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def _column_union(rows: list[Row]) -> list[str]:
    columns: dict[str, None] = {}
    for row in rows:
        for key in row:
            columns.setdefault(key, None)
    return list(columns)


def _key_text(evaluator: ExpressionEvaluator, key: ColumnRef, row: Row) -> str | None:
    """String form of a row's join key, or None when absent or Null."""
    found, value = evaluator.resolve_column(key.name, row)
    if not found or is_missing(value):
        return None
    return to_text(value)


def join_rows(
    left: list[Row],
    right: list[Row],
    left_key: ColumnRef,
    right_key: ColumnRef,
    kind: JoinKind,
    evaluator: ExpressionEvaluator,
    right_name: str | None = None,
) -> list[Row]:
    """Join two row lists on ``left_key = right_key``.

    Keys compare by their string form and a Null key never matches.
    Matched pairs merge left then right, so right values win on collision.
    Unmatched rows of an outer side are emitted once, padded with None for
    the other side's columns. ``right_name`` is the joined table's name; a
    left key qualified with it means the keys were written the other way
    round, so they are swapped.
    """
    if right_name and len(left_key.path) > 1 and left_key.path[-2] == right_name:
        left_key, right_key = right_key, left_key

    index: dict[str, list[int]] = {}
    for i, row in enumerate(right):
        key = _key_text(evaluator, right_key, row)
        if key is not None:
            index.setdefault(key, []).append(i)

    right_columns = _column_union(right)
    matched_right: set[int] = set()
    result: list[Row] = []

    for row in left:
        key = _key_text(evaluator, left_key, row)
        matches = index.get(key, []) if key is not None else []
        for i in matches:
            merged = dict(row)
            merged.update(right[i])
            result.append(merged)
            matched_right.add(i)
        if not matches and kind in (JoinKind.LEFT, JoinKind.FULL):
            padded = dict(row)
            for column in right_columns:
                padded.setdefault(column, None)
            result.append(padded)

    if kind in (JoinKind.RIGHT, JoinKind.FULL):
        left_columns = _column_union(left)
        for i, row in enumerate(right):
            if i in matched_right:
                continue
            padded = dict.fromkeys(left_columns)
            padded.update(row)
            result.append(padded)

    return result


def apply_joins(
    rows: list[Row],
    joins: tuple[JoinSpec, ...] | list[JoinSpec],
    dataset: Dataset,
    evaluator: ExpressionEvaluator,
) -> list[Row]:
    """Fold a chain of joins onto the base rows, left to right."""
    for spec in joins:
        name = table_name(spec.table_path)
        right = qualify_rows(resolve_table(dataset, spec.table_path), name)
        rows = join_rows(rows, right, spec.left_key, spec.right_key, spec.kind, evaluator, right_name=name)
        logger.debug("%s JOIN %s: %d rows", spec.kind.value, spec.table_path, len(rows))
    return rows
