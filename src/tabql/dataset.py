"""Dataset loading and table path resolution.

A dataset is a nested mapping whose leaves are tables (lists of row
dicts). Table paths are dotted, e.g. ``data.friends`` or ``$.friends``:
a leading ``$`` is stripped from every segment, and a leading ``data`` or
``root`` segment is skipped when the dataset has no key by that name.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator

from tabql.errors import DatasetError, UnknownTable

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Dataset = dict[str, Any]

_SYNTHETIC_ROOTS = ("data", "root")


def _segments(path: str) -> list[str]:
    return [part.lstrip("$") for part in path.split(".") if part.lstrip("$")]


def table_name(path: str) -> str:
    """Return the name a table is qualified by: the last path segment."""
    segments = _segments(path)
    return segments[-1] if segments else path


def resolve_table(dataset: Dataset, path: str) -> list[Row]:
    """Resolve a dotted table path to its list of rows.

    Raises UnknownTable if the path does not lead to a list of objects.
    """
    segments = _segments(path)
    if segments and segments[0] in _SYNTHETIC_ROOTS and segments[0] not in dataset:
        segments = segments[1:]

    current: Any = dataset
    for segment in segments:
        if not isinstance(current, dict) or segment not in current:
            raise UnknownTable(path)
        current = current[segment]

    if not isinstance(current, list):
        raise UnknownTable(path, "not a table")
    if not all(isinstance(row, dict) for row in current):
        raise UnknownTable(path, "not a list of rows")
    return current


def qualify_rows(rows: list[Row], name: str) -> list[Row]:
    """Copy rows, adding a ``name.column`` key for every column."""
    result = []
    for row in rows:
        qualified = dict(row)
        for key, value in row.items():
            qualified[f"{name}.{key}"] = value
        result.append(qualified)
    return result


def iter_tables(value: Any, prefix: str = "") -> Iterator[tuple[str, int]]:
    """Yield (path, row count) for every table nested in a dataset."""
    if isinstance(value, list):
        if prefix and all(isinstance(row, dict) for row in value):
            yield prefix, len(value)
        return
    if isinstance(value, dict):
        for key, child in value.items():
            yield from iter_tables(child, f"{prefix}.{key}" if prefix else key)


def load_dataset(path: str | Path) -> Dataset:
    """Read a JSON dataset file.

    A top-level array is wrapped as ``{"data": [...]}``; any other
    non-object document is rejected.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise DatasetError(f"Dataset file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise DatasetError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise DatasetError(f"Cannot read {path}: {e}") from e

    if isinstance(data, list):
        data = {"data": data}
    if not isinstance(data, dict):
        raise DatasetError(f"Dataset must be a JSON object or array: {path}")
    logger.debug("Loaded dataset %s with %d top-level keys", path, len(data))
    return data
