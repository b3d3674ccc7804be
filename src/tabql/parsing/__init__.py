"""Parsing module for the query language."""

from tabql.parsing.clauses import Hint, extract_hints, locate_clauses, split_top_level
from tabql.parsing.query_parser import (
    QueryParser,
    QueryPlan,
    SelectItem,
)

__all__ = [
    "Hint",
    "QueryParser",
    "QueryPlan",
    "SelectItem",
    "extract_hints",
    "locate_clauses",
    "split_top_level",
]
