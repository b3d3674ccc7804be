"""Errors and diagnostics raised or collected while running a query."""

from __future__ import annotations

from dataclasses import dataclass


class QueryError(Exception):
    """Base class for fatal query errors."""


class MalformedQuery(QueryError):
    """A required clause, delimiter or token is missing or out of place."""


class UnknownTable(QueryError):
    """A FROM or JOIN path does not resolve to a table in the dataset."""

    def __init__(self, path: str, reason: str | None = None) -> None:
        self.path = path
        message = f"Unknown table: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class DatasetError(Exception):
    """A dataset file could not be read or decoded."""


UNKNOWN_FUNCTION = "UnknownFunction"


@dataclass
class Diagnostic:
    """A non-fatal condition observed during evaluation."""

    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"
