"""tabql - SQL-like queries over in-memory JSON-shaped data."""

from tabql.dataset import load_dataset, resolve_table
from tabql.errors import DatasetError, Diagnostic, MalformedQuery, QueryError, UnknownTable
from tabql.evaluator import ExpressionEvaluator
from tabql.functions import FunctionRegistry, default_registry
from tabql.parsing import Hint, QueryParser, QueryPlan
from tabql.query_executor import QueryExecutor, QueryResult, execute_query

__all__ = [
    # Main API
    "execute_query",
    "QueryParser",
    "QueryPlan",
    "QueryExecutor",
    "QueryResult",
    "Hint",
    # Evaluation
    "ExpressionEvaluator",
    "FunctionRegistry",
    "default_registry",
    # Data
    "load_dataset",
    "resolve_table",
    # Errors
    "QueryError",
    "MalformedQuery",
    "UnknownTable",
    "DatasetError",
    "Diagnostic",
]

__version__ = "0.1.0"
