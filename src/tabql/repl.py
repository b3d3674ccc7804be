"""Interactive REPL and command-line entry point for tabql."""

from __future__ import annotations

import argparse
import logging
import readline  # noqa: F401 - enables line editing in input()
import sys
from pathlib import Path
from typing import Any, Callable

from tabql.dataset import Dataset, iter_tables, load_dataset
from tabql.errors import DatasetError, QueryError
from tabql.parsing.clauses import split_top_level
from tabql.parsing.query_parser import QueryParser
from tabql.query_executor import QueryExecutor, QueryResult
from tabql.values import to_text

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 5
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def format_value(value: Any) -> str:
    """Format a value for display in a table cell."""
    if value is None:
        return "NULL"
    return to_text(value)


def format_table(columns: list[str], rows: list[dict[str, Any]]) -> str:
    """Render rows as a MySQL-style ASCII table.

    Returns ``Empty set`` when there are no rows.
    """
    if not rows:
        return "Empty set"

    widths = {col: len(col) for col in columns}
    cells = []
    for row in rows:
        line = {col: format_value(row.get(col)) for col in columns}
        for col, text in line.items():
            widths[col] = max(widths[col], len(text))
        cells.append(line)

    rule = "+" + "+".join("-" * (widths[col] + 2) for col in columns) + "+"
    header = "|" + "|".join(f" {col.ljust(widths[col])} " for col in columns) + "|"
    lines = [rule, header, rule]
    for line in cells:
        lines.append("|" + "|".join(f" {line[col].ljust(widths[col])} " for col in columns) + "|")
    lines.append(rule)
    return "\n".join(lines)


def page_rows(
    columns: list[str],
    rows: list[dict[str, Any]],
    page_size: int = DEFAULT_PAGE_SIZE,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
) -> int:
    """Show rows a page at a time and return the number of pages shown.

    Enter advances to the next page; ``:q`` or end of input stops early.
    The last page waits for a final Enter.
    """
    if not rows:
        output_fn(format_table(columns, rows))
        return 0

    page_size = max(page_size, 1)
    total = (len(rows) + page_size - 1) // page_size
    for page in range(total):
        chunk = rows[page * page_size:(page + 1) * page_size]
        output_fn(format_table(columns, chunk))
        if page + 1 < total:
            prompt = f"-- page {page + 1}/{total}, Enter for more, :q to quit -- "
        else:
            prompt = "[END OF DATA] Press Enter to continue "
        try:
            answer = input_fn(prompt)
        except EOFError:
            return page + 1
        if answer.strip().lower() == ":q":
            return page + 1
    return total


def print_result(
    result: QueryResult,
    page_size: int = DEFAULT_PAGE_SIZE,
    pager: bool = True,
    input_fn: Callable[[str], str] = input,
) -> None:
    """Print a query result: JSON text, a paged table or a plain table."""
    for warning in result.warnings:
        print(f"Warning: {warning}")

    if result.output is not None:
        print(result.output)
        return

    if result.paginate and pager:
        page_rows(result.columns, result.rows, page_size, input_fn=input_fn)
        return

    print(format_table(result.columns, result.rows))
    if result.rows:
        print(f"{len(result.rows)} row{'s' if len(result.rows) != 1 else ''} in set")


def split_statements(content: str) -> list[str]:
    """Split script content into statements on top-level semicolons.

    Lines that hold only a ``--`` comment are dropped first.
    """
    lines = [line for line in content.split("\n") if not line.strip().startswith("--")]
    return split_top_level("\n".join(lines), ";")


def needs_continuation(line: str) -> bool:
    """Check if we need more input for this query.

    A query is complete when it ends with a semicolon.
    """
    stripped = line.strip()
    if not stripped:
        return False
    return not stripped.endswith(";")


def run_repl(dataset_path: Path | None, page_size: int = DEFAULT_PAGE_SIZE) -> int:
    """Run the interactive REPL."""
    print("tabql REPL - SQL queries over JSON data")
    print("Type 'help' for commands, 'exit' to quit.\n")

    dataset: Dataset | None = None
    if dataset_path:
        try:
            dataset = load_dataset(dataset_path)
            print(f"Loaded dataset: {dataset_path}\n")
        except DatasetError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        print("No dataset loaded. Use 'load <path>' to open one.\n")

    parser = QueryParser()
    executor = QueryExecutor()

    # Command history
    history_file = Path.home() / ".tabql_history"
    try:
        readline.read_history_file(history_file)
    except FileNotFoundError:
        pass

    try:
        while True:
            try:
                line = input("tabql> ").strip()
            except EOFError:
                print()
                break

            if not line:
                continue

            # Handle special commands
            command = line.rstrip(";").strip()
            lower = command.lower()
            if lower == "exit" or lower == "quit":
                break
            elif lower == "help":
                print_help()
                continue
            elif lower == "clear":
                print("\033[2J\033[H", end="")
                continue
            elif lower == "tables":
                if dataset is None:
                    print("No dataset loaded. Use 'load <path>' first.")
                else:
                    for path, count in iter_tables(dataset):
                        print(f"  {path} ({count} row{'s' if count != 1 else ''})")
                print()
                continue
            elif lower.startswith("load "):
                new_path = Path(command[5:].strip().strip('"').strip("'"))
                try:
                    dataset = load_dataset(new_path)
                    print(f"Loaded dataset: {new_path}")
                except DatasetError as e:
                    print(f"Error: {e}")
                print()
                continue

            # Handle multi-line queries (continue until semicolon)
            if needs_continuation(line):
                while True:
                    try:
                        continuation = input("...> ")
                    except EOFError:
                        break
                    stripped = continuation.strip()
                    if not stripped:
                        # Empty line ends the statement
                        break
                    line += "\n" + stripped
                    if not needs_continuation(line):
                        break

            if dataset is None:
                print("No dataset loaded. Use 'load <path>' first.\n")
                continue

            try:
                plan = parser.parse(line)
                result = executor.execute(plan, dataset)
                print_result(result, page_size)
            except QueryError as e:
                print(f"Error: {e}")

            print()

    finally:
        # Save history
        try:
            readline.set_history_length(1000)
            readline.write_history_file(history_file)
        except OSError:
            logger.debug("Could not write history file %s", history_file)

    return 0


def print_help() -> None:
    """Print help information."""
    print("""
tabql - SQL-like queries over JSON data

QUERIES:
  SELECT [DISTINCT] items FROM table
    [[INNER|LEFT|RIGHT|FULL] JOIN table ON a = b]
    [WHERE condition] [GROUP BY columns] [HAVING condition]
    [ORDER BY expr [ASC|DESC], ...] [LIMIT n] [OFFSET n]
    [WITH (hints)];

  Tables are dotted paths into the dataset, e.g. data.friends or $.friends.
  Window functions: ROW_NUMBER(), RANK(), DENSE_RANK()
    OVER (PARTITION BY ... ORDER BY ...)
  Hints: HEADERCOLUMNUPPERCASE, OUTPUTJSON, PAGINATE

COMMANDS:
  tables                   List the tables in the loaded dataset
  load <path>              Load a JSON dataset file
  help                     Show this help
  exit, quit               Exit the REPL
  clear                    Clear the screen

Queries can span multiple lines. End with semicolon or press Enter on empty line.
""")


def run_statements(
    statements: list[str],
    dataset: Dataset,
    verbose: bool = False,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> int:
    """Execute statements in order, stopping at the first error.

    Returns:
        0 on success, 1 on error
    """
    parser = QueryParser()
    executor = QueryExecutor()
    pager = sys.stdin.isatty()
    for statement in statements:
        if verbose:
            print(f"tabql> {statement}")
        try:
            result = executor.execute(parser.parse(statement), dataset)
        except QueryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print_result(result, page_size, pager=pager)
    return 0


def run_file(file_path: Path, dataset: Dataset, verbose: bool = False, page_size: int = DEFAULT_PAGE_SIZE) -> int:
    """Execute the ``;``-separated queries in a file.

    Args:
        file_path: Path to the file containing queries
        dataset: The dataset to query
        verbose: If True, print each query before executing
        page_size: Rows per page for PAGINATE results

    Returns:
        0 on success, 1 on error
    """
    try:
        content = file_path.read_text()
    except OSError as e:
        print(f"Error reading file: {e}", file=sys.stderr)
        return 1

    statements = split_statements(content)
    if not statements:
        print("No queries found in file", file=sys.stderr)
        return 1
    return run_statements(statements, dataset, verbose, page_size)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    arg_parser = argparse.ArgumentParser(
        description="Run SQL-like queries against a JSON dataset"
    )
    arg_parser.add_argument(
        "dataset",
        type=Path,
        nargs="?",
        default=None,
        help="Path to a JSON dataset file (optional for the REPL)",
    )
    arg_parser.add_argument(
        "-c", "--command",
        type=str,
        help="Execute a single query and exit",
    )
    arg_parser.add_argument(
        "-f", "--file",
        type=Path,
        help="Execute queries from a file and exit",
    )
    arg_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print each query before executing (for -f/--file)",
    )
    arg_parser.add_argument(
        "--page-size",
        type=int,
        default=DEFAULT_PAGE_SIZE,
        help=f"Rows per page for PAGINATE results (default {DEFAULT_PAGE_SIZE})",
    )
    arg_parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default="WARNING",
        help="Logging level (default WARNING)",
    )

    args = arg_parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    if args.file or args.command:
        if not args.dataset:
            print("Error: Dataset required when using -c/--command or -f/--file", file=sys.stderr)
            return 1
        try:
            dataset = load_dataset(args.dataset)
        except DatasetError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        # Handle file execution
        if args.file:
            if not args.file.exists():
                print(f"Error: File not found: {args.file}", file=sys.stderr)
                return 1
            return run_file(args.file, dataset, args.verbose, args.page_size)

        return run_statements([args.command], dataset, args.verbose, args.page_size)

    return run_repl(args.dataset, args.page_size)


if __name__ == "__main__":
    sys.exit(main())
