"""Top-level clause location, delimiter splitting and hint extraction.

All helpers here work on the query text at parenthesis depth zero, so a
keyword or delimiter inside ``OVER (...)`` or a function call never counts.
"""

from __future__ import annotations

import functools
import logging
from enum import Enum

import ply.lex as lex

from tabql.errors import MalformedQuery
from tabql.parsing.query_lexer import QueryLexer

logger = logging.getLogger(__name__)


class Hint(str, Enum):
    """Output hints recognised in a trailing ``WITH (...)`` clause."""

    HEADER_COLUMN_UPPERCASE = "HEADERCOLUMNUPPERCASE"
    OUTPUT_JSON = "OUTPUTJSON"
    PAGINATE = "PAGINATE"


# Clause keywords in canonical order; two-word clauses are keyed by their first token
CLAUSE_KEYWORDS: tuple[str, ...] = (
    "SELECT", "FROM", "WHERE", "GROUP BY", "HAVING", "ORDER BY", "LIMIT", "OFFSET", "WITH",
)
_PAIRED = {"GROUP": "GROUP BY", "ORDER": "ORDER BY"}


@functools.lru_cache(maxsize=None)
def _shared_lexer() -> QueryLexer:
    lexer = QueryLexer()
    lexer.build()
    return lexer


def _top_level_tokens(text: str) -> list[tuple[lex.LexToken, int]]:
    """Tokenize and pair each token with the parenthesis depth it sits at."""
    result = []
    depth = 0
    for tok in _shared_lexer().tokenize(text):
        if tok.type == "RPAREN":
            depth = max(depth - 1, 0)
        result.append((tok, depth))
        if tok.type == "LPAREN":
            depth += 1
    return result


def locate_clauses(text: str) -> dict[str, int]:
    """Return the character index of each top-level clause keyword.

    Only the first occurrence of each clause is recorded. ``GROUP BY`` and
    ``ORDER BY`` are recognised only when ``BY`` immediately follows.
    """
    tokens = _top_level_tokens(text)
    clauses: dict[str, int] = {}
    for i, (tok, depth) in enumerate(tokens):
        if depth:
            continue
        name = tok.type
        if name in _PAIRED:
            if i + 1 >= len(tokens) or tokens[i + 1][0].type != "BY":
                continue
            name = _PAIRED[name]
        if name in CLAUSE_KEYWORDS and name not in clauses:
            clauses[name] = tok.lexpos
    return clauses


def clause_at(text: str, clauses: dict[str, int], position: int) -> str | None:
    """Name the clause containing ``position``, or None if it precedes all clauses."""
    found = None
    for name, start in sorted(clauses.items(), key=lambda item: item[1]):
        if start <= position:
            found = name
    return found


def clause_text(text: str, clauses: dict[str, int], name: str) -> str:
    """Return the text of a clause, up to the start of the next one."""
    start = clauses[name]
    later = [pos for pos in clauses.values() if pos > start]
    end = min(later) if later else len(text)
    return text[start:end].strip()


def split_top_level(text: str, delimiter: str = ",") -> list[str]:
    """Split on ``delimiter`` outside parentheses, quotes and ``--`` comments.

    Pieces are stripped and empty pieces are dropped.
    """
    pieces: list[str] = []
    current: list[str] = []
    depth = 0
    quote: str | None = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            current.append(ch)
            if ch == "\\" and i + 1 < len(text):
                current.append(text[i + 1])
                i += 1
            elif ch == quote:
                quote = None
        elif ch in "'\"`":
            quote = ch
            current.append(ch)
        elif text.startswith("--", i):
            end = text.find("\n", i)
            end = len(text) if end == -1 else end
            current.append(text[i:end])
            i = end
            continue
        elif ch == "(":
            depth += 1
            current.append(ch)
        elif ch == ")":
            depth = max(depth - 1, 0)
            current.append(ch)
        elif depth == 0 and text.startswith(delimiter, i):
            pieces.append("".join(current))
            current = []
            i += len(delimiter)
            continue
        else:
            current.append(ch)
        i += 1
    pieces.append("".join(current))
    return [piece.strip() for piece in pieces if piece.strip()]


def extract_hints(text: str) -> tuple[str, frozenset[Hint]]:
    """Remove a trailing ``WITH (...)`` clause and return (remaining text, hints).

    Hint names are case-insensitive; unrecognised names are ignored.
    """
    tokens = _top_level_tokens(text)
    start = next(
        (i for i, (tok, depth) in enumerate(tokens) if tok.type == "WITH" and depth == 0),
        None,
    )
    if start is None:
        return text, frozenset()

    with_tok = tokens[start][0]
    if start + 1 >= len(tokens) or tokens[start + 1][0].type != "LPAREN":
        raise MalformedQuery("WITH must be followed by a parenthesised hint list")
    open_tok = tokens[start + 1][0]

    close_index = None
    for i in range(start + 2, len(tokens)):
        tok, depth = tokens[i]
        if tok.type == "RPAREN" and depth == 0:
            close_index = i
            break
    if close_index is None:
        raise MalformedQuery(f"Unterminated hint list: {text[with_tok.lexpos:].strip()}")

    trailing = [tok for tok, _ in tokens[close_index + 1:] if tok.type != "SEMICOLON"]
    if trailing:
        raise MalformedQuery(
            f"Unexpected text after hint list: {text[trailing[0].lexpos:].strip()}"
        )

    close_tok = tokens[close_index][0]
    hints = set()
    for name in split_top_level(text[open_tok.lexpos + 1:close_tok.lexpos]):
        try:
            hints.add(Hint(name.upper()))
        except ValueError:
            logger.debug("Ignoring unknown hint %r", name)
    return text[:with_tok.lexpos].rstrip(), frozenset(hints)
