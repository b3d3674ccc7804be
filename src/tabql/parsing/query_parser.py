"""Parser for the tabql query language."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import ply.yacc as yacc

from tabql.errors import MalformedQuery
from tabql.parsing.clauses import Hint, clause_at, clause_text, extract_hints, locate_clauses
from tabql.parsing.query_lexer import QueryLexer, escape_if_keyword
from tabql.values import to_text


@dataclass(frozen=True)
class Literal:
    """A literal value: number, string, boolean or null."""

    value: Any


@dataclass(frozen=True)
class ColumnRef:
    """A column reference, possibly qualified like ``friends.city``."""

    name: str

    @property
    def path(self) -> list[str]:
        """Return the name as a list of segments (e.g., ['friends', 'city'])."""
        return self.name.split(".")

    @property
    def leaf(self) -> str:
        """Return the last segment of the name."""
        return self.path[-1]


@dataclass(frozen=True)
class FunctionCall:
    """A function call like upper(name) or count(*)."""

    name: str
    args: tuple[Any, ...] = ()
    star: bool = False


@dataclass(frozen=True)
class BinaryExpr:
    """A binary arithmetic expression: left op right."""

    op: str  # +, -, *, /, %
    left: Any
    right: Any


@dataclass(frozen=True)
class UnaryExpr:
    """A unary expression: op operand."""

    op: str  # -
    operand: Any


@dataclass(frozen=True)
class OrderItem:
    """An ORDER BY key."""

    expr: Any
    direction: str = "ASC"  # ASC or DESC


@dataclass(frozen=True)
class WindowCall:
    """A ranking window function: name() OVER (PARTITION BY ... ORDER BY ...)."""

    function_name: str
    partition_by: tuple[Any, ...] = ()
    order_by: tuple[OrderItem, ...] = ()


@dataclass(frozen=True)
class Star:
    """The ``*`` select item."""


Expr = Union[Literal, ColumnRef, FunctionCall, BinaryExpr, UnaryExpr]


@dataclass(frozen=True)
class SelectItem:
    """An item in the SELECT list."""

    expr: Expr | WindowCall | Star
    alias: str | None = None

    @property
    def output_name(self) -> str:
        """The column name this item projects to."""
        if self.alias is not None:
            return self.alias
        if isinstance(self.expr, ColumnRef):
            return self.expr.leaf
        return format_expr(self.expr)


@dataclass(frozen=True)
class Condition:
    """A comparison, or a bare expression tested for truthiness when operator is None."""

    left: Expr
    operator: str | None = None  # =, !=, <, <=, >, >=, contains
    right: Expr | None = None


@dataclass(frozen=True)
class CompoundCondition:
    """A compound condition (AND/OR)."""

    left: Condition | CompoundCondition
    operator: str  # and, or
    right: Condition | CompoundCondition


Predicate = Union[Condition, CompoundCondition]


class JoinKind(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


@dataclass(frozen=True)
class JoinSpec:
    """A JOIN clause: kind JOIN table_path ON left_key = right_key."""

    kind: JoinKind
    table_path: str
    left_key: ColumnRef
    right_key: ColumnRef


@dataclass(frozen=True)
class QueryPlan:
    """A parsed SELECT statement."""

    select: tuple[SelectItem, ...]
    base_table: str
    joins: tuple[JoinSpec, ...] = ()
    where: Predicate | None = None
    group_by: tuple[Expr, ...] = ()
    having: Predicate | None = None
    order_by: tuple[OrderItem, ...] = ()
    limit: int | None = None
    offset: int = 0
    distinct: bool = False
    hints: frozenset[Hint] = field(default_factory=frozenset)


def _render(expr: Any, fold_names: bool) -> str:
    if isinstance(expr, Literal):
        if isinstance(expr.value, str):
            return "'" + expr.value.replace("'", "''") + "'"
        if expr.value is None:
            return "null"
        return to_text(expr.value)
    if isinstance(expr, ColumnRef):
        return ".".join(escape_if_keyword(part) for part in expr.path)
    if isinstance(expr, FunctionCall):
        name = expr.name.lower() if fold_names else expr.name
        if expr.star:
            return f"{name}(*)"
        return f"{name}({', '.join(_render(arg, fold_names) for arg in expr.args)})"
    if isinstance(expr, BinaryExpr):
        left = _render(expr.left, fold_names)
        right = _render(expr.right, fold_names)
        if isinstance(expr.left, BinaryExpr):
            left = f"({left})"
        if isinstance(expr.right, BinaryExpr):
            right = f"({right})"
        return f"{left} {expr.op} {right}"
    if isinstance(expr, UnaryExpr):
        operand = _render(expr.operand, fold_names)
        if isinstance(expr.operand, BinaryExpr):
            operand = f"({operand})"
        return f"{expr.op}{operand}"
    if isinstance(expr, WindowCall):
        name = expr.function_name.lower() if fold_names else expr.function_name
        parts = []
        if expr.partition_by:
            parts.append("PARTITION BY " + ", ".join(_render(e, fold_names) for e in expr.partition_by))
        if expr.order_by:
            parts.append("ORDER BY " + ", ".join(
                f"{_render(item.expr, fold_names)} {item.direction}" for item in expr.order_by
            ))
        return f"{name}() OVER ({' '.join(parts)})"
    if isinstance(expr, Star):
        return "*"
    return str(expr)


def format_expr(expr: Any) -> str:
    """Render an expression as query text, preserving the written case of names."""
    return _render(expr, fold_names=False)


def expression_key(expr: Any) -> str:
    """Canonical key for an expression; function names are lowercased."""
    return _render(expr, fold_names=True)


class QueryParser:
    """Parser for tabql queries."""

    tokens = QueryLexer.tokens

    # Operator precedence
    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("nonassoc", "EQ", "NEQ", "LT", "LTE", "GT", "GTE", "CONTAINS"),
        ("left", "PLUS", "MINUS"),
        ("left", "STAR", "SLASH", "PERCENT"),
        ("right", "UMINUS"),
    )

    def __init__(self) -> None:
        self.lexer = QueryLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore
        self._text = ""
        self._clauses: dict[str, int] = {}

    def p_statement(self, p: yacc.YaccProduction) -> None:
        """statement : select_stmt SEMICOLON
                     | select_stmt"""
        p[0] = p[1]

    def p_select_stmt(self, p: yacc.YaccProduction) -> None:
        """select_stmt : SELECT distinct_opt select_list FROM from_clause where_opt group_opt having_opt order_opt limit_opt offset_opt"""
        base_table, joins = p[5]
        p[0] = QueryPlan(
            select=tuple(p[3]),
            base_table=base_table,
            joins=tuple(joins),
            where=p[6],
            group_by=tuple(p[7]),
            having=p[8],
            order_by=tuple(p[9]),
            limit=p[10],
            offset=p[11],
            distinct=p[2],
        )

    def p_distinct_opt(self, p: yacc.YaccProduction) -> None:
        """distinct_opt : DISTINCT
                        | empty"""
        p[0] = p[1] is not None

    def p_select_list_single(self, p: yacc.YaccProduction) -> None:
        """select_list : select_item"""
        p[0] = [p[1]]

    def p_select_list_multiple(self, p: yacc.YaccProduction) -> None:
        """select_list : select_list COMMA select_item"""
        p[0] = p[1] + [p[3]]

    def p_select_item_star(self, p: yacc.YaccProduction) -> None:
        """select_item : STAR"""
        p[0] = SelectItem(expr=Star())

    def p_select_item_expr(self, p: yacc.YaccProduction) -> None:
        """select_item : expr
                       | window_call"""
        p[0] = SelectItem(expr=p[1])

    def p_select_item_alias(self, p: yacc.YaccProduction) -> None:
        """select_item : expr AS alias_name
                       | window_call AS alias_name"""
        p[0] = SelectItem(expr=p[1], alias=p[3])

    def p_alias_name(self, p: yacc.YaccProduction) -> None:
        """alias_name : IDENTIFIER
                      | STRING"""
        p[0] = p[1]

    # --- Expressions ---

    def p_expr_binary(self, p: yacc.YaccProduction) -> None:
        """expr : expr PLUS expr
                | expr MINUS expr
                | expr STAR expr
                | expr SLASH expr
                | expr PERCENT expr"""
        p[0] = BinaryExpr(op=p[2], left=p[1], right=p[3])

    def p_expr_negate(self, p: yacc.YaccProduction) -> None:
        """expr : MINUS expr %prec UMINUS"""
        operand = p[2]
        if isinstance(operand, Literal) and isinstance(operand.value, (int, float)) \
                and not isinstance(operand.value, bool):
            p[0] = Literal(-operand.value)
        else:
            p[0] = UnaryExpr(op="-", operand=operand)

    def p_expr_paren(self, p: yacc.YaccProduction) -> None:
        """expr : LPAREN expr RPAREN"""
        p[0] = p[2]

    def p_expr_literal(self, p: yacc.YaccProduction) -> None:
        """expr : INTEGER
                | FLOAT
                | STRING"""
        p[0] = Literal(p[1])

    def p_expr_boolean(self, p: yacc.YaccProduction) -> None:
        """expr : TRUE
                | FALSE"""
        p[0] = Literal(p[1].lower() == "true")

    def p_expr_null(self, p: yacc.YaccProduction) -> None:
        """expr : NULL"""
        p[0] = Literal(None)

    def p_expr_column(self, p: yacc.YaccProduction) -> None:
        """expr : column_ref
                | function_call"""
        p[0] = p[1]

    def p_column_ref_single(self, p: yacc.YaccProduction) -> None:
        """column_ref : IDENTIFIER"""
        p[0] = ColumnRef(name=p[1])

    def p_column_ref_dotted(self, p: yacc.YaccProduction) -> None:
        """column_ref : column_ref DOT IDENTIFIER"""
        p[0] = ColumnRef(name=f"{p[1].name}.{p[3]}")

    def p_func_name(self, p: yacc.YaccProduction) -> None:
        """func_name : IDENTIFIER
                     | CONTAINS
                     | LEFT
                     | RIGHT"""
        p[0] = p[1]

    def p_function_call_empty(self, p: yacc.YaccProduction) -> None:
        """function_call : func_name LPAREN RPAREN"""
        p[0] = FunctionCall(name=p[1])

    def p_function_call_star(self, p: yacc.YaccProduction) -> None:
        """function_call : func_name LPAREN STAR RPAREN"""
        p[0] = FunctionCall(name=p[1], star=True)

    def p_function_call_args(self, p: yacc.YaccProduction) -> None:
        """function_call : func_name LPAREN expr_list RPAREN"""
        p[0] = FunctionCall(name=p[1], args=tuple(p[3]))

    def p_expr_list_single(self, p: yacc.YaccProduction) -> None:
        """expr_list : expr"""
        p[0] = [p[1]]

    def p_expr_list_multiple(self, p: yacc.YaccProduction) -> None:
        """expr_list : expr_list COMMA expr"""
        p[0] = p[1] + [p[3]]

    # --- Window functions ---

    def p_window_call(self, p: yacc.YaccProduction) -> None:
        """window_call : func_name LPAREN RPAREN OVER LPAREN partition_opt window_order_opt RPAREN"""
        p[0] = WindowCall(function_name=p[1], partition_by=tuple(p[6]), order_by=tuple(p[7]))

    def p_partition_opt(self, p: yacc.YaccProduction) -> None:
        """partition_opt : PARTITION BY expr_list
                         | empty"""
        p[0] = p[3] if len(p) == 4 else []

    def p_window_order_opt(self, p: yacc.YaccProduction) -> None:
        """window_order_opt : ORDER BY order_list
                            | empty"""
        p[0] = p[3] if len(p) == 4 else []

    # --- FROM and JOIN ---

    def p_from_clause(self, p: yacc.YaccProduction) -> None:
        """from_clause : table_path join_list"""
        p[0] = (p[1], p[2])

    def p_table_path(self, p: yacc.YaccProduction) -> None:
        """table_path : column_ref
                      | STRING"""
        p[0] = p[1].name if isinstance(p[1], ColumnRef) else p[1]

    def p_join_list_empty(self, p: yacc.YaccProduction) -> None:
        """join_list : empty"""
        p[0] = []

    def p_join_list(self, p: yacc.YaccProduction) -> None:
        """join_list : join_list join_clause"""
        p[0] = p[1] + [p[2]]

    def p_join_clause(self, p: yacc.YaccProduction) -> None:
        """join_clause : join_kind JOIN table_path ON column_ref EQ column_ref"""
        p[0] = JoinSpec(kind=p[1], table_path=p[3], left_key=p[5], right_key=p[7])

    def p_join_kind_default(self, p: yacc.YaccProduction) -> None:
        """join_kind : empty
                     | INNER"""
        p[0] = JoinKind.INNER

    def p_join_kind_outer(self, p: yacc.YaccProduction) -> None:
        """join_kind : LEFT outer_opt
                     | RIGHT outer_opt
                     | FULL outer_opt"""
        p[0] = JoinKind(p[1].upper())

    def p_outer_opt(self, p: yacc.YaccProduction) -> None:
        """outer_opt : OUTER
                     | empty"""
        p[0] = None

    # --- Predicates ---

    def p_where_opt(self, p: yacc.YaccProduction) -> None:
        """where_opt : WHERE condition
                     | empty"""
        p[0] = p[2] if len(p) == 3 else None

    def p_having_opt(self, p: yacc.YaccProduction) -> None:
        """having_opt : HAVING condition
                      | empty"""
        p[0] = p[2] if len(p) == 3 else None

    def p_condition_comparison(self, p: yacc.YaccProduction) -> None:
        """condition : expr EQ expr
                     | expr NEQ expr
                     | expr LT expr
                     | expr LTE expr
                     | expr GT expr
                     | expr GTE expr
                     | expr CONTAINS expr"""
        operator = p[2].lower()
        if operator == "<>":
            operator = "!="
        p[0] = Condition(left=p[1], operator=operator, right=p[3])

    def p_condition_bare(self, p: yacc.YaccProduction) -> None:
        """condition : expr"""
        p[0] = Condition(left=p[1])

    def p_condition_and(self, p: yacc.YaccProduction) -> None:
        """condition : condition AND condition"""
        p[0] = CompoundCondition(left=p[1], operator="and", right=p[3])

    def p_condition_or(self, p: yacc.YaccProduction) -> None:
        """condition : condition OR condition"""
        p[0] = CompoundCondition(left=p[1], operator="or", right=p[3])

    def p_condition_paren(self, p: yacc.YaccProduction) -> None:
        """condition : LPAREN condition RPAREN"""
        p[0] = p[2]

    # --- GROUP BY, ORDER BY, LIMIT, OFFSET ---

    def p_group_opt(self, p: yacc.YaccProduction) -> None:
        """group_opt : GROUP BY expr_list
                     | empty"""
        p[0] = p[3] if len(p) == 4 else []

    def p_order_opt(self, p: yacc.YaccProduction) -> None:
        """order_opt : ORDER BY order_list
                     | empty"""
        p[0] = p[3] if len(p) == 4 else []

    def p_order_list_single(self, p: yacc.YaccProduction) -> None:
        """order_list : order_item"""
        p[0] = [p[1]]

    def p_order_list_multiple(self, p: yacc.YaccProduction) -> None:
        """order_list : order_list COMMA order_item"""
        p[0] = p[1] + [p[3]]

    def p_order_item(self, p: yacc.YaccProduction) -> None:
        """order_item : expr
                      | expr ASC
                      | expr DESC"""
        direction = p[2].upper() if len(p) == 3 else "ASC"
        p[0] = OrderItem(expr=p[1], direction=direction)

    def p_limit_opt(self, p: yacc.YaccProduction) -> None:
        """limit_opt : LIMIT INTEGER
                     | empty"""
        p[0] = p[2] if len(p) == 3 else None

    def p_offset_opt(self, p: yacc.YaccProduction) -> None:
        """offset_opt : OFFSET INTEGER
                      | empty"""
        p[0] = p[2] if len(p) == 3 else 0

    def p_empty(self, p: yacc.YaccProduction) -> None:
        """empty :"""
        p[0] = None

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            where = clause_at(self._text, self._clauses, p.lexpos)
            near = f"at '{p.value}' (position {p.lexpos})"
        else:
            where = max(self._clauses, key=self._clauses.get) if self._clauses else None
            near = "at end of input"
        if where is None:
            raise MalformedQuery(f"Syntax error {near}")
        raise MalformedQuery(
            f"Syntax error in {where} clause {near}: {clause_text(self._text, self._clauses, where)}"
        )

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="statement", errorlog=yacc.NullLogger(), **kwargs)

    def parse(self, data: str) -> QueryPlan:
        """Parse a query string into a QueryPlan."""
        if self.parser is None:
            self.build(debug=False, write_tables=False)

        text = data.strip()
        while text.endswith(";"):
            text = text[:-1].rstrip()
        if not text:
            raise MalformedQuery("Empty query")

        text, hints = extract_hints(text)
        clauses = locate_clauses(text)
        for required in ("SELECT", "FROM"):
            if required not in clauses:
                raise MalformedQuery(f"Missing {required} clause")

        self._text = text
        self._clauses = clauses
        self.lexer.lexer.lineno = 1
        plan = self.parser.parse(text, lexer=self.lexer.lexer)
        return dataclasses.replace(plan, hints=hints)
