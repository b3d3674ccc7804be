"""Tests for the query lexer and parser."""

import dataclasses

import pytest

from tabql.errors import MalformedQuery
from tabql.parsing.clauses import Hint
from tabql.parsing.query_lexer import QueryLexer
from tabql.parsing.query_parser import (
    BinaryExpr,
    ColumnRef,
    CompoundCondition,
    Condition,
    FunctionCall,
    JoinKind,
    JoinSpec,
    Literal,
    OrderItem,
    QueryParser,
    SelectItem,
    Star,
    UnaryExpr,
    WindowCall,
    expression_key,
    format_expr,
)


@pytest.fixture
def lexer():
    lexer = QueryLexer()
    lexer.build()
    return lexer


@pytest.fixture
def parser():
    return QueryParser()


class TestQueryLexer:
    """Tests for the query lexer."""

    def test_tokenize_select(self, lexer):
        """Test tokenizing a select query."""
        tokens = lexer.tokenize("SELECT name, age FROM friends WHERE age >= 18")
        token_types = [t.type for t in tokens]

        assert token_types == [
            "SELECT", "IDENTIFIER", "COMMA", "IDENTIFIER", "FROM", "IDENTIFIER",
            "WHERE", "IDENTIFIER", "GTE", "INTEGER",
        ]

    def test_keywords_are_case_insensitive(self, lexer):
        tokens = lexer.tokenize("select Name fRoM t")
        assert [t.type for t in tokens] == ["SELECT", "IDENTIFIER", "FROM", "IDENTIFIER"]
        assert tokens[1].value == "Name"

    def test_dollar_identifier(self, lexer):
        tokens = lexer.tokenize("$data.friends")
        assert [(t.type, t.value) for t in tokens] == [
            ("IDENTIFIER", "$data"), ("DOT", "."), ("IDENTIFIER", "friends"),
        ]

    def test_backtick_identifier_bypasses_keywords(self, lexer):
        tokens = lexer.tokenize("`order`")
        assert tokens[0].type == "IDENTIFIER"
        assert tokens[0].value == "order"

    def test_strings(self, lexer):
        tokens = lexer.tokenize("'it''s' \"say \\\"hi\\\"\"")
        assert [t.type for t in tokens] == ["STRING", "STRING"]
        assert tokens[0].value == "it's"
        assert tokens[1].value == 'say "hi"'

    def test_numbers(self, lexer):
        tokens = lexer.tokenize("42 1.5")
        assert [(t.type, t.value) for t in tokens] == [("INTEGER", 42), ("FLOAT", 1.5)]

    def test_not_equal_forms(self, lexer):
        tokens = lexer.tokenize("a != b <> c")
        assert [t.type for t in tokens] == ["IDENTIFIER", "NEQ", "IDENTIFIER", "NEQ", "IDENTIFIER"]

    def test_comments_are_skipped(self, lexer):
        tokens = lexer.tokenize("SELECT a -- trailing comment\nFROM t")
        assert [t.type for t in tokens] == ["SELECT", "IDENTIFIER", "FROM", "IDENTIFIER"]

    def test_illegal_character(self, lexer):
        with pytest.raises(MalformedQuery, match="Illegal character '\\?'"):
            lexer.tokenize("SELECT a FROM t WHERE a ? 1")


class TestSelectList:
    """Tests for parsing the SELECT list."""

    def test_parse_simple_select(self, parser):
        plan = parser.parse("SELECT name, age FROM friends")

        assert plan.base_table == "friends"
        assert plan.select == (SelectItem(ColumnRef("name")), SelectItem(ColumnRef("age")))
        assert plan.where is None
        assert plan.limit is None
        assert plan.offset == 0
        assert plan.distinct is False
        assert plan.hints == frozenset()

    def test_trailing_semicolon(self, parser):
        plan = parser.parse("  SELECT name FROM friends;  ")
        assert plan.select == (SelectItem(ColumnRef("name")),)

    def test_star(self, parser):
        plan = parser.parse("SELECT * FROM friends")
        assert plan.select == (SelectItem(Star()),)

    def test_alias(self, parser):
        plan = parser.parse("SELECT upper(name) AS n FROM friends")
        assert plan.select[0] == SelectItem(FunctionCall("upper", (ColumnRef("name"),)), "n")

    def test_default_output_names(self, parser):
        plan = parser.parse("SELECT friends.name, upper(name), age + 1 FROM friends")
        assert [item.output_name for item in plan.select] == ["name", "upper(name)", "age + 1"]

    def test_count_star(self, parser):
        plan = parser.parse("SELECT COUNT(*) FROM friends")
        call = plan.select[0].expr

        assert call == FunctionCall("COUNT", star=True)
        assert format_expr(call) == "COUNT(*)"
        assert expression_key(call) == "count(*)"

    def test_distinct(self, parser):
        plan = parser.parse("SELECT DISTINCT city FROM friends")
        assert plan.distinct is True


class TestExpressions:
    """Tests for expression parsing."""

    def test_arithmetic_precedence(self, parser):
        plan = parser.parse("SELECT a + b * 2 FROM t")
        assert plan.select[0].expr == BinaryExpr(
            "+", ColumnRef("a"), BinaryExpr("*", ColumnRef("b"), Literal(2))
        )

    def test_parentheses(self, parser):
        plan = parser.parse("SELECT (a + b) * 2 FROM t")
        assert plan.select[0].expr == BinaryExpr(
            "*", BinaryExpr("+", ColumnRef("a"), ColumnRef("b")), Literal(2)
        )
        assert format_expr(plan.select[0].expr) == "(a + b) * 2"

    def test_unary_minus(self, parser):
        plan = parser.parse("SELECT -5, -age FROM t")
        assert plan.select[0].expr == Literal(-5)
        assert plan.select[1].expr == UnaryExpr("-", ColumnRef("age"))

    def test_literals(self, parser):
        plan = parser.parse("SELECT true, FALSE, null, 'x', 2.5 FROM t")
        assert [item.expr for item in plan.select] == [
            Literal(True), Literal(False), Literal(None), Literal("x"), Literal(2.5),
        ]

    def test_qualified_column(self, parser):
        plan = parser.parse("SELECT friends.city FROM friends")
        expr = plan.select[0].expr
        assert expr == ColumnRef("friends.city")
        assert expr.path == ["friends", "city"]
        assert expr.leaf == "city"


class TestPredicates:
    """Tests for WHERE and HAVING predicates."""

    def test_comparison(self, parser):
        plan = parser.parse("SELECT name FROM friends WHERE age > 20")
        assert plan.where == Condition(ColumnRef("age"), ">", Literal(20))

    def test_angle_not_equal(self, parser):
        plan = parser.parse("SELECT name FROM friends WHERE age <> 20")
        assert plan.where.operator == "!="

    def test_and_binds_tighter_than_or(self, parser):
        plan = parser.parse("SELECT * FROM t WHERE a = 1 OR b = 2 AND c = 3")
        assert plan.where == CompoundCondition(
            Condition(ColumnRef("a"), "=", Literal(1)),
            "or",
            CompoundCondition(
                Condition(ColumnRef("b"), "=", Literal(2)),
                "and",
                Condition(ColumnRef("c"), "=", Literal(3)),
            ),
        )

    def test_grouped_predicate(self, parser):
        plan = parser.parse("SELECT * FROM t WHERE (a = 1 OR b = 2) AND c = 3")
        assert plan.where.operator == "and"
        assert plan.where.left.operator == "or"

    def test_contains_operator(self, parser):
        plan = parser.parse("SELECT * FROM friends WHERE city CONTAINS 'york'")
        assert plan.where == Condition(ColumnRef("city"), "contains", Literal("york"))

    def test_bare_predicate(self, parser):
        plan = parser.parse("SELECT * FROM friends WHERE contains(city, 'man')")
        assert plan.where == Condition(
            FunctionCall("contains", (ColumnRef("city"), Literal("man")))
        )
        assert plan.where.operator is None


class TestJoins:
    """Tests for FROM paths and JOIN clauses."""

    def test_dotted_table_path(self, parser):
        assert parser.parse("SELECT * FROM data.friends").base_table == "data.friends"
        assert parser.parse("SELECT * FROM $.friends").base_table == "$.friends"

    def test_left_outer_join(self, parser):
        plan = parser.parse("SELECT * FROM friends LEFT OUTER JOIN cities ON city = cityName")
        assert plan.joins == (
            JoinSpec(JoinKind.LEFT, "cities", ColumnRef("city"), ColumnRef("cityName")),
        )

    @pytest.mark.parametrize(
        "clause, kind",
        [
            ("JOIN", JoinKind.INNER),
            ("INNER JOIN", JoinKind.INNER),
            ("LEFT JOIN", JoinKind.LEFT),
            ("RIGHT JOIN", JoinKind.RIGHT),
            ("RIGHT OUTER JOIN", JoinKind.RIGHT),
            ("FULL JOIN", JoinKind.FULL),
            ("FULL OUTER JOIN", JoinKind.FULL),
        ],
    )
    def test_join_kinds(self, parser, clause, kind):
        plan = parser.parse(f"SELECT * FROM a {clause} b ON a.id = b.id")
        assert plan.joins[0].kind == kind

    def test_join_chain(self, parser):
        plan = parser.parse(
            "SELECT * FROM a JOIN b ON a.id = b.a_id LEFT JOIN c ON b.id = c.b_id WHERE a.id > 1"
        )
        assert [j.table_path for j in plan.joins] == ["b", "c"]
        assert plan.joins[1].kind == JoinKind.LEFT
        assert plan.where is not None


class TestTrailingClauses:
    """Tests for GROUP BY, HAVING, ORDER BY, LIMIT and OFFSET."""

    def test_full_query(self, parser):
        plan = parser.parse(
            "SELECT city, count(*) AS n FROM friends GROUP BY city HAVING count(*) > 1 "
            "ORDER BY n DESC, city LIMIT 10 OFFSET 5"
        )

        assert plan.group_by == (ColumnRef("city"),)
        assert plan.having == Condition(FunctionCall("count", star=True), ">", Literal(1))
        assert plan.order_by == (
            OrderItem(ColumnRef("n"), "DESC"),
            OrderItem(ColumnRef("city"), "ASC"),
        )
        assert plan.limit == 10
        assert plan.offset == 5

    def test_plan_is_frozen(self, parser):
        plan = parser.parse("SELECT * FROM friends")
        with pytest.raises(dataclasses.FrozenInstanceError):
            plan.limit = 3  # type: ignore[misc]


class TestWindowFunctions:
    """Tests for OVER (...) window calls."""

    def test_row_number(self, parser):
        plan = parser.parse(
            "SELECT name, ROW_NUMBER() OVER (PARTITION BY city ORDER BY name ASC) AS r FROM friends"
        )
        assert plan.select[1] == SelectItem(
            WindowCall("ROW_NUMBER", (ColumnRef("city"),), (OrderItem(ColumnRef("name"), "ASC"),)),
            "r",
        )

    def test_optional_sub_clauses(self, parser):
        plan = parser.parse(
            "SELECT RANK() OVER (ORDER BY age DESC) AS a, DENSE_RANK() OVER () AS b FROM friends"
        )
        assert plan.select[0].expr == WindowCall("RANK", (), (OrderItem(ColumnRef("age"), "DESC"),))
        assert plan.select[1].expr == WindowCall("DENSE_RANK")


class TestHints:
    """Tests for the trailing WITH (...) hint clause."""

    def test_hints_are_case_insensitive(self, parser):
        plan = parser.parse("SELECT * FROM t WITH (OutputJson, paginate);")
        assert plan.hints == frozenset({Hint.OUTPUT_JSON, Hint.PAGINATE})

    def test_unknown_hint_is_ignored(self, parser):
        plan = parser.parse("SELECT * FROM t WITH (NOSUCHHINT, HEADERCOLUMNUPPERCASE)")
        assert plan.hints == frozenset({Hint.HEADER_COLUMN_UPPERCASE})


class TestParseErrors:
    """Tests for malformed queries."""

    def test_empty_query(self, parser):
        with pytest.raises(MalformedQuery, match="Empty query"):
            parser.parse("  ;")

    def test_missing_from(self, parser):
        with pytest.raises(MalformedQuery, match="Missing FROM clause"):
            parser.parse("SELECT name")

    def test_missing_select(self, parser):
        with pytest.raises(MalformedQuery, match="Missing SELECT clause"):
            parser.parse("FROM friends")

    def test_join_missing_on(self, parser):
        with pytest.raises(MalformedQuery, match="FROM clause") as exc_info:
            parser.parse("SELECT * FROM a JOIN b city = cityName")
        assert "FROM a JOIN b city = cityName" in str(exc_info.value)

    def test_join_missing_equals(self, parser):
        with pytest.raises(MalformedQuery, match="FROM clause"):
            parser.parse("SELECT * FROM a JOIN b ON city cityName")

    def test_missing_operand(self, parser):
        with pytest.raises(MalformedQuery, match="WHERE clause at end of input"):
            parser.parse("SELECT * FROM t WHERE age >")

    def test_unterminated_hints(self, parser):
        with pytest.raises(MalformedQuery, match="Unterminated hint list"):
            parser.parse("SELECT * FROM t WITH (PAGINATE")

    def test_text_after_hints(self, parser):
        with pytest.raises(MalformedQuery, match="Unexpected text after hint list"):
            parser.parse("SELECT * FROM t WITH (PAGINATE) LIMIT 5")

    def test_parser_is_reusable_after_error(self, parser):
        with pytest.raises(MalformedQuery):
            parser.parse("SELECT * FROM t WHERE")
        assert parser.parse("SELECT a FROM t").base_table == "t"
