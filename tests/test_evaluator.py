"""Tests for expression and predicate evaluation."""

import math

import pytest

from tabql.errors import UNKNOWN_FUNCTION
from tabql.evaluator import ExpressionEvaluator
from tabql.parsing.query_parser import (
    ColumnRef,
    CompoundCondition,
    Condition,
    FunctionCall,
    Literal,
    QueryParser,
)


@pytest.fixture(scope="module")
def parser():
    return QueryParser()


@pytest.fixture
def evaluator():
    return ExpressionEvaluator()


def expr(parser, text):
    """Parse a single select expression."""
    return parser.parse(f"SELECT {text} FROM t").select[0].expr


def where(parser, text):
    """Parse a WHERE predicate."""
    return parser.parse(f"SELECT * FROM t WHERE {text}").where


class TestResolveColumn:
    """Tests for identifier resolution order."""

    def test_variables_win(self, evaluator):
        assert evaluator.resolve_column("x", {"x": 1}, {"x": 2}) == (True, 2)

    def test_exact_key(self, evaluator):
        row = {"city": "NY", "friends.city": "LA"}
        assert evaluator.resolve_column("friends.city", row) == (True, "LA")
        assert evaluator.resolve_column("city", row) == (True, "NY")

    def test_leaf_of_qualified_name(self, evaluator):
        assert evaluator.resolve_column("people.name", {"name": "Chris"}) == (True, "Chris")

    def test_qualified_suffix(self, evaluator):
        assert evaluator.resolve_column("city", {"friends.city": "LA"}) == (True, "LA")

    def test_constants_and_missing(self, evaluator):
        assert evaluator.resolve_column("PI", {}) == (True, math.pi)
        assert evaluator.resolve_column("nosuch", {}) == (False, None)

    def test_row_shadows_constant(self, evaluator):
        assert evaluator.resolve_column("e", {"e": 5}) == (True, 5)


class TestEvaluate:
    """Tests for ExpressionEvaluator.evaluate."""

    def test_literals_and_columns(self, parser, evaluator):
        row = {"age": "23"}
        assert evaluator.evaluate(expr(parser, "'x'"), row) == "x"
        assert evaluator.evaluate(expr(parser, "age"), row) == "23"
        assert evaluator.evaluate(expr(parser, "null"), row) is None

    def test_unresolved_identifier_is_its_text(self, parser, evaluator):
        assert evaluator.evaluate(expr(parser, "Chris"), {}) == "Chris"

    def test_arithmetic_coerces(self, parser, evaluator):
        row = {"a": "6", "b": 4}
        assert evaluator.evaluate(expr(parser, "a + b * 2"), row) == 14
        assert evaluator.evaluate(expr(parser, "a / 4"), row) == 1.5
        assert evaluator.evaluate(expr(parser, "a / 2"), row) == 3
        assert evaluator.evaluate(expr(parser, "a % b"), row) == 2
        assert evaluator.evaluate(expr(parser, "-a"), row) == -6

    def test_division_by_zero_yields_dividend(self, parser, evaluator):
        assert evaluator.evaluate(expr(parser, "7 / 0"), {}) == 7
        assert evaluator.evaluate(expr(parser, "7 % 0"), {}) == 7

    def test_non_numeric_arithmetic_is_null(self, parser, evaluator):
        assert evaluator.evaluate(expr(parser, "name + 1"), {"name": "Chris"}) is None

    def test_function_calls(self, parser, evaluator):
        row = {"name": "chris"}
        assert evaluator.evaluate(expr(parser, "UPPER(name)"), row) == "CHRIS"
        assert evaluator.evaluate(expr(parser, "round(pi, 2)"), row) == 3.14
        assert evaluator.evaluate(expr(parser, "length(concat(name, '!'))"), row) == 6

    def test_scalar_use_of_aggregate(self, parser, evaluator):
        assert evaluator.evaluate(expr(parser, "max(age)"), {"age": 23}) == 23
        assert evaluator.evaluate(expr(parser, "max(age, 100, 7)"), {"age": 23}) == 100
        assert evaluator.evaluate(expr(parser, "coalesce(nickname, name)"), {"nickname": None, "name": "Chris"}) == "Chris"

    def test_aggregate_reads_precomputed_key(self, parser, evaluator):
        row = {"count(*)": 3, "sum(age)": 60}
        assert evaluator.evaluate(expr(parser, "COUNT(*)"), row) == 3
        assert evaluator.evaluate(expr(parser, "sum(age) / count(*)"), row) == 20

    def test_unknown_function_reported_once(self, parser, evaluator, caplog):
        with caplog.at_level("WARNING", logger="tabql.evaluator"):
            assert evaluator.evaluate(expr(parser, "frob(1)"), {}) is None
            assert evaluator.evaluate(expr(parser, "FROB(2)"), {}) is None

        assert len(evaluator.diagnostics) == 1
        assert evaluator.diagnostics[0].code == UNKNOWN_FUNCTION
        assert "frob" in evaluator.diagnostics[0].message
        assert "Unknown function 'frob'" in caplog.text


class TestPredicates:
    """Tests for ExpressionEvaluator.test."""

    def test_comparisons(self, parser, evaluator):
        row = {"age": "23", "name": "Chris"}
        assert evaluator.test(where(parser, "age > 20"), row)
        assert evaluator.test(where(parser, "age >= 23"), row)
        assert not evaluator.test(where(parser, "age < 23"), row)
        assert evaluator.test(where(parser, "name = 'chris'"), row)
        assert evaluator.test(where(parser, "name <> 'Sarah'"), row)

    def test_contains(self, parser, evaluator):
        row = {"city": "Manhattan"}
        assert evaluator.test(where(parser, "city CONTAINS 'HAT'"), row)
        assert not evaluator.test(where(parser, "city contains 'york'"), row)

    def test_and_or(self, parser, evaluator):
        row = {"a": 1, "b": 2}
        assert evaluator.test(where(parser, "a = 1 AND b = 2"), row)
        assert not evaluator.test(where(parser, "a = 1 AND b = 3"), row)
        assert evaluator.test(where(parser, "a = 5 OR (b = 2 AND a < 2)"), row)

    def test_bare_expression(self, parser, evaluator):
        assert evaluator.test(where(parser, "active"), {"active": True})
        assert not evaluator.test(where(parser, "active"), {"active": "false"})
        assert evaluator.test(where(parser, "contains(city, 'an')"), {"city": "Atlanta"})

    def test_null_semantics(self, evaluator):
        missing = Condition(ColumnRef("x"), "=", Literal(None))
        assert evaluator.test(missing, {"x": None})
        assert evaluator.test(missing, {"x": "NULL"})
        assert not evaluator.test(missing, {"x": 1})
        assert evaluator.test(Condition(ColumnRef("x"), "!=", Literal(None)), {"x": 1})
        assert not evaluator.test(Condition(ColumnRef("x"), "<", Literal(5)), {"x": None})
        assert not evaluator.test(Condition(ColumnRef("x"), ">=", Literal(5)), {"x": None})

    def test_unresolved_literal_comparison(self, parser, evaluator):
        assert evaluator.test(where(parser, "name = Chris"), {"name": "Chris"})


class TestAggregateCalls:
    def test_outermost_only(self, parser, evaluator):
        calls = evaluator.aggregate_calls(expr(parser, "round(avg(age), 1) + count(*)"))
        assert calls == [
            FunctionCall("avg", (ColumnRef("age"),)),
            FunctionCall("count", (), star=True),
        ]

    def test_conditions(self, evaluator):
        condition = CompoundCondition(
            Condition(FunctionCall("count", (), star=True), ">", Literal(1)),
            "and",
            Condition(FunctionCall("sum", (ColumnRef("a"),)), "<", Literal(9)),
        )
        assert [c.name for c in evaluator.aggregate_calls(condition)] == ["count", "sum"]

    def test_window_partition_and_order(self, parser, evaluator):
        window = expr(parser, "rank() OVER (PARTITION BY max(city) ORDER BY sum(age) DESC, name)")
        assert [c.name for c in evaluator.aggregate_calls(window)] == ["max", "sum"]

    def test_multi_argument_is_not_aggregate(self, evaluator):
        assert not evaluator.is_aggregate_call(FunctionCall("max", (Literal(1), Literal(2))))
        assert evaluator.aggregate_calls(None) == []
