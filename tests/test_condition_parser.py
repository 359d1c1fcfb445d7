"""Tests for the search condition lexer, parser and evaluator."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from typed_models.base import _condition_parser
from typed_models.conditions import (
    CompoundCondition,
    Condition,
    ConditionField,
    evaluate_condition,
    iter_conditions,
    like_to_regex,
)
from typed_models.parsing import ConditionParser
from typed_models.parsing.condition_lexer import ConditionLexer


class TestConditionLexer:
    """Tests for the condition lexer."""

    def test_tokenize_comparison(self):
        """Test tokenizing a comparison."""
        lexer = ConditionLexer()
        lexer.build()

        tokens = lexer.tokenize("age >= 30 and name != 'x'")
        assert [t.type for t in tokens] == ["IDENTIFIER", "GTE", "INTEGER", "AND", "IDENTIFIER", "NEQ", "STRING"]
        assert tokens[2].value == 30
        assert tokens[6].value == "x"

    def test_keywords_are_case_insensitive(self):
        """Test reserved words in any case."""
        lexer = ConditionLexer()
        lexer.build()

        tokens = lexer.tokenize("NOT name LIKE 'a%' Or x = NULL")
        assert [t.type for t in tokens] == ["NOT", "IDENTIFIER", "LIKE", "STRING", "OR", "IDENTIFIER", "EQ", "NULL"]

    def test_numbers(self):
        """Test integer and float literals."""
        lexer = ConditionLexer()
        lexer.build()

        tokens = lexer.tokenize("-3 2.5")
        assert [(t.type, t.value) for t in tokens] == [("INTEGER", -3), ("FLOAT", 2.5)]

    def test_illegal_character(self):
        """Test unknown characters are syntax errors."""
        lexer = ConditionLexer()
        lexer.build()

        with pytest.raises(SyntaxError):
            lexer.tokenize("age # 3")


class TestConditionParser:
    """Tests for the condition parser."""

    def test_parse_comparison(self):
        """Test parsing a single comparison."""
        parser = ConditionParser()
        assert parser.parse("age >= 30") == Condition("age", "gte", 30)

    def test_parse_values(self):
        """Test literal values."""
        parser = ConditionParser()
        assert parser.parse("x = null").value is None
        assert parser.parse("x = true").value is True
        assert parser.parse("x = false").value is False
        assert parser.parse('x = "a b"').value == "a b"
        assert parser.parse("x in (1, 2.5, 'c')").value == [1, 2.5, "c"]

    def test_parse_not_like(self):
        """Test the negated like form."""
        parser = ConditionParser()
        assert parser.parse("name not like 'J%'") == Condition("name", "like", "J%", negate=True)
        assert parser.parse("name ilike 'j%'").operator == "ilike"

    def test_precedence(self):
        """Test not binds tighter than and, which binds tighter than or."""
        parser = ConditionParser()
        result = parser.parse("a = 1 or b = 2 and not c = 3")
        assert isinstance(result, CompoundCondition)
        assert result.operator == "or"
        assert result.right.operator == "and"
        assert result.right.right == Condition("c", "eq", 3, negate=True)

    def test_parentheses(self):
        """Test grouping."""
        parser = ConditionParser()
        result = parser.parse("(a = 1 or b = 2) and c = 3")
        assert result.operator == "and"
        assert result.left.operator == "or"
        assert [c.field for c in iter_conditions(result)] == ["a", "b", "c"]

    def test_syntax_errors(self):
        """Test malformed conditions."""
        parser = ConditionParser()
        with pytest.raises(SyntaxError):
            parser.parse("age >=")
        with pytest.raises(SyntaxError):
            parser.parse("age 3")


class TestEvaluation:
    """Tests for evaluating conditions against rows."""

    def test_builders(self):
        """Test conditions built from fields and combined with operators."""
        age = ConditionField("age")
        name = ConditionField("name")
        condition = (age.greater_or_equal(18) & name.ilike("j%")) | ~age.is_not_null()
        assert evaluate_condition({"age": 20, "name": "John"}, condition)
        assert not evaluate_condition({"age": 20, "name": "Will"}, condition)
        assert evaluate_condition({"age": None, "name": "Will"}, condition)

    def test_builder_operators(self):
        """Test each builder maps to its comparison operator."""
        age = ConditionField("age")
        assert age.not_equals(3) == Condition("age", "neq", 3)
        assert age.lower_or_equal(3) == Condition("age", "lte", 3)
        assert age.in_((1, 2)) == Condition("age", "in", [1, 2])
        assert age.is_null() == Condition("age", "eq", None)

    def test_comparisons(self):
        """Test every comparison operator."""
        row = {"age": 30}
        assert evaluate_condition(row, Condition("age", "eq", 30))
        assert evaluate_condition(row, Condition("age", "neq", 31))
        assert evaluate_condition(row, Condition("age", "lt", 31))
        assert evaluate_condition(row, Condition("age", "lte", 30))
        assert evaluate_condition(row, Condition("age", "gt", 29))
        assert evaluate_condition(row, Condition("age", "gte", 30))
        assert evaluate_condition(row, Condition("age", "in", [1, 30]))

    def test_null_semantics(self):
        """Test comparisons involving nulls."""
        row = {"age": None}
        assert evaluate_condition(row, Condition("age", "eq", None))
        assert not evaluate_condition(row, Condition("age", "gt", 3))
        assert not evaluate_condition({"age": 3}, Condition("age", "eq", None))

    def test_mismatched_types_do_not_match(self):
        """Test incomparable values are no match rather than an error."""
        assert not evaluate_condition({"age": 30}, Condition("age", "lt", "abc"))

    def test_like_to_regex(self):
        """Test LIKE wildcards."""
        assert like_to_regex("J% Sm_th").match("John Smith")
        assert not like_to_regex("J%").match("john")
        assert like_to_regex("J%", case_sensitive=False).match("john")
        assert like_to_regex("a.b").match("a.b")
        assert not like_to_regex("a.b").match("axb")


class TestParserThreads:
    """Tests for the parser used by text searches."""

    def test_one_parser_per_thread(self):
        """Test each thread parses with its own parser."""
        assert _condition_parser() is _condition_parser()
        with ThreadPoolExecutor(max_workers=1) as executor:
            other = executor.submit(_condition_parser).result()
        assert other is not _condition_parser()

    def test_concurrent_parses(self):
        """Test parses running in several threads keep their own results."""

        def parse(n):
            return _condition_parser().parse(f"age >= {n} and name like 'user{n}%'")

        with ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(parse, range(40)))
        for n, result in enumerate(results):
            assert result.left == Condition("age", "gte", n)
            assert result.right == Condition("name", "like", f"user{n}%")
