"""Unit tests for the expression tokenizer, parser and evaluator."""

import pytest

from services.expression import (
    BinaryOp,
    ExpressionEvaluationError,
    ExpressionEvaluator,
    ExpressionParser,
    ExpressionSyntaxError,
    Literal,
    PropertyAccess,
    TokenType,
    tokenize,
)


@pytest.fixture
def parser():
    return ExpressionParser()


@pytest.fixture
def evaluate(parser):
    evaluator = ExpressionEvaluator()

    def _evaluate(text, context=None):
        return evaluator.evaluate(parser.parse(text), context or {})
    return _evaluate


class TestTokenize:
    """Tests for tokenize."""

    def test_negative_number_after_operator(self):
        tokens = tokenize("balance > -5")
        assert [t.type for t in tokens] == [
            TokenType.IDENTIFIER, TokenType.OPERATOR, TokenType.NUMBER, TokenType.EOF,
        ]
        assert tokens[2].value == -5

    def test_symbolic_boolean_operators(self):
        types = [t.type for t in tokenize("a && b || c")]
        assert TokenType.AND in types and TokenType.OR in types

    def test_unterminated_string(self):
        with pytest.raises(ExpressionSyntaxError, match="Unterminated"):
            tokenize("name = 'abc")

    def test_unexpected_character(self):
        with pytest.raises(ExpressionSyntaxError, match="Unexpected character"):
            tokenize("a # b")


class TestParser:
    """Tests for ExpressionParser.parse."""

    def test_precedence_or_below_and(self, parser):
        """a OR b AND c parses as a OR (b AND c)."""
        ast = parser.parse("a OR b AND c")
        assert isinstance(ast, BinaryOp) and ast.operator == "OR"
        assert isinstance(ast.right, BinaryOp) and ast.right.operator == "AND"

    def test_single_equals_normalized(self, parser):
        ast = parser.parse("status = 'open'")
        assert ast == BinaryOp(PropertyAccess(("status",)), "==", Literal("open"))

    def test_parentheses_group(self, parser):
        ast = parser.parse("(a OR b) AND c")
        assert ast.operator == "AND"
        assert ast.left.operator == "OR"

    def test_case_insensitive_keywords(self, parser):
        assert parser.parse("a and b").operator == "AND"

    def test_chained_comparison_rejected(self, parser):
        with pytest.raises(ExpressionSyntaxError):
            parser.parse("1 < 2 < 3")

    def test_unbalanced_parenthesis(self, parser):
        with pytest.raises(ExpressionSyntaxError):
            parser.parse("(a AND b")

    def test_empty_expression(self, parser):
        with pytest.raises(ExpressionSyntaxError):
            parser.parse("")


class TestEvaluator:
    """Tests for ExpressionEvaluator.evaluate."""

    def test_property_comparison(self, evaluate):
        assert evaluate("entity.balance > 0", {"entity": {"balance": -5}}) is False
        assert evaluate("entity.balance <= 0", {"entity": {"balance": -5}}) is True

    def test_numeric_equality_across_types(self, evaluate):
        assert evaluate("amount = 10", {"amount": 10.0}) is True

    def test_boolean_not_equal_to_number(self, evaluate):
        assert evaluate("flag = 1", {"flag": True}) is False

    def test_string_and_null_literals(self, evaluate):
        assert evaluate("name != null AND name = 'Ada'", {"name": "Ada"}) is True

    def test_short_circuit_skips_missing_property(self, evaluate):
        """The right side is never evaluated once OR is satisfied."""
        assert evaluate("true OR missing.value > 1") is True
        assert evaluate("false AND missing.value > 1") is False

    def test_truthiness_of_operands(self, evaluate):
        assert evaluate("value OR false", {"value": None}) is False
        assert evaluate("value AND true", {"value": "text"}) is True

    def test_missing_property(self, evaluate):
        with pytest.raises(ExpressionEvaluationError, match="not found"):
            evaluate("entity.balance > 0", {"entity": {}})

    def test_property_of_non_object(self, evaluate):
        with pytest.raises(ExpressionEvaluationError, match="non-object"):
            evaluate("entity.balance.value = 1", {"entity": {"balance": 3}})

    def test_ordering_requires_numbers(self, evaluate):
        with pytest.raises(ExpressionEvaluationError, match="requires numbers"):
            evaluate("name > 3", {"name": "Ada"})
