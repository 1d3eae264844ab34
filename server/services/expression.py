"""Boolean expression language for condition and expression nodes.

Grammar (lowest precedence first)::

    expression := or_expr
    or_expr    := and_expr (("OR" | "||") and_expr)*
    and_expr   := comparison (("AND" | "&&") comparison)*
    comparison := primary (("=" | "==" | "!=" | ">" | "<" | ">=" | "<=") primary)?
    primary    := NUMBER | STRING | "true" | "false" | "null" | PATH | "(" expression ")"

Strings are single-quoted; PATH is a dotted identifier such as ``entity.balance``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Tuple, Union


class ExpressionSyntaxError(ValueError):
    """The expression text could not be tokenized or parsed."""


class ExpressionEvaluationError(ValueError):
    """The expression could not be evaluated against the given context."""


# =============================================================================
# TOKENS
# =============================================================================

class TokenType(str, Enum):
    NUMBER = "NUMBER"
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    NULL = "NULL"
    IDENTIFIER = "IDENTIFIER"
    OPERATOR = "OPERATOR"
    AND = "AND"
    OR = "OR"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: Any
    position: int


_COMPARISON_OPERATORS = (">=", "<=", "!=", "==", "=", ">", "<")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    length = len(text)

    while pos < length:
        char = text[pos]

        if char.isspace():
            pos += 1
            continue

        if char == "(":
            tokens.append(Token(TokenType.LPAREN, char, pos))
            pos += 1
            continue
        if char == ")":
            tokens.append(Token(TokenType.RPAREN, char, pos))
            pos += 1
            continue

        if char == "'":
            end = text.find("'", pos + 1)
            if end == -1:
                raise ExpressionSyntaxError(f"Unterminated string at position {pos}")
            tokens.append(Token(TokenType.STRING, text[pos + 1:end], pos))
            pos = end + 1
            continue

        if text.startswith("&&", pos):
            tokens.append(Token(TokenType.AND, "AND", pos))
            pos += 2
            continue
        if text.startswith("||", pos):
            tokens.append(Token(TokenType.OR, "OR", pos))
            pos += 2
            continue

        # A leading minus is a sign only where an operand is expected
        operand_expected = not tokens or tokens[-1].type in (
            TokenType.OPERATOR, TokenType.AND, TokenType.OR, TokenType.LPAREN
        )
        number = _NUMBER.match(text, pos)
        if number and (char != "-" or operand_expected):
            raw = number.group(0)
            value: Union[int, float] = float(raw) if "." in raw else int(raw)
            tokens.append(Token(TokenType.NUMBER, value, pos))
            pos = number.end()
            continue

        operator = next((op for op in _COMPARISON_OPERATORS if text.startswith(op, pos)), None)
        if operator:
            tokens.append(Token(TokenType.OPERATOR, "==" if operator == "=" else operator, pos))
            pos += len(operator)
            continue

        identifier = _IDENTIFIER.match(text, pos)
        if identifier:
            word = identifier.group(0)
            upper = word.upper()
            if upper == "AND":
                tokens.append(Token(TokenType.AND, "AND", pos))
            elif upper == "OR":
                tokens.append(Token(TokenType.OR, "OR", pos))
            elif word in ("true", "false"):
                tokens.append(Token(TokenType.BOOLEAN, word == "true", pos))
            elif word == "null":
                tokens.append(Token(TokenType.NULL, None, pos))
            else:
                tokens.append(Token(TokenType.IDENTIFIER, word, pos))
            pos = identifier.end()
            continue

        raise ExpressionSyntaxError(f"Unexpected character '{char}' at position {pos}")

    tokens.append(Token(TokenType.EOF, None, length))
    return tokens


# =============================================================================
# AST
# =============================================================================

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class PropertyAccess:
    path: Tuple[str, ...]

    @property
    def dotted(self) -> str:
        return ".".join(self.path)


@dataclass(frozen=True)
class BinaryOp:
    left: "Expression"
    operator: str
    right: "Expression"


Expression = Union[Literal, PropertyAccess, BinaryOp]


# =============================================================================
# PARSER
# =============================================================================

class _Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def parse(self) -> Expression:
        if self.peek().type == TokenType.EOF:
            raise ExpressionSyntaxError("Empty expression")
        expression = self.parse_or()
        token = self.peek()
        if token.type != TokenType.EOF:
            raise ExpressionSyntaxError(f"Unexpected '{token.value}' at position {token.position}")
        return expression

    def parse_or(self) -> Expression:
        left = self.parse_and()
        while self.peek().type == TokenType.OR:
            self.advance()
            left = BinaryOp(left, "OR", self.parse_and())
        return left

    def parse_and(self) -> Expression:
        left = self.parse_comparison()
        while self.peek().type == TokenType.AND:
            self.advance()
            left = BinaryOp(left, "AND", self.parse_comparison())
        return left

    def parse_comparison(self) -> Expression:
        left = self.parse_primary()
        if self.peek().type == TokenType.OPERATOR:
            operator = self.advance().value
            right = self.parse_primary()
            if self.peek().type == TokenType.OPERATOR:
                token = self.peek()
                raise ExpressionSyntaxError(
                    f"Chained comparison '{token.value}' at position {token.position}; use AND"
                )
            return BinaryOp(left, operator, right)
        return left

    def parse_primary(self) -> Expression:
        token = self.advance()
        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN, TokenType.NULL):
            return Literal(token.value)
        if token.type == TokenType.IDENTIFIER:
            return PropertyAccess(tuple(token.value.split(".")))
        if token.type == TokenType.LPAREN:
            expression = self.parse_or()
            closing = self.advance()
            if closing.type != TokenType.RPAREN:
                raise ExpressionSyntaxError(f"Expected ')' at position {closing.position}")
            return expression
        if token.type == TokenType.EOF:
            raise ExpressionSyntaxError("Unexpected end of expression")
        raise ExpressionSyntaxError(f"Unexpected '{token.value}' at position {token.position}")


class ExpressionParser:
    """Parses expression text into an AST."""

    def parse(self, text: str) -> Expression:
        if text is None:
            raise ExpressionSyntaxError("Empty expression")
        return _Parser(tokenize(text)).parse()


# =============================================================================
# EVALUATOR
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return True


def _equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


class ExpressionEvaluator:
    """Evaluates a parsed expression against a nested mapping context."""

    def evaluate(self, expression: Expression, context: Mapping[str, Any]) -> Any:
        if isinstance(expression, Literal):
            return expression.value
        if isinstance(expression, PropertyAccess):
            return self._resolve(expression, context)
        if isinstance(expression, BinaryOp):
            return self._binary(expression, context)
        raise ExpressionEvaluationError(f"Unsupported expression node {type(expression).__name__}")

    def _resolve(self, access: PropertyAccess, context: Mapping[str, Any]) -> Any:
        current: Any = context
        for depth, part in enumerate(access.path):
            if not isinstance(current, Mapping):
                walked = ".".join(access.path[:depth])
                raise ExpressionEvaluationError(f"Cannot read '{part}' of non-object '{walked}'")
            if part not in current:
                raise ExpressionEvaluationError(f"Property '{access.dotted}' not found")
            current = current[part]
        return current

    def _binary(self, op: BinaryOp, context: Mapping[str, Any]) -> Any:
        if op.operator == "AND":
            return _truthy(self.evaluate(op.left, context)) and _truthy(self.evaluate(op.right, context))
        if op.operator == "OR":
            return _truthy(self.evaluate(op.left, context)) or _truthy(self.evaluate(op.right, context))

        left = self.evaluate(op.left, context)
        right = self.evaluate(op.right, context)

        if op.operator == "==":
            return _equals(left, right)
        if op.operator == "!=":
            return not _equals(left, right)

        if not (_is_number(left) and _is_number(right)):
            raise ExpressionEvaluationError(
                f"Operator '{op.operator}' requires numbers, got {type(left).__name__} and {type(right).__name__}"
            )
        if op.operator == ">":
            return left > right
        if op.operator == "<":
            return left < right
        if op.operator == ">=":
            return left >= right
        if op.operator == "<=":
            return left <= right
        raise ExpressionEvaluationError(f"Unknown operator '{op.operator}'")

