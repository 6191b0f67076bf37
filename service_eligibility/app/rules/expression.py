"""
Boolean expression interpreter for BOOLEAN combinations.

Grammar (NOT binds tighter than AND, AND tighter than OR)::

    expression := or_expr
    or_expr    := and_expr ("OR" and_expr)*
    and_expr   := not_expr ("AND" not_expr)*
    not_expr   := "NOT" not_expr | atom
    atom       := IDENT | "(" or_expr ")"

Identifiers are single lowercase letters; keywords are case-insensitive.
Expressions are parsed into a small AST and evaluated directly; nothing is
ever handed to ``eval``.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from shared.errors import ExpressionError

_TOKEN_PATTERN = re.compile(r"\s*(?:(?P<lparen>\()|(?P<rparen>\))|(?P<word>[A-Za-z_]+)|(?P<other>\S))")
_KEYWORDS = {"and": "AND", "or": "OR", "not": "NOT"}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class Var:
    name: str

    def evaluate(self, values: Mapping[str, bool]) -> bool:
        return values[self.name]


@dataclass(frozen=True)
class Not:
    operand: "Node"

    def evaluate(self, values: Mapping[str, bool]) -> bool:
        return not self.operand.evaluate(values)


@dataclass(frozen=True)
class And:
    left: "Node"
    right: "Node"

    def evaluate(self, values: Mapping[str, bool]) -> bool:
        return self.left.evaluate(values) and self.right.evaluate(values)


@dataclass(frozen=True)
class Or:
    left: "Node"
    right: "Node"

    def evaluate(self, values: Mapping[str, bool]) -> bool:
        return self.left.evaluate(values) or self.right.evaluate(values)


Node = object


@dataclass(frozen=True)
class ExpressionOutcome:
    """Result of evaluating an expression; ``error`` is set when it failed closed."""
    value: bool
    error: Optional[str] = None


def tokenize(expression: str) -> List[Token]:
    """Split an expression into identifier, keyword and parenthesis tokens."""
    tokens: List[Token] = []
    position = 0
    text = expression.rstrip()
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if match is None:
            break
        start = match.start(match.lastgroup)
        if match.lastgroup == "lparen":
            tokens.append(Token("LPAREN", "(", start))
        elif match.lastgroup == "rparen":
            tokens.append(Token("RPAREN", ")", start))
        elif match.lastgroup == "word":
            word = match.group("word")
            keyword = _KEYWORDS.get(word.lower())
            if keyword:
                tokens.append(Token(keyword, word, start))
            elif len(word) == 1 and word.islower():
                tokens.append(Token("IDENT", word, start))
            else:
                raise ExpressionError(f"Unknown token '{word}' at position {start}")
        else:
            raise ExpressionError(f"Unknown token '{match.group('other')}' at position {start}")
        position = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.index = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError("Empty boolean expression")
        node = self._or_expr()
        if self.index < len(self.tokens):
            token = self.tokens[self.index]
            raise ExpressionError(f"Unexpected token '{token.text}' at position {token.position}")
        return node

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _or_expr(self) -> Node:
        node = self._and_expr()
        while self._peek() is not None and self._peek().kind == "OR":
            self._advance()
            node = Or(node, self._and_expr())
        return node

    def _and_expr(self) -> Node:
        node = self._not_expr()
        while self._peek() is not None and self._peek().kind == "AND":
            self._advance()
            node = And(node, self._not_expr())
        return node

    def _not_expr(self) -> Node:
        token = self._peek()
        if token is not None and token.kind == "NOT":
            self._advance()
            return Not(self._not_expr())
        return self._atom()

    def _atom(self) -> Node:
        token = self._peek()
        if token is None:
            raise ExpressionError("Unexpected end of expression")
        if token.kind == "IDENT":
            self._advance()
            return Var(token.text)
        if token.kind == "LPAREN":
            self._advance()
            node = self._or_expr()
            closing = self._peek()
            if closing is None or closing.kind != "RPAREN":
                raise ExpressionError(f"Unbalanced parenthesis at position {token.position}")
            self._advance()
            return node
        raise ExpressionError(f"Unexpected token '{token.text}' at position {token.position}")


def _variables(node: Node) -> FrozenSet[str]:
    if isinstance(node, Var):
        return frozenset([node.name])
    if isinstance(node, Not):
        return _variables(node.operand)
    return _variables(node.left) | _variables(node.right)


@lru_cache(maxsize=256)
def parse(expression: str) -> Tuple[Node, FrozenSet[str]]:
    """Parse an expression into its AST and the set of letters it references."""
    node = _Parser(tokenize(expression)).parse()
    return node, _variables(node)


def evaluate_expression(expression: Optional[str], values: Dict[str, bool]) -> ExpressionOutcome:
    """Evaluate an expression against letter values, failing closed on structural errors."""
    if expression is None or not str(expression).strip():
        return ExpressionOutcome(False, "Boolean expression is missing")

    try:
        node, variables = parse(str(expression))
        undefined = sorted(variables - set(values))
        if undefined:
            raise ExpressionError(f"Undefined identifiers: {', '.join(undefined)}")
        return ExpressionOutcome(bool(node.evaluate(values)))
    except ExpressionError as e:
        return ExpressionOutcome(False, e.message)


def evaluate(expression: Optional[str], values: Dict[str, bool]) -> bool:
    """Evaluate an expression to a single boolean."""
    return evaluate_expression(expression, values).value
