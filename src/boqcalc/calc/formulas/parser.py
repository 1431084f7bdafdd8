"""Recursive-descent parser for the formula grammar.

    expression := term (("+" | "-") term)*
    term       := unary (("*" | "/") unary)*
    unary      := ("+" | "-") unary | primary
    primary    := NUMBER | IDENTIFIER | IDENTIFIER "(" args? ")" | "(" expression ")"
    args       := argument ("," argument)*

Function names and arity are checked against the FunctionRegistry while
parsing, so a non-whitelisted call never reaches the evaluator.
"""

from __future__ import annotations

from boqcalc.calc.errors import FormulaError
from boqcalc.calc.formulas.ast import (
    BinaryOp,
    Call,
    Identifier,
    Literal,
    Node,
    StringLiteral,
    UnaryOp,
)
from boqcalc.calc.formulas.lexer import Token, TokenKind, tokenize
from boqcalc.calc.functions import FunctionRegistry, FunctionSpec, default_registry

MAX_DEPTH = 64


class _Parser:
    def __init__(self, formula: str, tokens: list[Token], functions: FunctionRegistry) -> None:
        self._formula = formula
        self._tokens = tokens
        self._functions = functions
        self._index = 0
        self._depth = 0

    @property
    def _current(self) -> Token:
        return self._tokens[self._index]

    def _peek(self, offset: int = 1) -> Token:
        return self._tokens[min(self._index + offset, len(self._tokens) - 1)]

    def _advance(self) -> Token:
        token = self._current
        if token.kind != TokenKind.EOF:
            self._index += 1
        return token

    def _expect(self, kind: TokenKind, what: str) -> Token:
        if self._current.kind != kind:
            raise self._error(f"Expected {what}")
        return self._advance()

    def _error(self, message: str) -> FormulaError:
        token = self._current
        found = "end of formula" if token.kind == TokenKind.EOF else repr(token.text)
        return FormulaError(
            f"{message} at position {token.position}, found {found}",
            self._formula,
        )

    def parse(self) -> Node:
        node = self._expression()
        if self._current.kind != TokenKind.EOF:
            raise self._error("Unexpected token")
        return node

    def _enter(self) -> None:
        if self._depth >= MAX_DEPTH:
            raise FormulaError("Formula is nested too deeply", self._formula)
        self._depth += 1

    def _expression(self) -> Node:
        self._enter()
        try:
            node = self._term()
            while self._current.kind == TokenKind.OPERATOR and self._current.text in "+-":
                op = self._advance().text
                node = BinaryOp(op, node, self._term())
            return node
        finally:
            self._depth -= 1

    def _term(self) -> Node:
        node = self._unary()
        while self._current.kind == TokenKind.OPERATOR and self._current.text in "*/":
            op = self._advance().text
            node = BinaryOp(op, node, self._unary())
        return node

    def _unary(self) -> Node:
        if self._current.kind == TokenKind.OPERATOR and self._current.text in "+-":
            self._enter()
            try:
                op = self._advance().text
                return UnaryOp(op, self._unary())
            finally:
                self._depth -= 1
        return self._primary()

    def _primary(self) -> Node:
        token = self._current

        if token.kind == TokenKind.NUMBER:
            self._advance()
            return Literal(float(token.text), token.text)

        if token.kind == TokenKind.IDENTIFIER:
            self._advance()
            if self._current.kind == TokenKind.LPAREN:
                return self._call(token)
            return Identifier(token.text)

        if token.kind == TokenKind.LPAREN:
            self._advance()
            node = self._expression()
            self._expect(TokenKind.RPAREN, "')'")
            return node

        if token.kind == TokenKind.STRING:
            raise self._error("Quoted text is only allowed as a unit argument")

        raise self._error("Expected a number, identifier or '('")

    def _call(self, name_token: Token) -> Call:
        name = name_token.text
        spec = self._functions.get(name)
        if spec is None:
            raise FormulaError(
                f"Function '{name}' is not allowed at position {name_token.position}",
                self._formula,
            )

        self._expect(TokenKind.LPAREN, "'('")
        args: list[Node] = []
        if self._current.kind != TokenKind.RPAREN:
            args.append(self._argument(spec, 0))
            while self._current.kind == TokenKind.COMMA:
                self._advance()
                args.append(self._argument(spec, len(args)))
        self._expect(TokenKind.RPAREN, "')' or ','")

        call = Call(name, tuple(args))
        if not spec.accepts(len(args)):
            raise FormulaError(
                f"{name}() takes {spec.arity_label} argument(s), got {len(args)}",
                call.render(),
            )
        return call

    def _argument(self, spec: FunctionSpec, position: int) -> Node:
        if position in spec.unit_args and self._current.kind == TokenKind.STRING:
            if self._peek().kind in (TokenKind.COMMA, TokenKind.RPAREN):
                return StringLiteral(self._advance().text)
        return self._expression()


def parse(formula: str, functions: FunctionRegistry | None = None) -> Node:
    """Parse a formula into an expression tree.

    Args:
        formula: Formula source text.
        functions: Function whitelist; defaults to the standard registry.

    Returns:
        Root node of the expression tree.

    Raises:
        FormulaError: If the formula is not well-formed or calls a
            function outside the whitelist.
    """
    tokens = tokenize(formula)
    return _Parser(formula, tokens, functions or default_registry).parse()
