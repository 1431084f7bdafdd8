"""Formula tokenizer.

Turns a formula string into a flat token list. Characters outside the
grammar and reserved execution/reflection names are rejected here, before
any parsing or evaluation happens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from boqcalc.calc.errors import FormulaError

ALLOWED_CHARACTERS = re.compile(r"[0-9A-Za-z_+\-*/().,'\"\s]")

_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

RESERVED_IDENTIFIERS = frozenset(
    {
        "eval",
        "exec",
        "compile",
        "import",
        "open",
        "lambda",
        "globals",
        "locals",
        "vars",
        "getattr",
        "setattr",
        "delattr",
        "hasattr",
        "class",
        "def",
        "del",
        "system",
        "popen",
        "subprocess",
        "os",
        "sys",
        "builtins",
        "breakpoint",
        "send",
        "instance_eval",
        "class_eval",
        "const_get",
    }
)


class TokenKind(StrEnum):
    """Token categories in the formula grammar."""

    NUMBER = "NUMBER"
    STRING = "STRING"
    IDENTIFIER = "IDENTIFIER"
    OPERATOR = "OPERATOR"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    COMMA = "COMMA"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    """A single lexical token with its source offset."""

    kind: TokenKind
    text: str
    position: int


_SINGLE_CHAR_TOKENS = {
    "+": TokenKind.OPERATOR,
    "-": TokenKind.OPERATOR,
    "*": TokenKind.OPERATOR,
    "/": TokenKind.OPERATOR,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    ",": TokenKind.COMMA,
}


def is_reserved(name: str) -> bool:
    """Check whether an identifier is a reserved execution/reflection name."""
    return name.lower() in RESERVED_IDENTIFIERS or name.startswith("__")


def check_characters(formula: str) -> None:
    """Reject a formula containing characters outside the grammar.

    Raises:
        FormulaError: On the first disallowed character.
    """
    for position, char in enumerate(formula):
        if not ALLOWED_CHARACTERS.fullmatch(char):
            raise FormulaError(
                f"Disallowed character {char!r} at position {position}",
                formula,
            )


def tokenize(formula: str) -> list[Token]:
    """Tokenize a formula string.

    Args:
        formula: Formula source text.

    Returns:
        Tokens in source order, terminated by an EOF token.

    Raises:
        FormulaError: Empty formula, disallowed character, reserved
            identifier, malformed number or unterminated string.
    """
    if not isinstance(formula, str) or not formula.strip():
        raise FormulaError("Formula is empty", formula if isinstance(formula, str) else None)

    check_characters(formula)

    tokens: list[Token] = []
    pos = 0
    length = len(formula)

    while pos < length:
        char = formula[pos]

        if char.isspace():
            pos += 1
            continue

        if char in _SINGLE_CHAR_TOKENS:
            tokens.append(Token(_SINGLE_CHAR_TOKENS[char], char, pos))
            pos += 1
            continue

        if char.isdigit() or char == ".":
            match = _NUMBER.match(formula, pos)
            if match is None:
                raise FormulaError(f"Malformed number at position {pos}", formula)
            end = match.end()
            if end < length and formula[end] == ".":
                raise FormulaError(f"Malformed number at position {pos}", formula)
            tokens.append(Token(TokenKind.NUMBER, match.group(), pos))
            pos = end
            continue

        if char in "'\"":
            end = formula.find(char, pos + 1)
            if end == -1:
                raise FormulaError(f"Unterminated string at position {pos}", formula)
            tokens.append(Token(TokenKind.STRING, formula[pos + 1 : end], pos))
            pos = end + 1
            continue

        match = _IDENTIFIER.match(formula, pos)
        if match is None:
            raise FormulaError(f"Unexpected character {char!r} at position {pos}", formula)
        name = match.group()
        if is_reserved(name):
            raise FormulaError(f"Reserved identifier '{name}' is not allowed", formula)
        tokens.append(Token(TokenKind.IDENTIFIER, name, pos))
        pos = match.end()

    tokens.append(Token(TokenKind.EOF, "", length))
    return tokens
