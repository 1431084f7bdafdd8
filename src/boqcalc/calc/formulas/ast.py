"""Expression tree for parsed formulas.

The grammar has exactly these node types; there is no node for attribute
access, subscripts, assignment or arbitrary calls, so such constructs cannot
be expressed at all.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Literal:
    """Decimal number literal."""

    value: float
    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True)
class StringLiteral:
    """Quoted text, only valid as a unit argument to a conversion helper."""

    value: str

    def render(self) -> str:
        return f"'{self.value}'"


@dataclass(frozen=True)
class Identifier:
    """Parameter or constant reference."""

    name: str

    def render(self) -> str:
        return self.name


@dataclass(frozen=True)
class UnaryOp:
    """Prefix sign: ``-x`` or ``+x``."""

    op: str
    operand: Node

    def render(self) -> str:
        return f"{self.op}{_wrap(self.operand)}"


@dataclass(frozen=True)
class BinaryOp:
    """Arithmetic operation: one of ``+ - * /``."""

    op: str
    left: Node
    right: Node

    def render(self) -> str:
        return f"{_wrap(self.left)} {self.op} {_wrap(self.right)}"


@dataclass(frozen=True)
class Call:
    """Call to a whitelisted function."""

    name: str
    args: tuple[Node, ...]

    def render(self) -> str:
        return f"{self.name}({', '.join(arg.render() for arg in self.args)})"


Node = Literal | StringLiteral | Identifier | UnaryOp | BinaryOp | Call


def _wrap(node: Node) -> str:
    if isinstance(node, BinaryOp):
        return f"({node.render()})"
    return node.render()
