"""Tree-walking formula evaluator with step tracing.

Evaluation is a pure function of (formula, context): no I/O, no shared
state, no clock. Every substitution, function application and arithmetic
operation appends one CalculationStep in evaluation order.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, NamedTuple

from boqcalc.calc import units
from boqcalc.calc.context import ParameterContext
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
from boqcalc.calc.formulas.parser import parse
from boqcalc.models.quantity import CalculationStep, StepKind

logger = logging.getLogger(__name__)


class Evaluation(NamedTuple):
    """Numeric result of a formula plus its ordered trace."""

    value: float
    steps: list[CalculationStep]


def format_number(value: float) -> str:
    """Render a float for trace details without spurious trailing zeros."""
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def coerce_number(name: str, raw: Any) -> float:
    """Coerce a raw binding to float.

    Raises:
        FormulaError: If the binding has no numeric interpretation.
    """
    if isinstance(raw, bool):
        raise FormulaError(f"Parameter '{name}' is not numeric (got boolean)", name)
    if isinstance(raw, int | float | Decimal):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw.strip())
        except ValueError:
            raise FormulaError(
                f"Parameter '{name}' has no numeric value (got {raw!r})", name
            ) from None
    raise FormulaError(
        f"Parameter '{name}' is not numeric (got {type(raw).__name__})", name
    )


class _Evaluator:
    def __init__(self, context: ParameterContext) -> None:
        self._context = context
        self._steps: list[CalculationStep] = []

    @property
    def steps(self) -> list[CalculationStep]:
        return self._steps

    def _record(
        self, kind: StepKind, expression: str, value: float, detail: str | None = None
    ) -> None:
        self._steps.append(
            CalculationStep(
                index=len(self._steps),
                kind=kind,
                expression=expression,
                value=value,
                detail=detail,
            )
        )

    def visit(self, node: Node) -> float:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Identifier):
            return self._identifier(node)
        if isinstance(node, UnaryOp):
            return self._unary(node)
        if isinstance(node, BinaryOp):
            return self._binary(node)
        if isinstance(node, Call):
            return self._call(node)
        if isinstance(node, StringLiteral):
            raise FormulaError("Quoted text is only allowed as a unit argument", node.render())
        raise FormulaError(f"Unsupported expression node {type(node).__name__}")

    def _identifier(self, node: Identifier) -> float:
        name = node.name
        if self._context.has_binding(name):
            value = coerce_number(name, self._context.bindings[name])
            self._record(StepKind.SUBSTITUTION, name, value, f"{name} = {format_number(value)}")
            return value

        constant = self._context.constant(name)
        if constant is not None:
            self._record(StepKind.CONSTANT, name, constant, f"{name} = {constant!r}")
            return constant

        raise FormulaError(f"Unresolved identifier '{name}'", name)

    def _unary(self, node: UnaryOp) -> float:
        operand = self.visit(node.operand)
        if node.op == "+":
            return operand
        value = -operand
        self._record(StepKind.OPERATION, node.render(), value, f"-({format_number(operand)})")
        return value

    def _binary(self, node: BinaryOp) -> float:
        left = self.visit(node.left)
        right = self.visit(node.right)

        if node.op == "+":
            value = left + right
        elif node.op == "-":
            value = left - right
        elif node.op == "*":
            value = left * right
        elif node.op == "/":
            if right == 0:
                raise FormulaError(f"Division by zero in {node.render()}", node.render())
            value = left / right
        else:
            raise FormulaError(f"Unknown operator '{node.op}'", node.render())

        detail = f"{format_number(left)} {node.op} {format_number(right)}"
        self._record(StepKind.OPERATION, node.render(), value, detail)
        return value

    def _call(self, node: Call) -> float:
        functions = self._context.functions
        spec = functions.get_or_raise(node.name, node.render())

        args: list[float | str] = []
        for position, arg in enumerate(node.args):
            if position in spec.unit_args:
                args.append(self._unit_argument(arg, node))
            else:
                args.append(self.visit(arg))

        value = functions.call(node.name, args, node.render())
        rendered_args = ", ".join(
            a if isinstance(a, str) else format_number(a) for a in args
        )
        self._record(
            StepKind.FUNCTION, node.render(), value, f"{node.name}({rendered_args})"
        )
        return value

    def _unit_argument(self, arg: Node, call: Call) -> str:
        if isinstance(arg, StringLiteral):
            return arg.value
        if isinstance(arg, Identifier):
            if self._context.has_binding(arg.name):
                bound = self._context.bindings[arg.name]
                if isinstance(bound, str):
                    return bound
                raise FormulaError(
                    f"Unit argument '{arg.name}' must be bound to a unit name", call.render()
                )
            if units.is_supported(arg.name):
                return arg.name
        raise FormulaError(f"Expected a unit name in {call.render()}", call.render())


def evaluate_tree(tree: Node, context: ParameterContext) -> Evaluation:
    """Evaluate an already-parsed expression tree."""
    evaluator = _Evaluator(context)
    value = evaluator.visit(tree)
    return Evaluation(value=value, steps=evaluator.steps)


def evaluate(formula: str, context: ParameterContext) -> Evaluation:
    """Parse and evaluate a formula against a parameter context.

    Args:
        formula: Formula source text.
        context: Immutable parameter bindings and function table.

    Returns:
        Evaluation with the numeric value and ordered trace.

    Raises:
        FormulaError: Parse failure, unresolved identifier, non-whitelisted
            call, arity mismatch or evaluation fault.
        UnitError: Conversion helper given an unsupported unit pair.
        CalculationError: Numeric overflow inside a function.
    """
    tree = parse(formula, context.functions)
    result = evaluate_tree(tree, context)
    logger.debug("Evaluated %r -> %r in %d step(s)", formula, result.value, len(result.steps))
    return result
