"""Function registry: the closed set of callables and constants a formula may use.

The table is statically defined and read-only. Formulas can only name
functions listed here; anything else is rejected at parse time.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, DecimalException, localcontext
from types import MappingProxyType

from boqcalc.calc import units
from boqcalc.calc.errors import CalculationError, FormulaError

Arg = float | str


@dataclass(frozen=True)
class FunctionSpec:
    """Specification for a whitelisted formula function.

    Attributes:
        name: Name used in formulas.
        fn: Implementation taking positional arguments.
        min_args: Minimum number of arguments.
        max_args: Maximum number of arguments, None for variadic.
        unit_args: Argument positions that take a unit name instead of a number.
        description: Human-readable summary for catalog tooling.
    """

    name: str
    fn: Callable[..., float]
    min_args: int
    max_args: int | None
    unit_args: frozenset[int] = field(default_factory=frozenset)
    description: str = ""

    def accepts(self, count: int) -> bool:
        """Check whether ``count`` arguments satisfy this function's arity."""
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args

    @property
    def arity_label(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args} to {self.max_args}"


def _sqrt(x: float) -> float:
    if x < 0:
        raise ValueError(f"square root of negative value {x}")
    return math.sqrt(x)


def _round(x: float, precision: float = 0) -> float:
    """Round half away from zero to ``precision`` decimal places."""
    if not float(precision).is_integer():
        raise ValueError(f"round precision must be an integer, got {precision}")
    if not math.isfinite(x):
        return x
    places = int(precision)
    value = Decimal(repr(x))
    if value.as_tuple().exponent >= -places:
        return float(x)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + places + 2)
        try:
            rounded = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        except DecimalException as e:
            raise ValueError(f"cannot round {x!r} to {places} decimal places") from e
    return float(rounded)


def _ceil(x: float) -> float:
    return float(math.ceil(x))


def _floor(x: float) -> float:
    return float(math.floor(x))


def _converter(target: str) -> Callable[[float, str], float]:
    def convert_to(value: float, from_unit: str) -> float:
        return units.convert(value, from_unit, target)

    convert_to.__name__ = f"to_{target}"
    return convert_to


_UNIT = frozenset({1})

DEFAULT_FUNCTIONS: tuple[FunctionSpec, ...] = (
    FunctionSpec("sqrt", _sqrt, 1, 1, description="Square root"),
    FunctionSpec("pow", math.pow, 2, 2, description="x raised to the power y"),
    FunctionSpec("abs", math.fabs, 1, 1, description="Absolute value"),
    FunctionSpec("round", _round, 1, 2, description="Round half away from zero"),
    FunctionSpec("ceil", _ceil, 1, 1, description="Round up to an integer"),
    FunctionSpec("floor", _floor, 1, 1, description="Round down to an integer"),
    FunctionSpec("max", lambda *xs: float(max(xs)), 2, None, description="Largest argument"),
    FunctionSpec("min", lambda *xs: float(min(xs)), 2, None, description="Smallest argument"),
    FunctionSpec("to_mm", _converter("mm"), 2, 2, _UNIT, "Length in millimetres"),
    FunctionSpec("to_m", _converter("m"), 2, 2, _UNIT, "Length in metres"),
    FunctionSpec("to_m2", _converter("m2"), 2, 2, _UNIT, "Area in square metres"),
    FunctionSpec("to_m3", _converter("m3"), 2, 2, _UNIT, "Volume in cubic metres"),
)

DEFAULT_CONSTANTS: Mapping[str, float] = MappingProxyType({"PI": math.pi, "E": math.e})


class FunctionRegistry:
    """Read-only table of formula functions and named constants.

    Built once from a fixed tuple of specs; there is no way to register
    functions after construction.
    """

    def __init__(
        self,
        functions: tuple[FunctionSpec, ...] = DEFAULT_FUNCTIONS,
        constants: Mapping[str, float] = DEFAULT_CONSTANTS,
    ) -> None:
        self._functions: Mapping[str, FunctionSpec] = MappingProxyType(
            {spec.name: spec for spec in functions}
        )
        self._constants: Mapping[str, float] = MappingProxyType(dict(constants))

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    @property
    def constants(self) -> Mapping[str, float]:
        """Named constants available to every formula."""
        return self._constants

    def names(self) -> list[str]:
        """List whitelisted function names in registration order."""
        return list(self._functions)

    def get(self, name: str) -> FunctionSpec | None:
        """Get a function spec by name, None if not whitelisted."""
        return self._functions.get(name)

    def get_or_raise(self, name: str, expression: str | None = None) -> FunctionSpec:
        """Get a function spec or raise FormulaError if not whitelisted."""
        spec = self.get(name)
        if spec is None:
            raise FormulaError(f"Function '{name}' is not allowed", expression or name)
        return spec

    def call(self, name: str, args: list[Arg], expression: str | None = None) -> float:
        """Apply a whitelisted function to already-evaluated arguments.

        Raises:
            FormulaError: Unknown function, arity mismatch or domain fault.
            CalculationError: Numeric overflow.
            UnitError: Conversion helper given an unsupported unit pair.
        """
        spec = self.get_or_raise(name, expression)
        if not spec.accepts(len(args)):
            raise FormulaError(
                f"{name}() takes {spec.arity_label} argument(s), got {len(args)}",
                expression or name,
            )
        try:
            return float(spec.fn(*args))
        except OverflowError as e:
            raise CalculationError(
                f"Numeric overflow in {expression or name}", {"expression": expression or name}
            ) from e
        except (ValueError, ArithmeticError) as e:
            raise FormulaError(f"{name}() failed: {e}", expression or name) from e


default_registry = FunctionRegistry()
