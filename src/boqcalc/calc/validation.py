"""Parameter validation gates run before any formula evaluation.

Two policies are deliberately different:
- required-parameter checks accumulate every missing name into one error;
- type and rule checks fail fast on the first offending parameter.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

from boqcalc.calc.errors import ParameterError
from boqcalc.models.assembly import Assembly, ParameterProperty, ParameterSchema, ParameterType
from boqcalc.models.element import Element

DIMENSION_PATTERN = re.compile(
    r"^\d+(?:\.\d+)?(?:\s*[xX]\s*\d+(?:\.\d+)?)*\s*(?:mm|cm|m)?$"
)


def check_presence(
    element: Element | None, assembly: Assembly | None
) -> tuple[Element, Assembly]:
    """Require an element, an assembly and a non-empty formula.

    Returns:
        The (element, assembly) pair, narrowed to non-None.

    Raises:
        ParameterError: If any of them is missing.
    """
    if element is None:
        raise ParameterError("Element is required")
    if assembly is None:
        raise ParameterError("Assembly is required")
    if not assembly.formula or not assembly.formula.strip():
        raise ParameterError(f"Assembly '{assembly.assembly_id}' has no formula")
    return element, assembly


def find_missing(schema: ParameterSchema, parameters: Mapping[Any, Any]) -> list[str]:
    """Return required names absent from ``parameters``, in schema order."""
    supplied = {str(key) for key in parameters}
    return [name for name in schema.required if str(name) not in supplied]


def check_required(schema: ParameterSchema, parameters: Mapping[Any, Any]) -> None:
    """Raise one ParameterError naming every missing required parameter."""
    missing = find_missing(schema, parameters)
    if missing:
        raise ParameterError.for_missing(missing)


def _invalid(name: str, value: Any, expected: str) -> ParameterError:
    return ParameterError(
        f"Parameter '{name}' must be {expected}, got {value!r}",
        parameter=name,
        value=value,
    )


def coerce_number(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise _invalid(name, value, "a number")
    if isinstance(value, int | float | Decimal):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            raise _invalid(name, value, "a number") from None
    else:
        raise _invalid(name, value, "a number")
    if not math.isfinite(result):
        raise _invalid(name, value, "a finite number")
    return result


def coerce_integer(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise _invalid(name, value, "an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float | Decimal):
        if math.isfinite(value) and float(value).is_integer():
            return int(value)
        raise _invalid(name, value, "an integer")
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise _invalid(name, value, "an integer") from None
    raise _invalid(name, value, "an integer")


def coerce_string(name: str, value: Any) -> str:
    if value is None or isinstance(value, dict | list | tuple | set):
        raise _invalid(name, value, "a string")
    return str(value)


COERCERS: dict[ParameterType, Callable[[str, Any], Any]] = {
    ParameterType.NUMBER: coerce_number,
    ParameterType.INTEGER: coerce_integer,
    ParameterType.STRING: coerce_string,
}


def _rule_positive_number(name: str, value: Any) -> None:
    if coerce_number(name, value) <= 0:
        raise _invalid(name, value, "a positive number")


def _rule_non_negative_number(name: str, value: Any) -> None:
    if coerce_number(name, value) < 0:
        raise _invalid(name, value, "a non-negative number")


def _rule_dimension_format(name: str, value: Any) -> None:
    if isinstance(value, bool) or not DIMENSION_PATTERN.match(str(value).strip()):
        raise _invalid(name, value, "a dimension such as '1200' or '1200 x 600 mm'")


RULES: dict[str, Callable[[str, Any], None]] = {
    "positive_number": _rule_positive_number,
    "non_negative_number": _rule_non_negative_number,
    "dimension_format": _rule_dimension_format,
}


def check_property(name: str, prop: ParameterProperty, value: Any) -> None:
    """Coerce one value against its declaration, then apply bounds and rule.

    Raises:
        ParameterError: On the first violation.
    """
    coerced = COERCERS[prop.type](name, value)

    if prop.type in (ParameterType.NUMBER, ParameterType.INTEGER):
        if prop.minimum is not None and coerced < prop.minimum:
            raise _invalid(name, value, f"at least {prop.minimum:g}")
        if prop.maximum is not None and coerced > prop.maximum:
            raise _invalid(name, value, f"at most {prop.maximum:g}")

    if prop.rule is not None:
        rule = RULES.get(prop.rule)
        if rule is None:
            raise ParameterError(
                f"Parameter '{name}' declares unknown rule '{prop.rule}'",
                parameter=name,
                value=value,
            )
        rule(name, value)


def check_types(schema: ParameterSchema, parameters: Mapping[Any, Any]) -> None:
    """Check every declared parameter present in ``parameters``, fail-fast."""
    supplied = {str(key): value for key, value in parameters.items()}
    for name, prop in schema.properties.items():
        if name in supplied:
            check_property(name, prop, supplied[name])


def validate_parameters(assembly: Assembly, parameters: Mapping[Any, Any]) -> None:
    """Run the required-parameter gate, then the type gate."""
    check_required(assembly.parameter_schema, parameters)
    check_types(assembly.parameter_schema, parameters)
