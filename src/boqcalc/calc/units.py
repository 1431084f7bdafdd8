"""Unit converter for length, area, volume, mass and count units.

Stateless and pure. Each unit belongs to exactly one family and carries an
exact rational factor to the family's base unit (m, m2, m3, kg, each), so a
conversion rounds to float only once.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from fractions import Fraction

from boqcalc.calc.errors import UnitError


class UnitFamily(StrEnum):
    """Physical dimension a unit measures."""

    LENGTH = "length"
    AREA = "area"
    VOLUME = "volume"
    MASS = "mass"
    COUNT = "count"


@dataclass(frozen=True)
class UnitSpec:
    """A supported unit and its factor to the family base unit."""

    symbol: str
    family: UnitFamily
    factor: Fraction


_INCH = Fraction(254, 10000)
_FOOT = Fraction(3048, 10000)
_YARD = Fraction(9144, 10000)

UNITS: dict[str, UnitSpec] = {
    spec.symbol: spec
    for spec in (
        UnitSpec("mm", UnitFamily.LENGTH, Fraction(1, 1000)),
        UnitSpec("cm", UnitFamily.LENGTH, Fraction(1, 100)),
        UnitSpec("m", UnitFamily.LENGTH, Fraction(1)),
        UnitSpec("km", UnitFamily.LENGTH, Fraction(1000)),
        UnitSpec("inch", UnitFamily.LENGTH, _INCH),
        UnitSpec("ft", UnitFamily.LENGTH, _FOOT),
        UnitSpec("yd", UnitFamily.LENGTH, _YARD),
        UnitSpec("mm2", UnitFamily.AREA, Fraction(1, 1000) ** 2),
        UnitSpec("cm2", UnitFamily.AREA, Fraction(1, 100) ** 2),
        UnitSpec("m2", UnitFamily.AREA, Fraction(1)),
        UnitSpec("ha", UnitFamily.AREA, Fraction(10000)),
        UnitSpec("in2", UnitFamily.AREA, _INCH**2),
        UnitSpec("ft2", UnitFamily.AREA, _FOOT**2),
        UnitSpec("yd2", UnitFamily.AREA, _YARD**2),
        UnitSpec("mm3", UnitFamily.VOLUME, Fraction(1, 1000) ** 3),
        UnitSpec("cm3", UnitFamily.VOLUME, Fraction(1, 100) ** 3),
        UnitSpec("l", UnitFamily.VOLUME, Fraction(1, 1000)),
        UnitSpec("m3", UnitFamily.VOLUME, Fraction(1)),
        UnitSpec("in3", UnitFamily.VOLUME, _INCH**3),
        UnitSpec("ft3", UnitFamily.VOLUME, _FOOT**3),
        UnitSpec("yd3", UnitFamily.VOLUME, _YARD**3),
        UnitSpec("g", UnitFamily.MASS, Fraction(1, 1000)),
        UnitSpec("kg", UnitFamily.MASS, Fraction(1)),
        UnitSpec("t", UnitFamily.MASS, Fraction(1000)),
        UnitSpec("each", UnitFamily.COUNT, Fraction(1)),
        UnitSpec("lot", UnitFamily.COUNT, Fraction(1)),
    )
}

UNIT_ALIASES: dict[str, str] = {
    "in": "inch",
    "inches": "inch",
    "foot": "ft",
    "feet": "ft",
    "yard": "yd",
    "yards": "yd",
    "metre": "m",
    "meter": "m",
    "metres": "m",
    "meters": "m",
    "m^2": "m2",
    "sqm": "m2",
    "sq.m": "m2",
    "sqft": "ft2",
    "m^3": "m3",
    "cum": "m3",
    "litre": "l",
    "liter": "l",
    "tonne": "t",
    "nr": "each",
    "no": "each",
    "ea": "each",
    "item": "each",
}


def normalize_unit(unit: str) -> str:
    """Return the canonical symbol for a unit name or alias.

    Raises:
        UnitError: If the unit is not supported.
    """
    if not isinstance(unit, str):
        raise UnitError(f"Unit must be a string, got {type(unit).__name__}")
    key = unit.strip().lower()
    key = UNIT_ALIASES.get(key, key)
    if key not in UNITS:
        raise UnitError(f"Unsupported unit: '{unit}'", from_unit=unit)
    return key


def is_supported(unit: str) -> bool:
    """Check whether a unit name or alias is supported."""
    try:
        normalize_unit(unit)
    except UnitError:
        return False
    return True


def unit_family(unit: str) -> UnitFamily:
    """Return the family of a supported unit."""
    return UNITS[normalize_unit(unit)].family


def convert(value: float, from_unit: str, to_unit: str) -> float:
    """Convert a value between two units of the same family.

    Args:
        value: Numeric value expressed in ``from_unit``.
        from_unit: Source unit symbol or alias.
        to_unit: Target unit symbol or alias.

    Returns:
        The value expressed in ``to_unit``.

    Raises:
        UnitError: If either unit is unknown or the families differ.
    """
    source = UNITS[normalize_unit(from_unit)]
    target = UNITS[normalize_unit(to_unit)]

    if source.family != target.family:
        raise UnitError(
            f"Cannot convert {source.family.value} unit '{from_unit}' "
            f"to {target.family.value} unit '{to_unit}'",
            from_unit=from_unit,
            to_unit=to_unit,
        )
    if source.symbol == target.symbol:
        return float(value)
    if source.family == UnitFamily.COUNT:
        raise UnitError(
            f"Count units are not interchangeable: '{from_unit}' -> '{to_unit}'",
            from_unit=from_unit,
            to_unit=to_unit,
        )
    if not math.isfinite(value):
        return float(value) * float(source.factor / target.factor)

    try:
        return float(Fraction(value) * source.factor / target.factor)
    except OverflowError:
        return math.copysign(math.inf, value)
