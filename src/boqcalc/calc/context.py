"""Immutable evaluation context for a single calculation.

A ParameterContext is built fresh for every calculation and never mutated:
parameter bindings live in a read-only mapping and functions come from a
separately owned, statically defined FunctionRegistry.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from boqcalc.calc.functions import FunctionRegistry, default_registry

DERIVED_FIELDS = ("element_type", "material")


@dataclass(frozen=True)
class ParameterContext:
    """Read-only parameter bindings plus the function table.

    Attributes:
        bindings: Parameter name to raw value (string or number).
        functions: Whitelisted functions and named constants.
    """

    bindings: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    functions: FunctionRegistry = default_registry

    @classmethod
    def build(
        cls,
        parameters: Mapping[Any, Any] | None,
        *,
        element_type: str | None = None,
        material: str | None = None,
        functions: FunctionRegistry | None = None,
    ) -> ParameterContext:
        """Build a context from a raw parameter mapping.

        Keys are compared as strings. ``element_type`` and ``material`` are
        added as derived bindings when given, unless the parameters already
        bind those names.

        Args:
            parameters: Raw parameter mapping (copied, never retained).
            element_type: Upstream element type, if known.
            material: Upstream element material, if known.
            functions: Function registry override.

        Returns:
            A new ParameterContext.
        """
        bindings = {str(k): v for k, v in (parameters or {}).items()}
        derived = {"element_type": element_type, "material": material}
        for name in DERIVED_FIELDS:
            if derived[name] is not None and name not in bindings:
                bindings[name] = derived[name]
        return cls(
            bindings=MappingProxyType(bindings),
            functions=functions or default_registry,
        )

    def has_binding(self, name: str) -> bool:
        return name in self.bindings

    def constant(self, name: str) -> float | None:
        """Return a named constant, or None if ``name`` is not a constant."""
        return self.functions.constants.get(name)
