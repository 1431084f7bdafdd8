"""Assembly catalog models: a named formula with its parameter schema."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field, field_serializer, field_validator

from boqcalc.hashing import canonical_json_for_hash, compute_sha256


class ParameterType(StrEnum):
    """Declared type of an assembly parameter."""

    NUMBER = "number"
    INTEGER = "integer"
    STRING = "string"


class ParameterProperty(BaseModel):
    """Declaration of a single assembly parameter.

    Attributes:
        type: Declared type the raw value must coerce to.
        minimum: Optional inclusive lower bound for numeric types.
        maximum: Optional inclusive upper bound for numeric types.
        rule: Optional custom rule tag (e.g. "positive_number").
        description: Free text shown to whoever collects the value.
    """

    type: ParameterType = ParameterType.NUMBER
    minimum: float | None = None
    maximum: float | None = None
    rule: str | None = None
    description: str | None = None

    model_config = {"frozen": True, "extra": "ignore"}


class ParameterSchema(BaseModel):
    """Ordered parameter declarations and required names.

    Both fields are read-only once validated: ``properties`` is exposed as a
    mapping proxy and ``required`` as a tuple.
    """

    properties: Mapping[str, ParameterProperty] = Field(
        default_factory=lambda: MappingProxyType({})
    )
    required: tuple[str, ...] = ()

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("properties", mode="after")
    @classmethod
    def _freeze_properties(
        cls, value: Mapping[str, ParameterProperty]
    ) -> Mapping[str, ParameterProperty]:
        return MappingProxyType(dict(value))

    @field_serializer("properties")
    def _serialize_properties(self, value: Mapping[str, ParameterProperty]) -> dict[str, Any]:
        return dict(value)


class Assembly(BaseModel):
    """A named calculation template.

    The formula is immutable once referenced by a quantity; any change must
    be published as a new version so historical formula hashes stay valid.
    """

    assembly_id: str
    name: str = ""
    formula: str = ""
    unit: str
    source_unit: str | None = Field(
        None, description="Unit the raw formula value is expressed in; defaults to unit"
    )
    parameter_schema: ParameterSchema = Field(default_factory=ParameterSchema)
    version: str = "1.0.0"
    description: str | None = None

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def formula_hash(self) -> str:
        """Stable SHA256 hash of {assembly_id, formula, version}."""
        return compute_sha256(
            canonical_json_for_hash(
                {
                    "assembly_id": self.assembly_id,
                    "formula": self.formula,
                    "version": self.version,
                }
            )
        )

    @property
    def output_source_unit(self) -> str:
        return self.source_unit or self.unit
