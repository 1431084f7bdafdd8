"""Calculation trace, result and persisted Quantity models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class StepKind(StrEnum):
    """Category of a calculation trace entry."""

    SUBSTITUTION = "substitution"
    CONSTANT = "constant"
    FUNCTION = "function"
    OPERATION = "operation"
    CONVERSION = "conversion"


class CalculationStep(BaseModel):
    """One entry of the ordered evaluation trace.

    Attributes:
        index: Zero-based position in evaluation order.
        kind: What happened at this step.
        expression: Sub-expression as written in the formula.
        value: Resolved numeric value of the sub-expression.
        detail: Human-readable rendering with values substituted.
    """

    index: int
    kind: StepKind
    expression: str
    value: float
    detail: str | None = None

    model_config = {"frozen": True, "extra": "forbid"}


class ResultWarning(BaseModel):
    """Non-fatal annotation on a successful result."""

    code: str
    message: str

    model_config = {"frozen": True, "extra": "forbid"}


NEGATIVE_RESULT = "NEGATIVE_RESULT"


class CalculationResult(BaseModel):
    """Output of one successful evaluation attempt."""

    raw_result: float = Field(..., description="Formula value before unit standardization")
    standardized_result: float = Field(..., description="Value in the assembly unit")
    unit: str = Field(..., description="Assembly (canonical) unit")
    source_unit: str = Field(..., description="Unit the raw formula value is expressed in")
    calculation_steps: list[CalculationStep] = Field(default_factory=list)
    formula_used: str
    parameters_used: dict[str, Any] = Field(default_factory=dict)
    warnings: list[ResultWarning] = Field(default_factory=list)
    engine_version: str
    calculated_at: datetime

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def is_negative(self) -> bool:
        return self.standardized_result < 0


class Quantity(BaseModel):
    """Persisted quantity for one element/assembly pair.

    Quantities are never patched: recalculation replaces them.
    """

    quantity_id: str
    element_id: str
    assembly_id: str
    value: float
    unit: str
    calculation: CalculationResult
    formula_hash: str
    reproducibility_hash: str
    created_at: datetime

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def warnings(self) -> list[ResultWarning]:
        return self.calculation.warnings

    def has_warning(self, code: str) -> bool:
        return any(w.code == code for w in self.calculation.warnings)
