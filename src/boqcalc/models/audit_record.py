"""Calculation audit record: the permanent compliance trail of one engine call."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from boqcalc.models.quantity import CalculationStep, ResultWarning


class Actor(StrEnum):
    """Who requested the calculation."""

    SYSTEM = "SYSTEM"
    USER = "USER"
    AI = "AI"


class AuditOutcome(StrEnum):
    """Whether the calculation produced a quantity."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class AuditError(BaseModel):
    """Error envelope for a failed calculation."""

    type: str
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True, "extra": "forbid"}


class AuditResult(BaseModel):
    """Result summary for a successful calculation."""

    raw_result: float
    standardized_result: float
    unit: str
    quantity_id: str

    model_config = {"frozen": True, "extra": "forbid"}


class CalculationAuditRecord(BaseModel):
    """Immutable, append-only record of one engine invocation.

    Written for successes and failures alike. Never updated or deleted.
    """

    record_id: str
    element_id: str | None = None
    assembly_id: str | None = None
    outcome: AuditOutcome
    actor: Actor = Actor.SYSTEM
    actor_id: str | None = None
    formula: str | None = None
    formula_hash: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    calculation_steps: list[CalculationStep] = Field(default_factory=list)
    result: AuditResult | None = None
    warnings: list[ResultWarning] = Field(default_factory=list)
    error: AuditError | None = None
    engine_version: str
    started_at: datetime
    duration_ms: float = Field(..., ge=0)

    model_config = {"frozen": True, "extra": "forbid"}
