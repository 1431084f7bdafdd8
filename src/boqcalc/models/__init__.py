"""Pydantic models for assemblies, elements, quantities and audit records."""

from boqcalc.models.assembly import Assembly, ParameterProperty, ParameterSchema, ParameterType
from boqcalc.models.audit_record import (
    Actor,
    AuditError,
    AuditOutcome,
    AuditResult,
    CalculationAuditRecord,
)
from boqcalc.models.element import Classification, Element
from boqcalc.models.quantity import (
    NEGATIVE_RESULT,
    CalculationResult,
    CalculationStep,
    Quantity,
    ResultWarning,
    StepKind,
)

__all__ = [
    "Actor",
    "Assembly",
    "AuditError",
    "AuditOutcome",
    "AuditResult",
    "CalculationAuditRecord",
    "CalculationResult",
    "CalculationStep",
    "Classification",
    "Element",
    "NEGATIVE_RESULT",
    "ParameterProperty",
    "ParameterSchema",
    "ParameterType",
    "Quantity",
    "ResultWarning",
    "StepKind",
]
