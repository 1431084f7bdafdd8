"""Quantity Calculation Engine.

Validates an element/assembly/parameter triple, evaluates the assembly
formula, standardizes the result unit, persists a Quantity and writes a
CalculationAuditRecord for every invocation, successful or not.

Each gate aborts the calculation with no Quantity persisted. Errors are
audited first and then re-raised to the caller unchanged. A Quantity is
stored only together with its SUCCESS audit record: if the audit write
fails, the quantity is not kept.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from boqcalc.audit.recorder import AuditRecorder
from boqcalc.audit.sink import AuditSinkError
from boqcalc.calc import units
from boqcalc.calc.context import ParameterContext
from boqcalc.calc.errors import CalcIntegrityError, CalculationError, ParameterError
from boqcalc.calc.formulas.evaluator import evaluate, format_number
from boqcalc.calc.functions import FunctionRegistry, default_registry
from boqcalc.calc.validation import check_presence, validate_parameters
from boqcalc.hashing import canonical_json_for_hash, compute_sha256
from boqcalc.models.assembly import Assembly
from boqcalc.models.audit_record import (
    Actor,
    AuditError,
    AuditOutcome,
    AuditResult,
    CalculationAuditRecord,
)
from boqcalc.models.element import Element
from boqcalc.models.quantity import (
    NEGATIVE_RESULT,
    CalculationResult,
    CalculationStep,
    Quantity,
    ResultWarning,
    StepKind,
)
from boqcalc.observability.tracing import calculation_span
from boqcalc.persistence.repositories.quantities import QuantitiesRepo

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _set_outcome(span: Any, outcome: AuditOutcome) -> None:
    if span is not None:
        span.set_attribute("boqcalc.outcome", outcome.value)


def snapshot_parameters(parameters: Mapping[Any, Any]) -> dict[str, Any]:
    """Return a JSON-safe, string-keyed copy of raw parameters."""
    snapshot: dict[str, Any] = {}
    for key, value in parameters.items():
        if value is None or isinstance(value, str | int | float | bool):
            snapshot[str(key)] = value
        else:
            snapshot[str(key)] = str(value)
    return snapshot


def compute_reproducibility_hash(
    *,
    element_id: str,
    assembly_id: str,
    formula_hash: str,
    engine_version: str,
    parameters: Mapping[str, Any],
    raw_result: float,
    standardized_result: float,
    unit: str,
) -> str:
    """Hash every deterministic input and output of a calculation."""
    return compute_sha256(
        canonical_json_for_hash(
            {
                "assembly_id": assembly_id,
                "element_id": element_id,
                "engine_version": engine_version,
                "formula_hash": formula_hash,
                "parameters": dict(parameters),
                "raw_result": raw_result,
                "standardized_result": standardized_result,
                "unit": unit,
            }
        )
    )


@dataclass
class RecalculationFailure:
    """One assembly that failed during a batch recalculation.

    ``error`` is a CalculationError for validation and evaluation failures,
    or whatever unexpected exception aborted that assembly (audited as
    INTERNAL).
    """

    assembly_id: str
    error: Exception


@dataclass
class RecalculationReport:
    """Outcome of recalculate_all() for one element.

    Attributes:
        element_id: The recalculated element.
        quantities: Quantities calculated by the batch; stored unless cancelled.
        failures: Assemblies whose calculation failed (each audited).
        skipped: Assemblies not attempted because the batch was cancelled.
        cancelled: True if should_stop() interrupted the batch; the stored
            quantities were left untouched in that case.
    """

    element_id: str
    quantities: list[Quantity] = field(default_factory=list)
    failures: list[RecalculationFailure] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled


class CalculationEngine:
    """Orchestrates validation, evaluation, persistence and audit.

    The engine holds no per-calculation state; each call builds a fresh
    ParameterContext, so different elements may be calculated in parallel.
    """

    def __init__(
        self,
        quantities: QuantitiesRepo,
        recorder: AuditRecorder,
        *,
        engine_version: str,
        functions: FunctionRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the engine.

        Args:
            quantities: Quantity repository.
            recorder: Audit recorder; every calculate() call writes one record.
            engine_version: Version stamped on results, sourced once at startup.
            functions: Function whitelist override.
            clock: Timestamp source for results and audit records.
        """
        self._quantities = quantities
        self._recorder = recorder
        self._engine_version = engine_version
        self._functions = functions or default_registry
        self._clock = clock

    @property
    def engine_version(self) -> str:
        return self._engine_version

    def calculate(
        self,
        element: Element | None,
        assembly: Assembly | None,
        *,
        actor: Actor = Actor.SYSTEM,
        actor_id: str | None = None,
    ) -> Quantity:
        """Calculate and persist the quantity of one element for one assembly.

        Args:
            element: Element supplying the raw parameters.
            assembly: Assembly supplying the formula, schema and unit.
            actor: Who requested the calculation.
            actor_id: Optional identifier of the requesting user or agent.

        Returns:
            The persisted Quantity.

        Raises:
            ParameterError: Missing element/assembly/formula, missing required
                parameters (all listed) or a type violation (first offender).
            FormulaError: Formula failed to parse or evaluate.
            UnitError: No conversion from the formula unit to the assembly unit.
            CalculationError: Non-numeric, NaN or infinite result.
            AuditSinkError: The audit record could not be written; no Quantity
                is stored.
        """
        return self._run(element, assembly, actor, actor_id, persist=True)

    def recalculate_all(
        self,
        element: Element,
        *,
        actor: Actor = Actor.SYSTEM,
        actor_id: str | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> RecalculationReport:
        """Replace every quantity of an element by recalculating each assembly.

        Each assembly of the element's classification is calculated
        independently; failures are collected, not raised, so one faulting
        assembly never blocks the others. The element's stored quantities
        are then swapped for the successful results in a single
        replace_for_element() call.

        Args:
            element: Element to recalculate.
            actor: Who requested the recalculation.
            actor_id: Optional identifier of the requesting user or agent.
            should_stop: Polled between assemblies; returning True cancels
                the batch and leaves stored quantities unchanged.

        Returns:
            RecalculationReport describing stored quantities and failures.

        Raises:
            AuditSinkError: If an audit record cannot be written; the stored
                quantities are left unchanged.
        """
        if element is None:
            raise ParameterError("Element is required")

        assemblies = element.assemblies
        report = RecalculationReport(element_id=element.element_id)

        for position, assembly in enumerate(assemblies):
            if should_stop is not None and should_stop():
                report.cancelled = True
                report.skipped = [a.assembly_id for a in assemblies[position:]]
                logger.info(
                    "Recalculation of element %s cancelled; %d assembly(ies) skipped",
                    element.element_id,
                    len(report.skipped),
                )
                return report
            try:
                quantity = self._run(element, assembly, actor, actor_id, persist=False)
            except AuditSinkError:
                raise
            except Exception as e:
                report.failures.append(RecalculationFailure(assembly.assembly_id, e))
                continue
            report.quantities.append(quantity)

        self._quantities.replace_for_element(element.element_id, report.quantities)
        logger.info(
            "Recalculated element %s: %d quantity(ies), %d failure(s)",
            element.element_id,
            len(report.quantities),
            len(report.failures),
        )
        return report

    def verify_reproducibility(self, quantity: Quantity, assembly: Assembly) -> None:
        """Re-evaluate a stored quantity and compare reproducibility hashes.

        Raises:
            CalcIntegrityError: If the formula or any recomputed value differs.
        """
        calculation = quantity.calculation
        context = ParameterContext.build(calculation.parameters_used, functions=self._functions)
        evaluation = evaluate(assembly.formula, context)
        standardized = units.convert(evaluation.value, calculation.source_unit, quantity.unit)

        computed_hash = compute_reproducibility_hash(
            element_id=quantity.element_id,
            assembly_id=assembly.assembly_id,
            formula_hash=assembly.formula_hash,
            engine_version=calculation.engine_version,
            parameters=calculation.parameters_used,
            raw_result=evaluation.value,
            standardized_result=standardized,
            unit=quantity.unit,
        )
        if computed_hash != quantity.reproducibility_hash:
            raise CalcIntegrityError(
                quantity_id=quantity.quantity_id,
                expected_hash=quantity.reproducibility_hash,
                computed_hash=computed_hash,
            )

    def _run(
        self,
        element: Element | None,
        assembly: Assembly | None,
        actor: Actor,
        actor_id: str | None,
        *,
        persist: bool,
    ) -> Quantity:
        started_at = self._clock()
        started = time.perf_counter()
        element_id = element.element_id if element is not None else None
        assembly_id = assembly.assembly_id if assembly is not None else None

        with calculation_span(
            "boqcalc.calc.calculate",
            {"boqcalc.element_id": element_id, "boqcalc.assembly_id": assembly_id},
        ) as span:
            try:
                quantity = self._compute(element, assembly)
            except Exception as e:
                self._record_failure(element, assembly, actor, actor_id, e, started_at, started)
                _set_outcome(span, AuditOutcome.FAILURE)
                raise

            record = self._success_record(quantity, actor, actor_id, started_at, started)
            try:
                if persist:
                    # Stored only if the audit write succeeds; SQL sinks join the insert tx.
                    self._quantities.create(
                        quantity, audit=lambda conn: self._recorder.record(record, conn)
                    )
                else:
                    self._recorder.record(record)
            except AuditSinkError:
                _set_outcome(span, AuditOutcome.FAILURE)
                raise
            except Exception as e:
                self._record_failure(element, assembly, actor, actor_id, e, started_at, started)
                _set_outcome(span, AuditOutcome.FAILURE)
                raise
            _set_outcome(span, AuditOutcome.SUCCESS)

        logger.info(
            "Calculated element=%s assembly=%s: %s %s",
            element_id,
            assembly_id,
            format_number(quantity.value),
            quantity.unit,
        )
        return quantity

    def _compute(self, element: Element | None, assembly: Assembly | None) -> Quantity:
        element, assembly = check_presence(element, assembly)

        parameters = element.parameters
        validate_parameters(assembly, parameters)

        context = ParameterContext.build(
            parameters,
            element_type=element.element_type,
            material=element.material,
            functions=self._functions,
        )
        evaluation = evaluate(assembly.formula, context)
        raw = evaluation.value

        if isinstance(raw, bool) or not isinstance(raw, int | float):
            raise CalculationError(
                f"Formula produced a non-numeric result: {raw!r}",
                {"formula": assembly.formula},
            )
        if not math.isfinite(raw):
            raise CalculationError(
                f"Formula produced a non-finite result: {raw!r}",
                {"formula": assembly.formula, "result": repr(raw)},
            )

        source_unit = assembly.output_source_unit
        standardized = units.convert(raw, source_unit, assembly.unit)
        if not math.isfinite(standardized):
            raise CalculationError(
                f"Unit conversion produced a non-finite result: {standardized!r}",
                {"from_unit": source_unit, "to_unit": assembly.unit},
            )

        steps = list(evaluation.steps)
        steps.append(
            CalculationStep(
                index=len(steps),
                kind=StepKind.CONVERSION,
                expression=f"{source_unit} -> {assembly.unit}",
                value=standardized,
                detail=f"{format_number(raw)} {source_unit} = "
                f"{format_number(standardized)} {assembly.unit}",
            )
        )

        warnings: list[ResultWarning] = []
        if standardized < 0:
            warnings.append(
                ResultWarning(
                    code=NEGATIVE_RESULT,
                    message=f"Result {format_number(standardized)} {assembly.unit} is negative",
                )
            )
            logger.warning(
                "Negative result for element=%s assembly=%s: %s",
                element.element_id,
                assembly.assembly_id,
                format_number(standardized),
            )

        result = CalculationResult(
            raw_result=raw,
            standardized_result=standardized,
            unit=assembly.unit,
            source_unit=source_unit,
            calculation_steps=steps,
            formula_used=assembly.formula,
            parameters_used=snapshot_parameters(context.bindings),
            warnings=warnings,
            engine_version=self._engine_version,
            calculated_at=self._clock(),
        )
        return self._build_quantity(element, assembly, result)

    def _build_quantity(
        self, element: Element, assembly: Assembly, result: CalculationResult
    ) -> Quantity:
        formula_hash = assembly.formula_hash
        return Quantity(
            quantity_id=str(uuid.uuid4()),
            element_id=element.element_id,
            assembly_id=assembly.assembly_id,
            value=result.standardized_result,
            unit=result.unit,
            calculation=result,
            formula_hash=formula_hash,
            reproducibility_hash=compute_reproducibility_hash(
                element_id=element.element_id,
                assembly_id=assembly.assembly_id,
                formula_hash=formula_hash,
                engine_version=result.engine_version,
                parameters=result.parameters_used,
                raw_result=result.raw_result,
                standardized_result=result.standardized_result,
                unit=result.unit,
            ),
            created_at=result.calculated_at,
        )

    def _duration_ms(self, started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 3)

    def _success_record(
        self,
        quantity: Quantity,
        actor: Actor,
        actor_id: str | None,
        started_at: datetime,
        started: float,
    ) -> CalculationAuditRecord:
        calculation = quantity.calculation
        return CalculationAuditRecord(
            record_id=str(uuid.uuid4()),
            element_id=quantity.element_id,
            assembly_id=quantity.assembly_id,
            outcome=AuditOutcome.SUCCESS,
            actor=actor,
            actor_id=actor_id,
            formula=calculation.formula_used,
            formula_hash=quantity.formula_hash,
            parameters=calculation.parameters_used,
            calculation_steps=calculation.calculation_steps,
            result=AuditResult(
                raw_result=calculation.raw_result,
                standardized_result=calculation.standardized_result,
                unit=calculation.unit,
                quantity_id=quantity.quantity_id,
            ),
            warnings=calculation.warnings,
            engine_version=self._engine_version,
            started_at=started_at,
            duration_ms=self._duration_ms(started),
        )

    def _record_failure(
        self,
        element: Element | None,
        assembly: Assembly | None,
        actor: Actor,
        actor_id: str | None,
        error: Exception,
        started_at: datetime,
        started: float,
    ) -> None:
        if isinstance(error, CalculationError):
            envelope = AuditError(**error.to_dict())
            logger.warning(
                "Calculation failed for element=%s assembly=%s: [%s] %s",
                element.element_id if element is not None else None,
                assembly.assembly_id if assembly is not None else None,
                error.code,
                error.message,
            )
        else:
            envelope = AuditError(type=type(error).__name__, code="INTERNAL", message=str(error))
            logger.error(
                "Calculation aborted for element=%s assembly=%s: %s",
                element.element_id if element is not None else None,
                assembly.assembly_id if assembly is not None else None,
                error,
            )

        self._recorder.record(
            CalculationAuditRecord(
                record_id=str(uuid.uuid4()),
                element_id=element.element_id if element is not None else None,
                assembly_id=assembly.assembly_id if assembly is not None else None,
                outcome=AuditOutcome.FAILURE,
                actor=actor,
                actor_id=actor_id,
                formula=assembly.formula if assembly is not None else None,
                formula_hash=assembly.formula_hash if assembly is not None else None,
                parameters=snapshot_parameters(element.parameters) if element is not None else {},
                error=envelope,
                engine_version=self._engine_version,
                started_at=started_at,
                duration_ms=self._duration_ms(started),
            )
        )


def recalculate_elements(
    engine: CalculationEngine,
    elements: Iterable[Element],
    *,
    actor: Actor = Actor.SYSTEM,
    max_workers: int | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> dict[str, RecalculationReport]:
    """Recalculate several elements in parallel, one batch per element.

    Each element's batch runs sequentially on one worker; distinct elements
    run concurrently.

    Raises:
        ValueError: If the same element_id appears more than once.
    """
    batch = list(elements)
    ids = [element.element_id for element in batch]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValueError(f"Elements listed more than once: {duplicates}")

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            element.element_id: pool.submit(
                engine.recalculate_all, element, actor=actor, should_stop=should_stop
            )
            for element in batch
        }
        return {element_id: future.result() for element_id, future in futures.items()}
