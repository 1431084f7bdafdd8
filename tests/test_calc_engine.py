"""Tests for CalculationEngine.calculate().

Tests cover:
1. Successful calculations persist a Quantity and one SUCCESS audit record
2. Negative results are accepted with a NEGATIVE_RESULT warning
3. Each error kind persists nothing, writes one FAILURE record and re-raises
4. A quantity is kept only if its SUCCESS record is written
5. Unit standardization is an explicit, traced conversion step
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Connection, Engine

from boqcalc.audit.recorder import AuditRecorder
from boqcalc.audit.sink import AuditSinkError, InMemoryAuditSink
from boqcalc.audit.sql_sink import SqlAuditSink
from boqcalc.calc.engine import CalculationEngine
from boqcalc.calc.errors import CalculationError, FormulaError, ParameterError, UnitError
from boqcalc.models.assembly import Assembly, ParameterProperty, ParameterSchema, ParameterType
from boqcalc.models.audit_record import Actor
from boqcalc.models.element import Element
from boqcalc.models.quantity import NEGATIVE_RESULT, Quantity, StepKind
from boqcalc.persistence.db import create_db_engine
from boqcalc.persistence.repositories.quantities import (
    InMemoryQuantitiesRepository,
    SqlQuantitiesRepository,
)
from boqcalc.persistence.schema import ensure_schema


def _assembly(formula: str, unit: str, *names: str, **extra: Any) -> Assembly:
    return Assembly(
        assembly_id=extra.pop("assembly_id", "asm-1"),
        formula=formula,
        unit=unit,
        parameter_schema=ParameterSchema(
            properties={n: ParameterProperty(type=ParameterType.NUMBER) for n in names},
            required=list(names),
        ),
        **extra,
    )


def _element(**parameters: Any) -> Element:
    return Element(element_id="el-1", parameters=parameters)


class TestSuccessfulCalculation:
    """Happy-path calculations."""

    def test_slab_volume(
        self,
        engine: CalculationEngine,
        slab_assembly: Assembly,
        slab_element: Element,
        quantities: InMemoryQuantitiesRepository,
        fixed_now: datetime,
    ) -> None:
        quantity = engine.calculate(slab_element, slab_assembly)

        assert quantity.value == 6.0
        assert quantity.unit == "m3"
        assert quantity.element_id == "el-001"
        assert quantity.assembly_id == "slab-volume"
        assert quantity.created_at == fixed_now
        assert quantities.list_for_element("el-001") == [quantity]

    def test_result_provenance(
        self, engine: CalculationEngine, slab_assembly: Assembly, slab_element: Element
    ) -> None:
        result = engine.calculate(slab_element, slab_assembly).calculation

        assert result.raw_result == 6.0
        assert result.standardized_result == 6.0
        assert result.formula_used == "length * width * height"
        assert result.engine_version == engine.engine_version == "test-1.0.0"
        assert result.parameters_used["length"] == 2
        assert result.parameters_used["element_type"] == "slab"
        assert result.parameters_used["material"] == "concrete"
        assert result.warnings == []
        assert [s.index for s in result.calculation_steps] == list(
            range(len(result.calculation_steps))
        )

    def test_square_root(self, engine: CalculationEngine) -> None:
        quantity = engine.calculate(_element(area=16), _assembly("sqrt(area)", "m", "area"))
        assert quantity.value == 4.0

    def test_string_parameters_are_coerced(self, engine: CalculationEngine) -> None:
        assembly = _assembly("width * height", "m2", "width", "height")

        quantity = engine.calculate(_element(width="2.5", height="4"), assembly)

        assert quantity.value == 10.0

    def test_one_success_audit_record(
        self,
        engine: CalculationEngine,
        slab_assembly: Assembly,
        slab_element: Element,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        quantity = engine.calculate(slab_element, slab_assembly, actor=Actor.USER, actor_id="u-7")

        assert len(audit_sink.events) == 1
        record = audit_sink.events[0]
        assert record["outcome"] == "SUCCESS"
        assert record["actor"] == "USER"
        assert record["actor_id"] == "u-7"
        assert record["element_id"] == "el-001"
        assert record["assembly_id"] == "slab-volume"
        assert record["formula"] == "length * width * height"
        assert record["formula_hash"] == slab_assembly.formula_hash
        assert record["result"]["quantity_id"] == quantity.quantity_id
        assert record["result"]["standardized_result"] == 6.0
        assert record["error"] is None
        assert len(record["calculation_steps"]) == len(quantity.calculation.calculation_steps)
        assert record["duration_ms"] >= 0

    def test_each_calculation_is_a_new_quantity(
        self,
        engine: CalculationEngine,
        slab_assembly: Assembly,
        slab_element: Element,
        quantities: InMemoryQuantitiesRepository,
    ) -> None:
        first = engine.calculate(slab_element, slab_assembly)
        second = engine.calculate(slab_element, slab_assembly)

        assert first.quantity_id != second.quantity_id
        assert len(quantities.list_for_element("el-001")) == 2


class TestNegativeResult:
    """Negative results are valid but flagged."""

    def test_negative_result_is_persisted_with_warning(
        self,
        engine: CalculationEngine,
        quantities: InMemoryQuantitiesRepository,
        audit_sink: InMemoryAuditSink,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level("WARNING", logger="boqcalc.calc.engine"):
            quantity = engine.calculate(_element(a=5, b=10), _assembly("a - b", "m", "a", "b"))

        assert quantity.value == -5.0
        assert quantity.has_warning(NEGATIVE_RESULT)
        assert quantity.calculation.is_negative
        assert quantities.list_for_element("el-1") == [quantity]
        assert audit_sink.events[0]["outcome"] == "SUCCESS"
        assert audit_sink.events[0]["warnings"][0]["code"] == NEGATIVE_RESULT
        assert "Negative result" in caplog.text

    def test_zero_is_not_negative(self, engine: CalculationEngine) -> None:
        quantity = engine.calculate(_element(a=5, b=5), _assembly("a - b", "m", "a", "b"))
        assert quantity.value == 0.0
        assert quantity.warnings == []


class TestFailureAuditing:
    """Every failure writes exactly one audit record and persists nothing."""

    @pytest.mark.parametrize(
        ("assembly", "parameters", "error_type", "code"),
        [
            (
                _assembly("width * height", "m2", "width", "height"),
                {"width": 2},
                ParameterError,
                "PARAMETER_MISSING",
            ),
            (
                _assembly("width * height", "m2", "width", "height"),
                {"width": "abc", "height": 2},
                ParameterError,
                "PARAMETER_INVALID",
            ),
            (
                _assembly("a / b", "m", "a", "b"),
                {"a": 1, "b": 0},
                FormulaError,
                "FORMULA_INVALID",
            ),
            (
                _assembly("a + missing", "m", "a"),
                {"a": 1},
                FormulaError,
                "FORMULA_INVALID",
            ),
            (
                _assembly("a", "m3", "a", source_unit="kg"),
                {"a": 1},
                UnitError,
                "UNIT_UNSUPPORTED",
            ),
            (
                _assembly("a * b", "m", "a", "b"),
                {"a": 1e200, "b": 1e200},
                CalculationError,
                "RESULT_INVALID",
            ),
        ],
    )
    def test_failure_is_audited_and_reraised(
        self,
        engine: CalculationEngine,
        quantities: InMemoryQuantitiesRepository,
        audit_sink: InMemoryAuditSink,
        assembly: Assembly,
        parameters: dict[str, Any],
        error_type: type[CalculationError],
        code: str,
    ) -> None:
        with pytest.raises(error_type) as exc_info:
            engine.calculate(_element(**parameters), assembly)

        assert type(exc_info.value) is error_type
        assert exc_info.value.code == code
        assert quantities.list_for_element("el-1") == []

        assert len(audit_sink.events) == 1
        record = audit_sink.events[0]
        assert record["outcome"] == "FAILURE"
        assert record["error"]["code"] == code
        assert record["error"]["type"] == error_type.__name__
        assert record["error"]["message"] == exc_info.value.message
        assert record["result"] is None
        assert record["calculation_steps"] == []
        assert record["parameters"] == {k: v for k, v in parameters.items()}

    def test_missing_parameters_all_named_in_audit(
        self, engine: CalculationEngine, audit_sink: InMemoryAuditSink
    ) -> None:
        assembly = _assembly("width * height * depth", "m3", "width", "height", "depth")

        with pytest.raises(ParameterError) as exc_info:
            engine.calculate(_element(depth=1), assembly)

        assert set(exc_info.value.missing) == {"width", "height"}
        assert audit_sink.events[0]["error"]["details"]["missing"] == ["width", "height"]

    def test_missing_element(
        self, engine: CalculationEngine, slab_assembly: Assembly, audit_sink: InMemoryAuditSink
    ) -> None:
        with pytest.raises(ParameterError):
            engine.calculate(None, slab_assembly)

        record = audit_sink.events[0]
        assert record["element_id"] is None
        assert record["assembly_id"] == "slab-volume"
        assert record["parameters"] == {}

    def test_missing_assembly(
        self, engine: CalculationEngine, slab_element: Element, audit_sink: InMemoryAuditSink
    ) -> None:
        with pytest.raises(ParameterError):
            engine.calculate(slab_element, None)

        assert audit_sink.events[0]["assembly_id"] is None
        assert audit_sink.events[0]["formula"] is None

    def test_sandbox_violation_is_audited(
        self, engine: CalculationEngine, audit_sink: InMemoryAuditSink
    ) -> None:
        with pytest.raises(FormulaError):
            engine.calculate(_element(a=1), _assembly("eval(a)", "m", "a"))

        assert audit_sink.events[0]["error"]["code"] == "FORMULA_INVALID"

    def test_persistence_failure_is_audited(
        self, recorder: AuditRecorder, audit_sink: InMemoryAuditSink
    ) -> None:
        class BrokenRepository(InMemoryQuantitiesRepository):
            def create(self, quantity: Quantity, *, audit: Any = None) -> Quantity:
                raise RuntimeError("disk full")

        engine = CalculationEngine(BrokenRepository(), recorder, engine_version="v")

        with pytest.raises(RuntimeError, match="disk full"):
            engine.calculate(_element(a=1), _assembly("a", "m", "a"))

        record = audit_sink.events[0]
        assert record["outcome"] == "FAILURE"
        assert record["error"]["code"] == "INTERNAL"
        assert record["error"]["type"] == "RuntimeError"

    def test_audit_failure_propagates(
        self, quantities: InMemoryQuantitiesRepository
    ) -> None:
        class FailingSink:
            def emit(self, event: dict[str, Any]) -> None:
                raise AuditSinkError("sink unavailable")

        engine = CalculationEngine(quantities, AuditRecorder(FailingSink()), engine_version="v")

        with pytest.raises(AuditSinkError):
            engine.calculate(_element(a=1), _assembly("a", "m", "a"))

        assert quantities.list_for_element("el-1") == []


class TestQuantityStoredWithAudit:
    """On SQL storage the quantity and its SUCCESS record share one transaction."""

    @pytest.fixture
    def db_engine(self, tmp_path: Path) -> Engine:
        engine = create_db_engine(f"sqlite:///{tmp_path / 'calc.db'}")
        ensure_schema(engine)
        return engine

    def test_quantity_and_record_commit_together(self, db_engine: Engine) -> None:
        class TrackingSink(SqlAuditSink):
            in_tx = 0

            def emit_in_tx(self, conn: Connection, event: dict[str, Any]) -> None:
                self.in_tx += 1
                super().emit_in_tx(conn, event)

        sink = TrackingSink(db_engine)
        repo = SqlQuantitiesRepository(db_engine)
        engine = CalculationEngine(repo, AuditRecorder(sink), engine_version="v")

        quantity = engine.calculate(_element(a=4), _assembly("a", "m", "a"))

        assert sink.in_tx == 1
        assert repo.list_for_element("el-1") == [quantity]
        assert [e["outcome"] for e in sink.iter_events()] == ["SUCCESS"]

    def test_audit_failure_rolls_back_quantity(self, db_engine: Engine) -> None:
        class RejectingSink(SqlAuditSink):
            def emit_in_tx(self, conn: Connection, event: dict[str, Any]) -> None:
                super().emit_in_tx(conn, event)
                raise AuditSinkError("audit store rejected the record")

        sink = RejectingSink(db_engine)
        repo = SqlQuantitiesRepository(db_engine)
        engine = CalculationEngine(repo, AuditRecorder(sink), engine_version="v")

        with pytest.raises(AuditSinkError, match="rejected"):
            engine.calculate(_element(a=4), _assembly("a", "m", "a"))

        assert repo.list_for_element("el-1") == []
        assert list(sink.iter_events()) == []


class TestUnitStandardization:
    """The raw formula value is converted to the assembly unit."""

    def test_identity_when_source_unit_matches(self, engine: CalculationEngine) -> None:
        quantity = engine.calculate(
            _element(width=2, height=3), _assembly("width * height", "m2", "width", "height")
        )

        result = quantity.calculation
        assert result.source_unit == "m2"
        assert result.unit == "m2"
        assert result.standardized_result == result.raw_result == 6.0

        last = result.calculation_steps[-1]
        assert last.kind == StepKind.CONVERSION
        assert last.expression == "m2 -> m2"
        assert last.value == 6.0

    def test_source_unit_is_converted(self, engine: CalculationEngine) -> None:
        assembly = _assembly(
            "length * width", "m2", "length", "width", source_unit="mm2"
        )

        quantity = engine.calculate(_element(length=1200, width=600), assembly)

        assert quantity.calculation.raw_result == 720000.0
        assert quantity.value == 0.72
        assert quantity.unit == "m2"
        assert quantity.calculation.calculation_steps[-1].detail == "720000 mm2 = 0.72 m2"

    def test_conversion_helpers_inside_formula(self, engine: CalculationEngine) -> None:
        assembly = _assembly("to_m(length, 'mm') * to_m(width, 'mm')", "m2", "length", "width")

        quantity = engine.calculate(_element(length=1200, width=500), assembly)

        assert quantity.value == pytest.approx(0.6)


class TestEngineIsolation:
    """Calculations never mutate their inputs or share state."""

    def test_element_parameters_not_mutated(
        self, engine: CalculationEngine, slab_assembly: Assembly, slab_element: Element
    ) -> None:
        before = dict(slab_element.parameters)
        engine.calculate(slab_element, slab_assembly)
        assert slab_element.parameters == before

    def test_engine_version_is_explicit(
        self, quantities: InMemoryQuantitiesRepository, recorder: AuditRecorder
    ) -> None:
        engine = CalculationEngine(quantities, recorder, engine_version="2.3.4")
        quantity = engine.calculate(_element(a=1), _assembly("a", "m", "a"))

        assert engine.engine_version == "2.3.4"
        assert quantity.calculation.engine_version == "2.3.4"
