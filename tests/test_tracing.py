"""Tests for OpenTelemetry tracing of calculations.

Per the observability baseline:
- Tracing OFF by default, ON via BOQCALC_OTEL_ENABLED=1
- Fail-closed only when BOQCALC_REQUIRE_OTEL=1 and init fails
- Calculation spans carry element/assembly ids and the outcome
- Parameter values never appear in span attributes
- Tests use the in-memory exporter (no external collector required)
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from boqcalc.calc.engine import CalculationEngine
from boqcalc.calc.errors import ParameterError
from boqcalc.models.assembly import Assembly
from boqcalc.models.element import Element
from boqcalc.observability import tracing


@pytest.fixture
def capture(monkeypatch: pytest.MonkeyPatch) -> None:
    """Enable tracing with the in-memory exporter."""
    monkeypatch.setenv("BOQCALC_OTEL_ENABLED", "1")
    monkeypatch.setenv("BOQCALC_OTEL_TEST_CAPTURE", "1")
    assert tracing.configure_tracing() is True


class TestTracingConfiguration:
    """Tests for tracing configuration behavior."""

    def test_tracing_disabled_by_default(self) -> None:
        """Tracing should be OFF when BOQCALC_OTEL_ENABLED is not set."""
        assert tracing.configure_tracing() is False
        assert tracing.get_test_spans() == []

    def test_tracing_idempotent(self, capture: None) -> None:
        assert tracing.configure_tracing() is True
        assert tracing.configure_tracing() is True

    def test_require_otel_fails_closed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """BOQCALC_REQUIRE_OTEL=1 should fail startup if tracing init fails."""
        monkeypatch.setenv("BOQCALC_OTEL_ENABLED", "1")
        monkeypatch.setenv("BOQCALC_REQUIRE_OTEL", "1")

        with patch(
            "opentelemetry.sdk.trace.TracerProvider",
            side_effect=Exception("Simulated init failure"),
        ):
            tracing._is_configured = False
            with pytest.raises(tracing.TracingConfigError) as exc_info:
                tracing.configure_tracing()

        assert "configuration failed" in str(exc_info.value).lower()

    def test_init_failure_without_require_returns_false(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("BOQCALC_OTEL_ENABLED", "1")

        with patch(
            "opentelemetry.sdk.trace.TracerProvider",
            side_effect=Exception("Simulated init failure"),
        ):
            tracing._is_configured = False
            assert tracing.configure_tracing() is False


class TestCalculationSpan:
    """Span helper behavior."""

    def test_yields_none_when_disabled(self) -> None:
        with tracing.calculation_span("boqcalc.test", {"boqcalc.element_id": "e"}) as span:
            assert span is None

    def test_exception_tags_span(self, capture: None) -> None:
        with pytest.raises(RuntimeError):
            with tracing.calculation_span("boqcalc.test", {"boqcalc.element_id": "e"}):
                raise RuntimeError("boom")

        spans = [s for s in tracing.get_test_spans() if s.name == "boqcalc.test"]
        assert len(spans) == 1
        assert spans[0].attributes["error"] is True
        assert spans[0].attributes["error.type"] == "RuntimeError"

    def test_none_attributes_are_skipped(self, capture: None) -> None:
        with tracing.calculation_span("boqcalc.test", {"boqcalc.assembly_id": None}):
            pass

        span = tracing.get_test_spans()[-1]
        assert "boqcalc.assembly_id" not in span.attributes


class TestEngineSpans:
    """The engine wraps each calculation in a span."""

    def _engine_spans(self) -> list:
        return [s for s in tracing.get_test_spans() if s.name == "boqcalc.calc.calculate"]

    def test_success_span(
        self,
        capture: None,
        engine: CalculationEngine,
        slab_element: Element,
        slab_assembly: Assembly,
    ) -> None:
        engine.calculate(slab_element, slab_assembly)

        spans = self._engine_spans()
        assert len(spans) == 1
        attrs = spans[0].attributes
        assert attrs["boqcalc.element_id"] == "el-001"
        assert attrs["boqcalc.assembly_id"] == "slab-volume"
        assert attrs["boqcalc.outcome"] == "SUCCESS"
        assert "error" not in attrs

    def test_failure_span(
        self,
        capture: None,
        engine: CalculationEngine,
        slab_element: Element,
        slab_assembly: Assembly,
    ) -> None:
        element = slab_element.model_copy(update={"parameters": {"length": 2}})

        with pytest.raises(ParameterError):
            engine.calculate(element, slab_assembly)

        attrs = self._engine_spans()[0].attributes
        assert attrs["boqcalc.outcome"] == "FAILURE"
        assert attrs["error"] is True
        assert attrs["error.type"] == "ParameterError"

    def test_parameter_values_not_exported(
        self,
        capture: None,
        engine: CalculationEngine,
        slab_element: Element,
        slab_assembly: Assembly,
    ) -> None:
        element = slab_element.model_copy(
            update={"parameters": {"length": 2, "width": 3, "height": 1, "note": "secret-value"}}
        )
        engine.calculate(element, slab_assembly)

        for span in self._engine_spans():
            values = [str(v) for v in span.attributes.values()]
            assert "secret-value" not in values
            assert "length * width * height" not in values

    def test_no_spans_when_disabled(
        self, engine: CalculationEngine, slab_element: Element, slab_assembly: Assembly
    ) -> None:
        engine.calculate(slab_element, slab_assembly)

        assert self._engine_spans() == []
