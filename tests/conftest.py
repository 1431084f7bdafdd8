"""Pytest configuration and fixtures for boqcalc tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime

import pytest

from boqcalc.audit.recorder import AuditRecorder
from boqcalc.audit.sink import InMemoryAuditSink
from boqcalc.calc.engine import CalculationEngine
from boqcalc.models.assembly import (
    Assembly,
    ParameterProperty,
    ParameterSchema,
    ParameterType,
)
from boqcalc.models.element import Classification, Element
from boqcalc.persistence.repositories.quantities import InMemoryQuantitiesRepository

TEST_ENGINE_VERSION = "test-1.0.0"
FIXED_NOW = datetime(2026, 1, 15, 9, 30, tzinfo=UTC)

BOQCALC_ENV_VARS = (
    "BOQCALC_ENGINE_VERSION",
    "BOQCALC_AUDIT_LOG_PATH",
    "BOQCALC_DATABASE_URL",
    "BOQCALC_LOG_LEVEL",
    "BOQCALC_OTEL_ENABLED",
    "BOQCALC_REQUIRE_OTEL",
    "BOQCALC_OTEL_SERVICE_NAME",
    "BOQCALC_OTEL_EXPORTER",
    "BOQCALC_OTEL_TEST_CAPTURE",
)


@pytest.fixture(autouse=True)
def clean_boqcalc_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Start every test with no BOQCALC_* settings and fresh tracing state."""
    from boqcalc.observability.tracing import reset_tracing
    from boqcalc.persistence.db import reset_engine

    for name in BOQCALC_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_tracing()

    yield

    reset_tracing()
    reset_engine()


def number_schema(*names: str, rule: str | None = None) -> ParameterSchema:
    """Schema declaring every name as a required number."""
    return ParameterSchema(
        properties={
            name: ParameterProperty(type=ParameterType.NUMBER, rule=rule) for name in names
        },
        required=list(names),
    )


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    """Create an in-memory audit sink."""
    return InMemoryAuditSink()


@pytest.fixture
def recorder(audit_sink: InMemoryAuditSink) -> AuditRecorder:
    return AuditRecorder(audit_sink)


@pytest.fixture
def quantities() -> InMemoryQuantitiesRepository:
    """Create an empty in-memory quantity repository."""
    return InMemoryQuantitiesRepository()


@pytest.fixture
def engine(quantities: InMemoryQuantitiesRepository, recorder: AuditRecorder) -> CalculationEngine:
    """Create a calculation engine with a fixed clock and test version."""
    return CalculationEngine(
        quantities,
        recorder,
        engine_version=TEST_ENGINE_VERSION,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def slab_assembly() -> Assembly:
    """Concrete slab volume: length * width * height in m3."""
    return Assembly(
        assembly_id="slab-volume",
        name="Concrete slab volume",
        formula="length * width * height",
        unit="m3",
        parameter_schema=number_schema("length", "width", "height"),
    )


@pytest.fixture
def plaster_assembly() -> Assembly:
    """Wall plaster area: width * height in m2."""
    return Assembly(
        assembly_id="wall-plaster",
        name="Wall plaster",
        formula="width * height",
        unit="m2",
        parameter_schema=number_schema("width", "height"),
    )


@pytest.fixture
def slab_element(slab_assembly: Assembly, plaster_assembly: Assembly) -> Element:
    """Element whose classification carries the slab and plaster assemblies."""
    return Element(
        element_id="el-001",
        name="Ground floor slab",
        element_type="slab",
        material="concrete",
        parameters={"length": 2, "width": 3, "height": 1},
        classification=Classification(
            code="2.1.1",
            name="Substructure",
            assemblies=[slab_assembly, plaster_assembly],
        ),
    )


@pytest.fixture
def fixed_now() -> datetime:
    """The timestamp returned by the engine fixture's clock."""
    return FIXED_NOW
