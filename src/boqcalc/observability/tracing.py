"""OpenTelemetry tracing for calculation runs.

Environment Variables:
    BOQCALC_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    BOQCALC_REQUIRE_OTEL: Set to "1" to fail if tracing cannot initialize
    BOQCALC_OTEL_SERVICE_NAME: Service name for spans (default: "boqcalc")
    BOQCALC_OTEL_EXPORTER: Exporter type - "otlp" or "console" (default: "console")
    BOQCALC_OTEL_TEST_CAPTURE: Set to "1" to use in-memory exporter for tests

Span attributes carry identifiers and codes only; parameter values and
formulas are never exported.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

TRACER_NAME = "boqcalc.calc"

_tracer_provider: TracerProvider | None = None
_is_configured: bool = False
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and BOQCALC_REQUIRE_OTEL=1."""

    pass


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def is_tracing_enabled() -> bool:
    return _get_env_bool("BOQCALC_OTEL_ENABLED", False)


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If BOQCALC_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _is_configured, _test_exporter

    if not is_tracing_enabled():
        _is_configured = True
        logger.debug("OpenTelemetry tracing disabled (BOQCALC_OTEL_ENABLED not set)")
        return False

    test_capture = _get_env_bool("BOQCALC_OTEL_TEST_CAPTURE", False)
    if _test_exporter is not None and test_capture:
        return True
    if _is_configured and _tracer_provider is not None:
        return True

    _is_configured = True
    require_otel = _get_env_bool("BOQCALC_REQUIRE_OTEL", False)

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import (
            BatchSpanProcessor,
            ConsoleSpanExporter,
            SimpleSpanProcessor,
        )

        service_name = os.environ.get("BOQCALC_OTEL_SERVICE_NAME", "boqcalc").strip()
        exporter_type = os.environ.get("BOQCALC_OTEL_EXPORTER", "console").strip()

        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

        if test_capture:
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "otlp":
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
        else:
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            "in-memory" if test_capture else exporter_type,
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if require_otel:
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


@contextmanager
def calculation_span(name: str, attributes: dict[str, Any]) -> Generator[Any, None, None]:
    """Open a span around a calculation when tracing is enabled.

    Yields the span, or None when tracing is disabled. Exceptions propagate
    unchanged after being tagged on the span.
    """
    if not is_tracing_enabled():
        yield None
        return

    from opentelemetry import trace

    if _tracer_provider is not None:
        tracer = _tracer_provider.get_tracer(TRACER_NAME)
    else:
        tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, str(value))
        try:
            yield span
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            raise


def get_test_spans() -> list[ReadableSpan]:
    """Get captured spans from the in-memory exporter (for testing)."""
    if _test_exporter is not None and hasattr(_test_exporter, "get_finished_spans"):
        return list(_test_exporter.get_finished_spans())
    return []


def reset_tracing() -> None:
    """Reset tracing configuration (for testing).

    The global TracerProvider cannot be replaced once set, so the test
    exporter is kept and only its spans are cleared.
    """
    global _is_configured

    if _test_exporter is not None and hasattr(_test_exporter, "clear"):
        _test_exporter.clear()
    _is_configured = False
