"""boqcalc CLI - deterministic command-line front end for the calculation engine.

Usage:
    python -m boqcalc evaluate --formula F [--params FILE]
    python -m boqcalc calculate --catalog FILE --assembly ID --params FILE [--element-id ID]
    python -m boqcalc units convert VALUE FROM TO

Parameter and catalog files may be JSON or YAML.

Exit codes:
    0: Success
    1: Internal error
    2: Calculation, validation or input failure
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

import yaml

from boqcalc.audit.recorder import AuditRecorder
from boqcalc.audit.sink import get_audit_sink
from boqcalc.calc import units
from boqcalc.calc.context import ParameterContext
from boqcalc.calc.engine import CalculationEngine
from boqcalc.calc.errors import CalculationError
from boqcalc.calc.formulas.evaluator import evaluate
from boqcalc.catalog import CatalogError, load_catalog
from boqcalc.config import Settings, configure_logging
from boqcalc.models.audit_record import Actor
from boqcalc.models.element import Element
from boqcalc.observability.tracing import configure_tracing
from boqcalc.persistence.db import get_engine
from boqcalc.persistence.repositories.quantities import (
    InMemoryQuantitiesRepository,
    QuantitiesRepo,
    SqlQuantitiesRepository,
)
from boqcalc.persistence.schema import ensure_schema


class InputError(Exception):
    """Raised when a CLI input file cannot be used."""

    pass


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _error_output(
    code: str, message: str, details: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {
        "error": {"code": code, "details": details or {}, "message": message},
        "ok": False,
    }


def _load_params(path: str | None) -> dict[str, Any]:
    """Load a parameter mapping from a JSON or YAML file.

    Raises:
        InputError: If the file is missing, malformed or not a mapping.
    """
    if path is None:
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f.read())
    except FileNotFoundError:
        raise InputError(f"File not found: {path}") from None
    except OSError as e:
        raise InputError(f"Cannot read input: {e}") from e
    except yaml.YAMLError as e:
        raise InputError(f"Invalid parameters file: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InputError(f"Parameters must be a mapping, got {type(data).__name__}")
    return data


def _build_engine(settings: Settings) -> tuple[CalculationEngine, QuantitiesRepo]:
    quantities: QuantitiesRepo
    if settings.database_url:
        db_engine = get_engine()
        ensure_schema(db_engine)
        quantities = SqlQuantitiesRepository(db_engine)
    else:
        quantities = InMemoryQuantitiesRepository()

    engine = CalculationEngine(
        quantities,
        AuditRecorder(get_audit_sink(settings.audit_log_path)),
        engine_version=settings.engine_version,
    )
    return engine, quantities


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Evaluate a bare formula and print its value and trace.

    Exit codes:
        0: Formula evaluated
        2: Invalid formula or parameters
    """
    try:
        params = _load_params(args.params)
    except InputError as e:
        _output_json(_error_output("INVALID_INPUT", str(e)))
        return 2

    try:
        result = evaluate(args.formula, ParameterContext.build(params))
    except CalculationError as e:
        _output_json(_error_output(e.code, e.message, e.details))
        return 2

    _output_json(
        {
            "ok": True,
            "steps": [step.model_dump(mode="json") for step in result.steps],
            "value": result.value,
        }
    )
    return 0


def cmd_calculate(args: argparse.Namespace, settings: Settings) -> int:
    """Run one audited calculation for an assembly from a catalog file.

    Exit codes:
        0: Quantity calculated
        2: Catalog, input or calculation failure
    """
    try:
        catalog = load_catalog(args.catalog)
        params = _load_params(args.params)
    except CatalogError as e:
        _output_json(_error_output("INVALID_CATALOG", e.message))
        return 2
    except InputError as e:
        _output_json(_error_output("INVALID_INPUT", str(e)))
        return 2

    assembly = catalog.get(args.assembly)
    if assembly is None:
        _output_json(
            _error_output(
                "UNKNOWN_ASSEMBLY",
                f"Assembly '{args.assembly}' not found. Available: {sorted(catalog)}",
            )
        )
        return 2

    element = Element(
        element_id=args.element_id,
        element_type=args.element_type,
        material=args.material,
        parameters=params,
    )
    engine, _ = _build_engine(settings)

    try:
        quantity = engine.calculate(element, assembly, actor=Actor.USER)
    except CalculationError as e:
        _output_json(_error_output(e.code, e.message, e.details))
        return 2

    _output_json({"ok": True, "quantity": quantity.model_dump(mode="json")})
    return 0


def cmd_units_convert(args: argparse.Namespace) -> int:
    """Convert a value between two units.

    Exit codes:
        0: Converted
        2: Unsupported unit or unit pair
    """
    try:
        value = units.convert(args.value, args.from_unit, args.to_unit)
    except CalculationError as e:
        _output_json(_error_output(e.code, e.message, e.details))
        return 2

    _output_json(
        {
            "from_unit": units.normalize_unit(args.from_unit),
            "ok": True,
            "to_unit": units.normalize_unit(args.to_unit),
            "value": value,
        }
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="boqcalc",
        description="boqcalc - quantity calculation engine CLI",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    evaluate_parser = subparsers.add_parser(
        "evaluate",
        help="Evaluate a formula against a parameter file",
    )
    evaluate_parser.add_argument("--formula", required=True, help="Formula to evaluate")
    evaluate_parser.add_argument(
        "--params",
        default=None,
        metavar="FILE",
        help="JSON or YAML file with parameter bindings",
    )

    calculate_parser = subparsers.add_parser(
        "calculate",
        help="Calculate an audited quantity for a catalog assembly",
    )
    calculate_parser.add_argument(
        "--catalog", required=True, metavar="FILE", help="Assembly catalog (JSON or YAML)"
    )
    calculate_parser.add_argument("--assembly", required=True, metavar="ID", help="assembly_id")
    calculate_parser.add_argument(
        "--params", required=True, metavar="FILE", help="JSON or YAML element parameters"
    )
    calculate_parser.add_argument(
        "--element-id", default="cli-element", metavar="ID", help="Element identifier"
    )
    calculate_parser.add_argument("--element-type", default=None, help="Element type")
    calculate_parser.add_argument("--material", default=None, help="Element material")

    units_parser = subparsers.add_parser("units", help="Unit operations")
    units_subparsers = units_parser.add_subparsers(dest="units_command", help="Unit subcommands")
    convert_parser = units_subparsers.add_parser("convert", help="Convert a value between units")
    convert_parser.add_argument("value", type=float, help="Value to convert")
    convert_parser.add_argument("from_unit", metavar="FROM", help="Source unit")
    convert_parser.add_argument("to_unit", metavar="TO", help="Target unit")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Internal error (unexpected)
        2: Calculation, validation or input failure
    """
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return 0

        settings = Settings.from_env()
        configure_logging(settings)
        configure_tracing()

        if args.command == "evaluate":
            return cmd_evaluate(args)

        if args.command == "calculate":
            return cmd_calculate(args, settings)

        if args.command == "units":
            if getattr(args, "units_command", None) == "convert":
                return cmd_units_convert(args)
            parser.parse_args(["units", "--help"])
            return 0

        return 0

    except Exception as e:
        _output_json(_error_output("INTERNAL_ERROR", str(e)))
        return 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
