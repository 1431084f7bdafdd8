"""Quantity Calculation Engine.

This package provides:
- CalculationEngine: validate, evaluate, persist and audit one calculation
- evaluate(): sandboxed formula evaluation with a step trace
- FunctionRegistry: the closed set of formula functions and constants
- Exceptions: the CalculationError taxonomy
"""

from boqcalc.calc.context import ParameterContext
from boqcalc.calc.engine import (
    CalculationEngine,
    RecalculationFailure,
    RecalculationReport,
    recalculate_elements,
)
from boqcalc.calc.errors import (
    CalcIntegrityError,
    CalculationError,
    FormulaError,
    ParameterError,
    UnitError,
)
from boqcalc.calc.formulas.evaluator import Evaluation, evaluate
from boqcalc.calc.functions import FunctionRegistry, FunctionSpec, default_registry

__all__ = [
    "CalcIntegrityError",
    "CalculationEngine",
    "CalculationError",
    "Evaluation",
    "FormulaError",
    "FunctionRegistry",
    "FunctionSpec",
    "ParameterContext",
    "ParameterError",
    "RecalculationFailure",
    "RecalculationReport",
    "UnitError",
    "default_registry",
    "evaluate",
    "recalculate_elements",
]
