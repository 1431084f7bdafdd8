"""Error taxonomy for the quantity calculation engine.

Every error raised by validation or evaluation is a CalculationError subclass
carrying a stable machine-readable code and JSON-safe details, so the audit
recorder can persist it verbatim before the engine re-raises it.
"""

from __future__ import annotations

from typing import Any


class CalculationError(Exception):
    """Base calculation failure.

    Raised directly when the evaluator produces a non-numeric, NaN or
    infinite result.
    """

    code = "RESULT_INVALID"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-safe error envelope."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ParameterError(CalculationError):
    """Missing required parameters or a parameter failing its declared type.

    Attributes:
        missing: All missing required names (accumulated), empty otherwise.
        parameter: The first offending parameter for type/rule violations.
        value: The value received for ``parameter``.
    """

    code = "PARAMETER_INVALID"

    def __init__(
        self,
        message: str,
        *,
        missing: list[str] | None = None,
        parameter: str | None = None,
        value: Any = None,
    ) -> None:
        self.missing = list(missing or [])
        self.parameter = parameter
        self.value = value
        details: dict[str, Any] = {}
        if self.missing:
            details["missing"] = self.missing
        if parameter is not None:
            details["parameter"] = parameter
            details["value"] = repr(value)
        super().__init__(message, details)

    @classmethod
    def for_missing(cls, missing: list[str]) -> ParameterError:
        err = cls(f"Missing required parameters: {', '.join(missing)}", missing=missing)
        err.code = "PARAMETER_MISSING"
        return err


class FormulaError(CalculationError):
    """Formula failed to parse, referenced an unresolved identifier, called a
    non-whitelisted function, or faulted during evaluation."""

    code = "FORMULA_INVALID"

    def __init__(self, message: str, expression: str | None = None) -> None:
        self.expression = expression
        super().__init__(message, {"expression": expression} if expression else None)


class UnitError(CalculationError):
    """No conversion path exists between the requested units."""

    code = "UNIT_UNSUPPORTED"

    def __init__(
        self, message: str, from_unit: str | None = None, to_unit: str | None = None
    ) -> None:
        self.from_unit = from_unit
        self.to_unit = to_unit
        super().__init__(message, {"from_unit": from_unit, "to_unit": to_unit})


class CalcIntegrityError(Exception):
    """Raised when reproducibility hash verification fails.

    Indicates the stored quantity no longer matches its inputs.
    """

    def __init__(self, quantity_id: str, expected_hash: str, computed_hash: str) -> None:
        self.quantity_id = quantity_id
        self.expected_hash = expected_hash
        self.computed_hash = computed_hash
        super().__init__(
            f"Integrity check failed for quantity_id={quantity_id}. "
            f"Expected hash: {expected_hash[:16]}..., "
            f"Computed hash: {computed_hash[:16]}..."
        )
