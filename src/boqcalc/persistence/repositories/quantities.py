"""Quantity repository: per-element storage of calculated quantities.

Provides both SQL and in-memory implementations. Recalculation goes through
replace_for_element(), which swaps an element's quantities atomically so
readers never observe a transient empty set.

create() takes an optional ``audit`` callback that runs inside the same
write: if it raises, the quantity is not stored. The SQL repository passes
its open connection so a transactional audit sink can join the transaction;
the in-memory repository passes None.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import text

from boqcalc.models.quantity import CalculationResult, Quantity
from boqcalc.persistence.db import begin_conn

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

    AuditHook = Callable[[Connection | None], None]

logger = logging.getLogger(__name__)


@runtime_checkable
class QuantitiesRepo(Protocol):
    """Structural interface for Quantity repositories.

    Both InMemoryQuantitiesRepository and SqlQuantitiesRepository satisfy
    this protocol.
    """

    def create(self, quantity: Quantity, *, audit: AuditHook | None = None) -> Quantity: ...

    def list_for_element(self, element_id: str) -> list[Quantity]: ...

    def replace_for_element(self, element_id: str, quantities: Sequence[Quantity]) -> None: ...


def _check_owner(element_id: str, quantities: Sequence[Quantity]) -> None:
    for quantity in quantities:
        if quantity.element_id != element_id:
            raise ValueError(
                f"Quantity {quantity.quantity_id} belongs to element {quantity.element_id}, "
                f"not {element_id}"
            )


class InMemoryQuantitiesRepository:
    """Process-local repository keyed by element_id.

    All operations hold one lock, so replace_for_element() is atomic with
    respect to concurrent readers.
    """

    def __init__(self) -> None:
        self._store: dict[str, list[Quantity]] = {}
        self._lock = threading.Lock()

    def create(self, quantity: Quantity, *, audit: AuditHook | None = None) -> Quantity:
        with self._lock:
            if audit is not None:
                audit(None)
            self._store.setdefault(quantity.element_id, []).append(quantity)
        return quantity

    def list_for_element(self, element_id: str) -> list[Quantity]:
        with self._lock:
            return list(self._store.get(element_id, []))

    def replace_for_element(self, element_id: str, quantities: Sequence[Quantity]) -> None:
        _check_owner(element_id, quantities)
        with self._lock:
            self._store[element_id] = list(quantities)


class SqlQuantitiesRepository:
    """SQL repository for quantities; one transaction per operation.

    Args:
        engine: SQLAlchemy engine; the schema must exist (see ensure_schema).
    """

    _INSERT_SQL = text(
        """
        INSERT INTO quantities
            (quantity_id, element_id, assembly_id, value, unit,
             formula_hash, reproducibility_hash, calculation, created_at)
        VALUES
            (:quantity_id, :element_id, :assembly_id, :value, :unit,
             :formula_hash, :reproducibility_hash, :calculation, :created_at)
        """
    )

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _insert(self, conn: Connection, quantity: Quantity) -> None:
        conn.execute(
            self._INSERT_SQL,
            {
                "quantity_id": quantity.quantity_id,
                "element_id": quantity.element_id,
                "assembly_id": quantity.assembly_id,
                "value": quantity.value,
                "unit": quantity.unit,
                "formula_hash": quantity.formula_hash,
                "reproducibility_hash": quantity.reproducibility_hash,
                "calculation": quantity.calculation.model_dump_json(),
                "created_at": quantity.created_at.isoformat(),
            },
        )

    def create(self, quantity: Quantity, *, audit: AuditHook | None = None) -> Quantity:
        """Insert a quantity; ``audit`` runs in the same transaction before commit."""
        with begin_conn(self._engine) as conn:
            self._insert(conn, quantity)
            if audit is not None:
                audit(conn)
        return quantity

    def list_for_element(self, element_id: str) -> list[Quantity]:
        with begin_conn(self._engine) as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT quantity_id, element_id, assembly_id, value, unit,
                           formula_hash, reproducibility_hash, calculation, created_at
                    FROM quantities
                    WHERE element_id = :element_id
                    ORDER BY created_at, quantity_id
                    """
                ),
                {"element_id": element_id},
            ).mappings()
            return [
                Quantity(
                    quantity_id=row["quantity_id"],
                    element_id=row["element_id"],
                    assembly_id=row["assembly_id"],
                    value=row["value"],
                    unit=row["unit"],
                    formula_hash=row["formula_hash"],
                    reproducibility_hash=row["reproducibility_hash"],
                    calculation=CalculationResult.model_validate(json.loads(row["calculation"])),
                    created_at=row["created_at"],
                )
                for row in rows
            ]

    def replace_for_element(self, element_id: str, quantities: Sequence[Quantity]) -> None:
        """Delete and recreate an element's quantities in one transaction."""
        _check_owner(element_id, quantities)
        with begin_conn(self._engine) as conn:
            deleted = conn.execute(
                text("DELETE FROM quantities WHERE element_id = :element_id"),
                {"element_id": element_id},
            ).rowcount
            for quantity in quantities:
                self._insert(conn, quantity)
        logger.debug(
            "Replaced %d quantities with %d for element %s", deleted, len(quantities), element_id
        )
