"""SQL audit sink for calculation audit records.

Design Requirements:
    - Append-only: INSERT only, no UPDATE/DELETE
    - Fail closed: any DB error raises AuditSinkError
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from boqcalc.audit.sink import AuditSinkError, serialize_event
from boqcalc.persistence.db import begin_conn

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)


class SqlAuditSink:
    """Audit sink storing one row per record in calculation_audit_records.

    Supports two modes:
    1. Standalone: emit() opens its own transaction
    2. In-transaction: emit_in_tx() joins a caller's transaction for atomicity
    """

    _INSERT_SQL = text(
        """
        INSERT INTO calculation_audit_records
            (record_id, element_id, assembly_id, outcome, started_at, record)
        VALUES
            (:record_id, :element_id, :assembly_id, :outcome, :started_at, :record)
        """
    )

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def emit(self, event: dict[str, Any]) -> None:
        """Insert an audit record in its own transaction.

        Raises:
            AuditSinkError: If emission fails for any reason.
        """
        try:
            with begin_conn(self._engine) as conn:
                self._insert_event(conn, event)
        except SQLAlchemyError as e:
            raise AuditSinkError(f"Failed to emit audit record: {e}") from e

    def emit_in_tx(self, conn: Connection, event: dict[str, Any]) -> None:
        """Insert an audit record within an existing transaction.

        Raises:
            AuditSinkError: If emission fails for any reason.
        """
        try:
            self._insert_event(conn, event)
        except SQLAlchemyError as e:
            raise AuditSinkError(f"Failed to emit audit record in transaction: {e}") from e

    def _insert_event(self, conn: Connection, event: dict[str, Any]) -> None:
        record_id = event.get("record_id")
        outcome = event.get("outcome")
        started_at = event.get("started_at")

        if not all([record_id, outcome, started_at]):
            raise AuditSinkError(
                "Audit record missing required fields: record_id, outcome, started_at"
            )

        conn.execute(
            self._INSERT_SQL,
            {
                "record_id": record_id,
                "element_id": event.get("element_id"),
                "assembly_id": event.get("assembly_id"),
                "outcome": outcome,
                "started_at": started_at,
                "record": serialize_event(event),
            },
        )
        logger.debug("Emitted audit record %s", record_id)

    def iter_events(self) -> Iterator[dict[str, Any]]:
        """Yield stored records in insertion order.

        Raises:
            AuditSinkError: If the query fails.
        """
        try:
            with begin_conn(self._engine) as conn:
                rows = conn.execute(
                    text("SELECT record FROM calculation_audit_records ORDER BY seq")
                ).all()
        except SQLAlchemyError as e:
            raise AuditSinkError(f"Failed to read audit records: {e}") from e
        for row in rows:
            yield json.loads(row[0])
