"""Audit recorder: append-only log of calculation attempts.

One CalculationAuditRecord per engine invocation, success or failure,
linked to its element and assembly.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from boqcalc.audit.sink import (
    AuditSink,
    AuditSinkError,
    ReadableAuditSink,
    TransactionalAuditSink,
)
from boqcalc.models.audit_record import CalculationAuditRecord

if TYPE_CHECKING:
    from sqlalchemy import Connection

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Writes audit records to an append-only sink.

    The recorder exposes no update or delete operations; records are only
    ever appended.
    """

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    @property
    def sink(self) -> AuditSink:
        return self._sink

    def record(self, record: CalculationAuditRecord, conn: Connection | None = None) -> str:
        """Append one audit record.

        Args:
            record: The immutable record of one engine invocation.
            conn: Open transaction to join when the sink supports it and
                writes to the same database; the record then commits or
                rolls back with the caller's writes.

        Returns:
            The record_id of the appended record.

        Raises:
            AuditSinkError: If the sink fails; the record is not written.
        """
        event = record.model_dump(mode="json")
        if (
            conn is not None
            and isinstance(self._sink, TransactionalAuditSink)
            and self._sink.engine.url == conn.engine.url
        ):
            self._sink.emit_in_tx(conn, event)
        else:
            self._sink.emit(event)
        logger.debug(
            "Recorded %s audit record %s for element=%s assembly=%s",
            record.outcome.value,
            record.record_id,
            record.element_id,
            record.assembly_id,
        )
        return record.record_id

    def history(
        self, element_id: str, assembly_id: str | None = None
    ) -> list[CalculationAuditRecord]:
        """Return records for an element (optionally one assembly) in append order.

        Raises:
            AuditSinkError: If the sink cannot replay its records.
        """
        if not isinstance(self._sink, ReadableAuditSink):
            raise AuditSinkError(f"{type(self._sink).__name__} does not support readback")

        records = []
        for event in self._sink.iter_events():
            if event.get("element_id") != element_id:
                continue
            if assembly_id is not None and event.get("assembly_id") != assembly_id:
                continue
            records.append(CalculationAuditRecord.model_validate(event))
        return records
