"""Audit module - append-only calculation audit records."""

from boqcalc.audit.recorder import AuditRecorder
from boqcalc.audit.sink import (
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
    ReadableAuditSink,
    TransactionalAuditSink,
)

__all__ = [
    "AuditRecorder",
    "AuditSink",
    "AuditSinkError",
    "InMemoryAuditSink",
    "JsonlFileAuditSink",
    "ReadableAuditSink",
    "TransactionalAuditSink",
]
