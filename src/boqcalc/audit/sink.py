"""Audit sink implementations for calculation audit records.

Provides append-only sinks for audit record persistence.
All sinks implement the AuditSink protocol.

Design requirements:
- Append-only: never truncate/overwrite
- Fail closed: any IO failure raises AuditSinkError
- Deterministic: consistent JSON serialization (sorted keys, no extra whitespace)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "BOQCALC_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/calculation_audit.jsonl"


class AuditSinkError(Exception):
    """Raised when audit record emission or readback fails."""

    pass


@runtime_checkable
class AuditSink(Protocol):
    """Protocol for audit sinks.

    All implementations must be append-only and fail closed on errors.
    """

    def emit(self, event: dict[str, Any]) -> None:
        """Append one audit record.

        Raises:
            AuditSinkError: If emission fails for any reason
        """
        ...


@runtime_checkable
class ReadableAuditSink(AuditSink, Protocol):
    """Audit sink that can replay its records for compliance reporting."""

    def iter_events(self) -> Iterator[dict[str, Any]]: ...


@runtime_checkable
class TransactionalAuditSink(AuditSink, Protocol):
    """Audit sink that can write inside a caller's database transaction."""

    @property
    def engine(self) -> Engine: ...

    def emit_in_tx(self, conn: Connection, event: dict[str, Any]) -> None: ...


def serialize_event(event: dict[str, Any]) -> str:
    """Serialize an event as one canonical JSON line (without newline).

    Raises:
        AuditSinkError: If the event is not JSON-serializable.
    """
    try:
        return json.dumps(event, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise AuditSinkError(f"Failed to serialize audit record: {e}") from e


class JsonlFileAuditSink:
    """Append-only JSONL file sink for audit records.

    Configuration:
    - File path from env BOQCALC_AUDIT_LOG_PATH (default: ./var/audit/calculation_audit.jsonl)
    - Creates parent directories if missing
    - Appends one line per record; never truncates existing content
    """

    def __init__(self, file_path: str | Path | None = None) -> None:
        """Initialize the JSONL file sink.

        Args:
            file_path: Override path for the audit log file.
                       If None, reads from BOQCALC_AUDIT_LOG_PATH env var,
                       falling back to DEFAULT_AUDIT_LOG_PATH.
        """
        if file_path is not None:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path(os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH)
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        """Return the configured file path."""
        return self._file_path

    def _ensure_parent_directory(self) -> None:
        parent = self._file_path.parent
        if not parent.exists():
            try:
                parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise AuditSinkError(f"Failed to create audit log directory {parent}: {e}") from e

    def emit(self, event: dict[str, Any]) -> None:
        """Append an audit record to the JSONL file.

        Raises:
            AuditSinkError: If serialization or file write fails
        """
        line = serialize_event(event) + "\n"
        self._ensure_parent_directory()

        with self._lock:
            try:
                with open(self._file_path, mode="a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                raise AuditSinkError(
                    f"Failed to write audit record to {self._file_path}: {e}"
                ) from e

    def iter_events(self) -> Iterator[dict[str, Any]]:
        """Yield stored records in append order.

        Raises:
            AuditSinkError: If the file cannot be read or a line is corrupt.
        """
        if not self._file_path.exists():
            return
        try:
            with open(self._file_path, encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        yield json.loads(line)
                    except json.JSONDecodeError as e:
                        raise AuditSinkError(
                            f"Corrupt audit record at {self._file_path}:{line_no}: {e}"
                        ) from e
        except OSError as e:
            raise AuditSinkError(f"Failed to read audit log {self._file_path}: {e}") from e


class InMemoryAuditSink:
    """In-memory audit sink for testing (no disk writes).

    Stores emitted records in a list for later inspection.
    Thread-safe for concurrent test usage.
    """

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        """Append an audit record to memory.

        Serializes and deserializes to ensure JSON compatibility.
        """
        line = serialize_event(event)
        with self._lock:
            self._events.append(json.loads(line))

    def iter_events(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            snapshot = list(self._events)
        return iter(snapshot)

    @property
    def events(self) -> list[dict[str, Any]]:
        """Return all emitted records."""
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        """Clear all stored records. For testing only."""
        with self._lock:
            self._events.clear()


def get_audit_sink(audit_log_path: str | Path | None = None) -> AuditSink:
    """Factory function to get the configured audit sink.

    Args:
        audit_log_path: JSONL path override, used when no database is configured.

    Returns:
        SqlAuditSink when BOQCALC_DATABASE_URL is set, else JsonlFileAuditSink.
    """
    from boqcalc.persistence.db import is_database_configured

    if is_database_configured():
        from boqcalc.audit.sql_sink import SqlAuditSink
        from boqcalc.persistence.db import get_engine

        return SqlAuditSink(get_engine())
    return JsonlFileAuditSink(audit_log_path)
