"""Table definitions for quantities and calculation audit records.

Audit records are insert-only; the application never issues UPDATE or
DELETE against calculation_audit_records.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_DDL = (
    """
    CREATE TABLE IF NOT EXISTS quantities (
        quantity_id VARCHAR(64) PRIMARY KEY,
        element_id VARCHAR(255) NOT NULL,
        assembly_id VARCHAR(255) NOT NULL,
        value DOUBLE PRECISION NOT NULL,
        unit VARCHAR(32) NOT NULL,
        formula_hash VARCHAR(64) NOT NULL,
        reproducibility_hash VARCHAR(64) NOT NULL,
        calculation TEXT NOT NULL,
        created_at VARCHAR(64) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_quantities_element_id ON quantities (element_id)",
    """
    CREATE TABLE IF NOT EXISTS calculation_audit_records (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        record_id VARCHAR(64) NOT NULL UNIQUE,
        element_id VARCHAR(255),
        assembly_id VARCHAR(255),
        outcome VARCHAR(16) NOT NULL,
        started_at VARCHAR(64) NOT NULL,
        record TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_calculation_audit_records_element_id
        ON calculation_audit_records (element_id)
    """,
)


def ensure_schema(engine: Engine) -> None:
    """Create tables and indexes if they do not exist."""
    with engine.begin() as conn:
        for statement in _DDL:
            sql = statement
            if engine.dialect.name == "postgresql":
                sql = sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "BIGSERIAL PRIMARY KEY")
            conn.execute(text(sql))
    logger.debug("Ensured quantity and audit schema on %s", engine.dialect.name)
