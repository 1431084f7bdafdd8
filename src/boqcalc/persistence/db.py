"""Database connectivity helpers for quantity and audit persistence.

Environment Variables:
    BOQCALC_DATABASE_URL: SQLAlchemy URL (PostgreSQL in production, SQLite for local runs)

Design Requirements:
    - Any SQLAlchemy-supported backend; SQL written with text()
    - One transaction per begin_conn() block
    - Fail closed on missing configuration
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)

BOQCALC_DATABASE_URL_ENV = "BOQCALC_DATABASE_URL"

_engine: Engine | None = None


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid."""

    pass


def is_database_configured() -> bool:
    """Check if a database URL is configured via environment."""
    return bool(os.environ.get(BOQCALC_DATABASE_URL_ENV))


def _normalize_url(url: str) -> str:
    """Map the legacy ``postgres://`` scheme to ``postgresql://``."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url() -> str:
    """Get the database URL from environment.

    Raises:
        DatabaseConfigError: If BOQCALC_DATABASE_URL is not set.
    """
    url = os.environ.get(BOQCALC_DATABASE_URL_ENV)
    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {BOQCALC_DATABASE_URL_ENV} environment variable."
        )
    return _normalize_url(url)


def create_db_engine(url: str) -> Engine:
    """Create an engine for ``url`` with backend-appropriate pool settings."""
    url = _normalize_url(url)
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, pool_size=5, max_overflow=10, pool_pre_ping=True)
    logger.info("Created database engine for %s", engine.url.get_backend_name())
    return engine


def get_engine() -> Engine:
    """Get or create the process-wide engine from BOQCALC_DATABASE_URL."""
    global _engine

    if _engine is None:
        _engine = create_db_engine(get_database_url())
    return _engine


def reset_engine() -> None:
    """Dispose the process-wide engine. For testing only."""
    global _engine

    if _engine is not None:
        _engine.dispose()
    _engine = None


@contextmanager
def begin_conn(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection inside a transaction, committed on clean exit.

    Args:
        engine: Engine to use; defaults to get_engine().
    """
    with (engine or get_engine()).begin() as conn:
        yield conn
