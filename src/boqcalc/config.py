"""Environment-driven settings, read once at process start.

Environment Variables:
    BOQCALC_ENGINE_VERSION: Version string stamped on quantities and audit records
    BOQCALC_AUDIT_LOG_PATH: JSONL audit log path when no database is configured
    BOQCALC_DATABASE_URL: SQLAlchemy URL for quantity and audit storage
    BOQCALC_LOG_LEVEL: Logging level name (default: INFO)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from boqcalc import __version__

ENGINE_VERSION_ENV = "BOQCALC_ENGINE_VERSION"
AUDIT_LOG_PATH_ENV = "BOQCALC_AUDIT_LOG_PATH"
DATABASE_URL_ENV = "BOQCALC_DATABASE_URL"
LOG_LEVEL_ENV = "BOQCALC_LOG_LEVEL"


class ConfigError(Exception):
    """Raised when an environment setting is invalid."""

    pass


@dataclass(frozen=True)
class Settings:
    """Process settings.

    Attributes:
        engine_version: Threaded explicitly into CalculationEngine.
        audit_log_path: JSONL audit path, None for the sink default.
        database_url: SQLAlchemy URL, None for file/in-memory storage.
        log_level: Numeric logging level.
    """

    engine_version: str = __version__
    audit_log_path: str | None = None
    database_url: str | None = None
    log_level: int = logging.INFO

    @classmethod
    def from_env(cls) -> Settings:
        """Read settings from BOQCALC_* environment variables.

        Raises:
            ConfigError: If BOQCALC_LOG_LEVEL is not a known level name.
        """
        level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ConfigError(f"Unknown log level in {LOG_LEVEL_ENV}: '{level_name}'")

        return cls(
            engine_version=os.environ.get(ENGINE_VERSION_ENV, "").strip() or __version__,
            audit_log_path=os.environ.get(AUDIT_LOG_PATH_ENV) or None,
            database_url=os.environ.get(DATABASE_URL_ENV) or None,
            log_level=level,
        )


def configure_logging(settings: Settings) -> None:
    """Configure root logging for command-line use."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
