"""Database health probe for /health/db."""

import logging
import os

from sqlalchemy import inspect

from config import DatabaseSettings, get_settings
from db.connection import REQUIRED_TABLES, get_engine
from missionfactory.services._types import DbInfoDict

logger: logging.Logger = logging.getLogger(__name__)


def _backend(db: DatabaseSettings) -> tuple[str, str]:
    if db._use_postgres():
        return "postgres", db._redacted_postgres_dsn()
    return "sqlite", db._resolved_sqlite_path().as_posix()


def _table_names() -> set[str]:
    try:
        return set(inspect(get_engine()).get_table_names())
    except Exception as e:
        logger.warning("Could not inspect mission store: %s", e)
        return set()


def get_db_info() -> DbInfoDict:
    """Backend, location and schema state of the mission store. Never raises."""
    try:
        backend_type, location = _backend(get_settings().database)
    except Exception as e:
        logger.exception("Health DB check failed: %s", e)
        return DbInfoDict(
            backend_type="unknown",
            database_url_or_path=None,
            tables_present=[],
            tables_missing=list(REQUIRED_TABLES),
            schema_initialized=False,
            error=str(e),
            pid=os.getpid(),
        )

    present: set[str] = _table_names()
    missing: list[str] = [t for t in REQUIRED_TABLES if t not in present]
    return DbInfoDict(
        backend_type=backend_type,
        database_url_or_path=location,
        tables_present=sorted(present),
        tables_missing=missing,
        schema_initialized=not missing,
        pid=os.getpid(),
    )
