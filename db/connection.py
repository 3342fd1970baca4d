"""Engine and session lifecycle for the mission store.

One engine per process. Every unit of work (HTTP request, CLI command,
worker pass over one mission) gets its own session that commits on success
and rolls back on any exception.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseSettings, get_settings
from db.models import Base, ChangeEntry, Mission, PlayerRecord, RegistryState

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

REQUIRED_TABLES: tuple[str, ...] = tuple(
    model.__tablename__ for model in (Mission, PlayerRecord, ChangeEntry, RegistryState)
)

_SQLITE_PRAGMAS: tuple[str, ...] = (
    "PRAGMA foreign_keys=ON",
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=30000",
    "PRAGMA synchronous=NORMAL",
)


def _engine_options(db: DatabaseSettings, echo: bool) -> dict[str, Any]:
    opts: dict[str, Any] = {"echo": echo}
    if db._use_postgres():
        opts.update(
            pool_size=db.pool_size,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=True,
        )
    return opts


def _apply_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    cur = dbapi_conn.cursor()
    for pragma in _SQLITE_PRAGMAS:
        cur.execute(pragma)
    cur.close()


def get_engine() -> Engine:
    """Get or create the shared database engine."""
    global _engine

    if _engine is None:
        settings = get_settings()
        db: DatabaseSettings = settings.database
        _engine = create_engine(db.url, **_engine_options(db, settings.debug))
        if not db._use_postgres():
            event.listen(_engine, "connect", _apply_sqlite_pragmas)
        logger.info("Mission store: %s", db.db_info_for_logging())

    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory

    if _session_factory is None:
        # Services flush explicitly.
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _session_factory


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Context-managed session with commit/rollback."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, committed when the route returns."""
    with get_session() as session:
        yield session


def init_database(engine: Engine | None = None) -> list[str]:
    """Create all tables. Idempotent. Returns the tables that were created."""
    engine = engine or get_engine()
    before: set[str] = set(inspect(engine).get_table_names())
    Base.metadata.create_all(engine)
    after: set[str] = set(inspect(engine).get_table_names())
    created: list[str] = sorted(after - before)

    if created:
        logger.info("Schema init: created tables %s", created)
    else:
        logger.info("Schema init: all tables present")

    missing: list[str] = [t for t in REQUIRED_TABLES if t not in after]
    if missing:
        raise RuntimeError(f"Schema init failed: missing tables {missing}")
    return created
