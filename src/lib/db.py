"""
Record store for portfolio-recon.

A single SQLite file holds the four keyed collections the engine persists:
transactions (keyed by account and id), tax lots with their sale and
adjustment logs, per-security metadata and confirmed symbol mappings.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event, func, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from src.lib.config import DB_PATH_ENV_VAR, DEFAULT_DATA_DIR_NAME
from src.lib.errors import ConfigurationError

Base = declarative_base()

DEFAULT_DB_PATH = Path.home() / DEFAULT_DATA_DIR_NAME / "data.db"

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker[Session]] = None


def resolve_db_path(db_path: Optional[Path] = None) -> Path:
    """
    Explicit path, then PORTFOLIO_RECON_DB_PATH, then ~/.portfolio-recon/data.db.

    Raises:
        ConfigurationError: If the variable is blank or the path is a directory
    """
    if db_path is None:
        env_db_path = os.environ.get(DB_PATH_ENV_VAR, "")
        if env_db_path and not env_db_path.strip():
            raise ConfigurationError(f"{DB_PATH_ENV_VAR} is set but blank")
        db_path = Path(env_db_path) if env_db_path else DEFAULT_DB_PATH
    if db_path.is_dir():
        raise ConfigurationError(f"Database path {db_path} is a directory, not a file")
    return db_path


def _configure_sqlite(dbapi_conn: Any, connection_record: Any) -> None:
    # Lot sales and adjustments cascade from their lot
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Optional[Path] = None) -> Engine:
    """
    Get or create the SQLAlchemy engine.

    The first call fixes the database location for the process; later calls
    return the same engine until ``reset_engine()``.
    """
    global _engine

    if _engine is None:
        path = resolve_db_path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        _engine = create_engine(
            f"sqlite:///{path}",
            echo=False,
            # Repository coroutines may be driven from different threads
            connect_args={"check_same_thread": False},
        )
        event.listen(_engine, "connect", _configure_sqlite)

    return _engine


def reset_engine() -> None:
    """Dispose the engine and session factory (tests switch databases with this)."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionLocal = None


def get_session() -> Session:
    """
    Get a new database session.

    Sessions keep loaded objects usable after commit: the ledger mutates
    detached lots and saves them back with ``merge``.
    """
    global _SessionLocal

    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine()
        )

    return _SessionLocal()


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic commit/rollback.

    Example:
        with db_session() as session:
            session.merge(lot)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _register_models() -> None:
    from src.models import (  # noqa: F401
        Lot,
        LotAdjustment,
        LotSale,
        SecurityMetadata,
        SymbolMapping,
        TransactionRecord,
    )


def init_db(db_path: Optional[Path] = None) -> None:
    """Create every table of the record store that does not exist yet."""
    engine = get_engine(db_path)
    _register_models()
    Base.metadata.create_all(bind=engine)


def reset_db(db_path: Optional[Path] = None) -> None:
    """
    Drop all tables and recreate them. **WARNING: This deletes all data!**
    """
    engine = get_engine(db_path)
    _register_models()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def db_exists(db_path: Optional[Path] = None) -> bool:
    """Check if the database file exists."""
    return resolve_db_path(db_path).exists()


def record_counts() -> dict[str, int]:
    """
    Row count per table of the record store.

    Tables not created yet are reported as 0.
    """
    _register_models()
    existing = set(inspect(get_engine()).get_table_names())

    counts: dict[str, int] = {}
    with db_session() as session:
        for name, table in sorted(Base.metadata.tables.items()):
            if name not in existing:
                counts[name] = 0
                continue
            counts[name] = session.execute(select(func.count()).select_from(table)).scalar_one()
    return counts
