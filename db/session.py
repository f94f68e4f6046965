# WORKFLOW: Database engines, table reads and all-or-nothing table replacement.
# Used by: Pipeline orchestrator, API health/summary endpoints, CLI, tests
# Functions:
# 1. get_engine() - One cached engine per database URL
# 2. init_db() - Create the run-level tables declared in db.models
# 3. table_exists() / read_table() / read_table_or_empty() - Raw table access
# 4. replace_tables() - Write DataFrames to staging tables, then swap them in one transaction
# 5. replace_model_rows() - Replace the contents of a run-level table
# 6. drop_tables() / table_row_counts() - Housekeeping and summaries
# 7. check_db_connection() - Health check for database connectivity
#
# Table replacement:
# Write: DataFrame -> <name>__staging (to_sql) -> BEGIN -> DROP <name> -> RENAME staging -> COMMIT
# Failure: drop every <name>__staging of the batch; the previous <name> stays untouched
# Cancellation (write timeout) is checked between staging writes and before the swap

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
from sqlalchemy import create_engine, delete, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeEngine

from core.exceptions import MissingInputError, TableWriteCancelledError

logger = logging.getLogger(__name__)

STAGING_SUFFIX = "__staging"

# Engines are cached per URL so in-memory databases keep their content
_engines: Dict[str, Engine] = {}


def get_engine(database_url: str, echo: bool = False) -> Engine:
    """Get database engine for a URL (lazy-loaded)."""
    engine = _engines.get(database_url)
    if engine is None:
        if database_url.startswith("sqlite") and (":memory:" in database_url or database_url == "sqlite://"):
            engine = create_engine(
                database_url,
                poolclass=StaticPool,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        elif database_url.startswith("sqlite"):
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(database_url, pool_pre_ping=True, echo=echo)
        _engines[database_url] = engine
    return engine


def dispose_engines() -> None:
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()


def init_db(engine: Engine) -> None:
    """
    Initialize run-level tables.
    """
    from db.models import Base

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def _quote(engine: Engine, name: str) -> str:
    return engine.dialect.identifier_preparer.quote(name)


def table_exists(engine: Engine, name: str) -> bool:
    return inspect(engine).has_table(name)


def list_tables(engine: Engine) -> List[str]:
    return sorted(inspect(engine).get_table_names())


def read_table(engine: Engine, name: str, year: Optional[int] = None) -> pd.DataFrame:
    """
    Read a whole table.

    Raises:
        MissingInputError: if the table does not exist
    """
    if not table_exists(engine, name):
        raise MissingInputError(name, year)
    with engine.connect() as conn:
        return pd.read_sql(text(f"SELECT * FROM {_quote(engine, name)}"), conn)


def read_table_or_empty(engine: Engine, name: str, columns: List[str], year: Optional[int] = None) -> pd.DataFrame:
    """Read a table, or return an empty frame with ``columns`` and log a warning when it is absent."""
    try:
        return read_table(engine, name, year)
    except MissingInputError as e:
        logger.warning(f"{e.message}; continuing with an empty table")
        return pd.DataFrame({column: pd.Series(dtype=object) for column in columns})


def drop_tables(engine: Engine, names: Iterable[str]) -> None:
    with engine.begin() as conn:
        for name in names:
            conn.execute(text(f"DROP TABLE IF EXISTS {_quote(engine, name)}"))


def replace_tables(
    engine: Engine,
    tables: Dict[str, Tuple[pd.DataFrame, Dict[str, TypeEngine]]],
    cancelled: Optional[threading.Event] = None,
) -> None:
    """
    Replace several tables at once.

    Each DataFrame is first written to ``<name>__staging``. Only when every
    staging table has been written are the targets dropped and the staging
    tables renamed, inside one transaction. On any failure the staging tables
    are dropped and the existing targets are left as they were.

    Args:
        engine: Target database engine
        tables: Table name -> (DataFrame, to_sql dtype mapping)
        cancelled: Checked before every staging write and before the swap;
            once set, the replacement stops with TableWriteCancelledError
    """
    staging = {name: f"{name}{STAGING_SUFFIX}" for name in tables}

    def check_cancelled():
        if cancelled is not None and cancelled.is_set():
            raise TableWriteCancelledError(sorted(tables))

    try:
        for name, (frame, dtypes) in tables.items():
            check_cancelled()
            columns = list(dtypes) if dtypes else list(frame.columns)
            frame = frame.reindex(columns=columns)
            with engine.begin() as conn:
                conn.execute(text(f"DROP TABLE IF EXISTS {_quote(engine, staging[name])}"))
                frame.to_sql(staging[name], conn, index=False, dtype=dtypes or None)

        with engine.begin() as conn:
            check_cancelled()
            for name, staged in staging.items():
                conn.execute(text(f"DROP TABLE IF EXISTS {_quote(engine, name)}"))
                conn.execute(text(f"ALTER TABLE {_quote(engine, staged)} RENAME TO {_quote(engine, name)}"))
    except Exception as e:
        logger.error(f"Table replacement failed for {sorted(tables)}: {e}")
        drop_tables(engine, staging.values())
        raise

    logger.info(f"Replaced tables: {', '.join(sorted(tables))}")


def replace_model_rows(engine: Engine, model, frame: pd.DataFrame) -> None:
    """Replace all rows of a run-level table declared in db.models."""
    table = model.__table__
    columns = [column.name for column in table.columns]
    records = frame.reindex(columns=columns)
    records = records.astype(object).where(records.notna(), None)
    try:
        with engine.begin() as conn:
            conn.execute(delete(table))
            if not records.empty:
                conn.execute(table.insert(), records.to_dict(orient="records"))
    except Exception as e:
        logger.error(f"Failed to replace rows of {table.name}: {e}")
        raise
    logger.info(f"Wrote {len(records)} rows to {table.name}")


def table_row_counts(engine: Engine, names: Iterable[str]) -> Dict[str, Optional[int]]:
    """Row count per table, None for tables that do not exist."""
    counts = {}
    with engine.connect() as conn:
        existing = set(inspect(conn).get_table_names())
        for name in names:
            if name not in existing:
                counts[name] = None
                continue
            counts[name] = conn.execute(text(f"SELECT COUNT(*) FROM {_quote(engine, name)}")).scalar()
    return counts


def check_db_connection(database_url: str) -> bool:
    """
    Check if database connection is working.
    """
    try:
        engine = get_engine(database_url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
