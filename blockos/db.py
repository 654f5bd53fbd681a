"""
Centralized Database Access for BlockOS.

Single source of truth for:
- DB path resolution
- Connection factory
- Schema convergence (delegated to schema_engine)

ALL code must use this module for DB access. No direct sqlite3.connect() elsewhere.
"""

import logging
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from blockos import paths, safe_sql, schema, schema_engine

logger = logging.getLogger(__name__)


# ============================================================
# DB PATH RESOLUTION
# ============================================================


def get_db_path() -> Path:
    """
    Get the canonical DB path.

    Resolution order:
    1. BLOCKOS_DB env var (explicit override)
    2. ~/.blockos/data/blockos.db (default via paths.db_path())
    """
    return paths.db_path()


def get_db_path_str() -> str:
    return str(get_db_path())


# ============================================================
# CONNECTION FACTORY
# ============================================================


def connect(db_path: str | Path | None = None) -> sqlite3.Connection:
    """Open a connection with row factory and FK enforcement."""
    path = Path(db_path) if db_path else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_connection(db_path: str | Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Get a database connection with proper setup.

    Usage:
        with get_connection() as conn:
            conn.execute(...)
    """
    conn = connect(db_path)
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


# ============================================================
# SCHEMA INTROSPECTION
# ============================================================


def get_table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    """Get existing column names for a table."""
    sql = safe_sql.pragma_table_info(table)
    try:
        cursor = conn.execute(sql)
        return {row[1] for row in cursor.fetchall()}
    except sqlite3.OperationalError:
        return set()


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
    return cursor.fetchone() is not None


def get_schema_version(conn: sqlite3.Connection) -> int:
    cursor = conn.execute("PRAGMA user_version")
    return cursor.fetchone()[0]


# ============================================================
# SCHEMA CONVERGENCE — delegates to schema_engine
# ============================================================

_converged: set[str] = set()
_converge_lock = threading.Lock()


def run_migrations(conn: sqlite3.Connection) -> dict:
    """
    Converge the database schema to match blockos.schema declarations.

    Returns a results dict for logging.
    """
    previous_version = get_schema_version(conn)
    results = schema_engine.converge(conn)
    results["previous_version"] = previous_version
    return results


def ensure_migrations(db_path: str | Path | None = None) -> dict:
    """
    Converge the schema once per DB path per process. Safe to call repeatedly.
    """
    path_str = str(db_path or get_db_path())

    with _converge_lock:
        if path_str in _converged:
            return {"status": "skipped"}

        logger.info("Converging schema for %s (target version %s)", path_str, schema.SCHEMA_VERSION)

        with get_connection(path_str) as conn:
            results = run_migrations(conn)

        if results.get("tables_created"):
            logger.info("Tables created: %s", results["tables_created"])
        if results.get("columns_added"):
            logger.info("Columns added: %s", results["columns_added"])
        if results.get("errors"):
            logger.warning("Convergence errors: %s", results["errors"])

        _converged.add(path_str)
        return results


def get_db_info(db_path: str | Path | None = None) -> dict:
    """Path, size, schema version and table columns, for diagnostics."""
    path = Path(db_path) if db_path else get_db_path()
    info = {
        "resolved_db_path": str(path),
        "exists": path.exists(),
        "file_size": None,
        "sqlite_version": sqlite3.sqlite_version,
        "user_version": None,
        "target_schema_version": schema.SCHEMA_VERSION,
        "tables": {},
    }

    if path.exists():
        info["file_size"] = path.stat().st_size
        with get_connection(path) as conn:
            info["user_version"] = get_schema_version(conn)
            for table in schema.TABLES:
                if table_exists(conn, table):
                    info["tables"][table] = sorted(get_table_columns(conn, table))
                else:
                    info["tables"][table] = None

    return info
