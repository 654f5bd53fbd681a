"""
Schema Convergence Engine — introspect, diff, apply.

Reads the declarative schema from blockos.schema and converges any SQLite
database to match.  Two entry points:

  converge(conn)     — For existing DBs: adds missing tables/columns/indexes.
  create_fresh(conn) — For new/test DBs: drops everything and creates clean.

The engine never drops tables or columns on an existing DB.
"""

import logging
import re
import sqlite3

from blockos import safe_sql, schema

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────
# SQLite ALTER TABLE column-safety
# ────────────────────────────────────────────────────────────

# Clauses that are valid in CREATE TABLE but not in ALTER TABLE ADD COLUMN
_STRIP_PATTERNS = [
    re.compile(r"\bPRIMARY\s+KEY\b", re.IGNORECASE),
    re.compile(r"\bAUTOINCREMENT\b", re.IGNORECASE),
    re.compile(r"\bUNIQUE\b", re.IGNORECASE),
    re.compile(r"\bREFERENCES\s+\w+\s*\([^)]*\)(\s+ON\s+DELETE\s+\w+)?", re.IGNORECASE),
    re.compile(r"\bCHECK\s*\([^)]*\)", re.IGNORECASE),
]

# ALTER TABLE ADD COLUMN only accepts constant defaults
_EXPR_DEFAULT = re.compile(r"\bDEFAULT\s*\(.*\)", re.IGNORECASE)


def make_alter_safe(col_def: str) -> str:
    """
    Transform a CREATE TABLE column definition into one safe for
    ALTER TABLE ADD COLUMN.

    SQLite restrictions on ALTER TABLE ADD COLUMN:
      - Cannot be PRIMARY KEY or AUTOINCREMENT
      - Cannot have UNIQUE constraint
      - Cannot have REFERENCES / CHECK
      - Cannot have a non-constant DEFAULT
      - NOT NULL requires a DEFAULT
    """
    safe = col_def
    for pattern in _STRIP_PATTERNS:
        safe = pattern.sub("", safe)
    safe = _EXPR_DEFAULT.sub("", safe)

    safe = re.sub(r"\s{2,}", " ", safe).strip()

    # NOT NULL without DEFAULT → add DEFAULT ''
    has_not_null = re.search(r"\bNOT\s+NULL\b", safe, re.IGNORECASE)
    has_default = re.search(r"\bDEFAULT\b", safe, re.IGNORECASE)
    if has_not_null and not has_default:
        safe = safe + " DEFAULT ''"

    return safe


# ────────────────────────────────────────────────────────────
# Introspection helpers
# ────────────────────────────────────────────────────────────


def _get_existing_tables(conn: sqlite3.Connection) -> set[str]:
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in cursor.fetchall()}


def _get_existing_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    try:
        cursor = conn.execute(safe_sql.pragma_table_info(table))
        return {row[1] for row in cursor.fetchall()}
    except sqlite3.OperationalError:
        return set()


def _get_existing_indexes(conn: sqlite3.Connection) -> set[str]:
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND name NOT LIKE 'sqlite_%'"
    )
    return {row[0] for row in cursor.fetchall()}


# ────────────────────────────────────────────────────────────
# DDL builders
# ────────────────────────────────────────────────────────────


def _build_create_sql(table_name: str, table_def: dict) -> str:
    """Build a CREATE TABLE IF NOT EXISTS statement from schema declaration."""
    parts = [f"    {col_name} {col_ddl}" for col_name, col_ddl in table_def["columns"]]
    body = ",\n".join(parts)
    return f"CREATE TABLE IF NOT EXISTS [{table_name}] (\n{body}\n)"


def _build_index_sql(idx: tuple, unique: bool = False) -> str:
    idx_name, idx_table, idx_cols, idx_where = idx
    kind = "UNIQUE INDEX" if unique else "INDEX"
    where_clause = f" WHERE {idx_where}" if idx_where else ""
    return f"CREATE {kind} IF NOT EXISTS [{idx_name}] ON [{idx_table}]({idx_cols}){where_clause}"


def _declared_indexes() -> list[tuple[tuple, bool]]:
    return [(idx, False) for idx in schema.INDEXES] + [
        (idx, True) for idx in schema.UNIQUE_INDEXES
    ]


# ────────────────────────────────────────────────────────────
# Apply
# ────────────────────────────────────────────────────────────


def _new_results() -> dict:
    return {"tables_created": [], "columns_added": [], "indexes_created": [], "errors": []}


def _apply(conn: sqlite3.Connection, sql: str, label: str, results: dict) -> bool:
    """
    Run one DDL statement. Failures are collected in results["errors"]
    instead of aborting the rest of the convergence.
    """
    try:
        conn.execute(sql)
        return True
    except sqlite3.IntegrityError as e:
        # Existing duplicate rows keep a unique backstop from being built
        results["errors"].append(f"{label}: {e}")
        logger.error("schema_engine: %s: %s", label, e)
    except sqlite3.OperationalError as e:
        results["errors"].append(f"{label}: {e}")
        logger.warning("schema_engine: %s: %s", label, e)
    return False


def _create_indexes(conn: sqlite3.Connection, results: dict, skip: set[str]) -> None:
    tables = _get_existing_tables(conn)
    for idx, unique in _declared_indexes():
        name, table = idx[0], idx[1]
        if name in skip or table not in tables:
            continue
        if _apply(conn, _build_index_sql(idx, unique=unique), f"CREATE INDEX {name}", results):
            results["indexes_created"].append(name)


def _finish(conn: sqlite3.Connection, results: dict) -> dict:
    conn.execute(safe_sql.pragma_user_version_set(schema.SCHEMA_VERSION))
    results["schema_version"] = schema.SCHEMA_VERSION
    return results


def converge(conn: sqlite3.Connection) -> dict:
    """
    Bring an existing database up to schema.TABLES without losing data.

    Missing tables are created, missing columns added with ALTER-safe DDL,
    missing indexes (plain and unique) created, then user_version is set.
    Returns a results dict for logging.
    """
    results = _new_results()
    existing_tables = _get_existing_tables(conn)

    for table_name, table_def in schema.TABLES.items():
        if table_name not in existing_tables:
            if _apply(conn, _build_create_sql(table_name, table_def), f"CREATE TABLE {table_name}", results):
                results["tables_created"].append(table_name)
                logger.info("schema_engine: created table %s", table_name)
            continue

        existing_cols = _get_existing_columns(conn, table_name)
        for col_name, col_ddl in table_def["columns"]:
            if col_name in existing_cols:
                continue
            col_ref = f"{table_name}.{col_name}"
            safe_ddl = make_alter_safe(col_ddl)
            sql = f"ALTER TABLE [{table_name}] ADD COLUMN [{col_name}] {safe_ddl}"  # nosec B608
            if _apply(conn, sql, f"ADD COLUMN {col_ref}", results):
                results["columns_added"].append(col_ref)
                logger.info("schema_engine: added column %s", col_ref)

    _create_indexes(conn, results, skip=_get_existing_indexes(conn))
    return _finish(conn, results)


def create_fresh(conn: sqlite3.Connection) -> dict:
    """
    Drop every table and build the declared schema from nothing.

    Only for brand-new databases and test fixtures.
    """
    results = _new_results()

    for name in _get_existing_tables(conn):
        if not name.startswith("sqlite_"):
            conn.execute(f"DROP TABLE IF EXISTS [{name}]")  # nosec B608

    for table_name, table_def in schema.TABLES.items():
        if _apply(conn, _build_create_sql(table_name, table_def), f"CREATE TABLE {table_name}", results):
            results["tables_created"].append(table_name)

    _create_indexes(conn, results, skip=set())
    return _finish(conn, results)
