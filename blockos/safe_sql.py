"""
SQL builders for the generic StateStore operations.

SQLite cannot bind identifiers, so table and column names are interpolated.
Every name goes through _identifier() first, and DML only targets tables
declared in blockos.schema. Values always travel as ? parameters.
"""

# ruff: noqa: S608

import re

from blockos import schema

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def _table(name: str) -> str:
    """A declared table name."""
    if _identifier(name) not in schema.TABLES:
        raise ValueError(f"Unknown table: {name!r}")
    return name


def _column_list(columns: list[str]) -> list[str]:
    if not columns:
        raise ValueError("No columns given")
    return [_identifier(col) for col in columns]


# ────────────────────────────────────────────────────────────
# PRAGMA
# ────────────────────────────────────────────────────────────


def pragma_table_info(table: str) -> str:
    """Introspection works on any well-formed name, declared or legacy."""
    return f"PRAGMA table_info([{_identifier(table)}])"


def pragma_user_version_set(version: int) -> str:
    if not isinstance(version, int) or version < 0:
        raise ValueError(f"Invalid schema version: {version!r}")
    return f"PRAGMA user_version = {version}"


# ────────────────────────────────────────────────────────────
# DML
# ────────────────────────────────────────────────────────────


def select(table: str, where: str | None = None) -> str:
    """*where* is a clause without the keyword and binds values with ?."""
    sql = f"SELECT * FROM {_table(table)}"
    return f"{sql} WHERE {where}" if where else sql


def select_count(table: str, where: str | None = None) -> str:
    sql = f"SELECT COUNT(*) AS c FROM {_table(table)}"
    return f"{sql} WHERE {where}" if where else sql


def insert(table: str, columns: list[str]) -> str:
    """Plain INSERT; a duplicate key surfaces as IntegrityError."""
    cols = _column_list(columns)
    placeholders = ", ".join("?" for _ in cols)
    return f"INSERT INTO {_table(table)} ({', '.join(cols)}) VALUES ({placeholders})"


def update(table: str, set_columns: list[str], where: str = "id = ?") -> str:
    sets = ", ".join(f"{col} = ?" for col in _column_list(set_columns))
    return f"UPDATE {_table(table)} SET {sets} WHERE {where}"


def delete(table: str, where: str = "id = ?") -> str:
    return f"DELETE FROM {_table(table)} WHERE {where}"
