"""
State Store - the single persistence gateway for BlockOS.
All stores (blocks, sessions, routines) read from and write to it.
"""

import json
import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from blockos import db as db_module
from blockos import safe_sql
from blockos.errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)


def _encode(value: Any) -> Any:
    return json.dumps(value) if isinstance(value, dict | list) else value


class StateStore:
    """
    Central state store. SQLite for persistence.

    Every sqlite failure leaves here as a BlockOSError:
    IntegrityError → ConflictError, anything else → PersistenceError.
    """

    def __init__(self, db_path: str = None):
        self.db_path = str(db_path or db_module.get_db_path_str())

        logger.info("StateStore initializing with DB: %s", self.db_path)
        try:
            db_module.ensure_migrations(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"schema convergence failed: {e}") from e

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        One connection, one transaction. Commits on success, rolls back
        everything on any error.
        """
        try:
            conn = db_module.connect(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open store: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ConflictError(str(e)) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ==================== CRUD Operations ====================

    def insert(self, table: str, data: dict) -> str:
        """Insert a row. Duplicate keys raise ConflictError. Returns ID."""
        sql = safe_sql.insert(table, list(data.keys()))
        with self.transaction() as conn:
            conn.execute(sql, [_encode(v) for v in data.values()])
        return data.get("id", "")

    def insert_many(self, table: str, items: list[dict]) -> int:
        """Insert multiple rows atomically: all rows or none. Returns count."""
        if not items:
            return 0

        columns = list(items[0].keys())
        sql = safe_sql.insert(table, columns)

        with self.transaction() as conn:
            for item in items:
                conn.execute(sql, [_encode(item.get(col)) for col in columns])

        return len(items)

    def get(self, table: str, id: str) -> dict | None:
        """Get a single row by ID."""
        sql = safe_sql.select(table, where="id = ?")
        with self.transaction() as conn:
            row = conn.execute(sql, [id]).fetchone()
            return dict(row) if row else None

    def update(self, table: str, id: str, data: dict, where: str = "id = ?", params: list = None) -> bool:
        """Update a row. Returns True if a row matched."""
        if not data:
            return False

        values = [_encode(v) for v in data.values()]
        values.append(id)
        values.extend(params or [])

        sql = safe_sql.update(table, list(data.keys()), where=where)
        with self.transaction() as conn:
            result = conn.execute(sql, values)
            return result.rowcount > 0

    def delete(self, table: str, id: str, where: str = "id = ?", params: list = None) -> bool:
        """Delete a row."""
        sql = safe_sql.delete(table, where=where)
        with self.transaction() as conn:
            result = conn.execute(sql, [id, *(params or [])])
            return result.rowcount > 0

    def query(self, sql: str, params: list = None) -> list[dict]:
        """Execute raw query. Returns list of dicts."""
        with self.transaction() as conn:
            rows = conn.execute(sql, params or []).fetchall()
            return [dict(row) for row in rows]

    def count(self, table: str, where: str = None, params: list = None) -> int:
        sql = safe_sql.select_count(table, where=where)
        with self.transaction() as conn:
            row = conn.execute(sql, params or []).fetchone()
            return row["c"] if row else 0

    # ==================== Sync State ====================

    def update_sync_state(
        self,
        source: str,
        success: bool,
        items: int = 0,
        error: str = None,
        at: datetime = None,
    ):
        """Record a sync attempt. last_success only moves on success."""
        now = (at or datetime.now(timezone.utc)).isoformat()
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO sync_state (source, last_sync, last_success, items_synced, error)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(source) DO UPDATE SET
                       last_sync = excluded.last_sync,
                       last_success = COALESCE(excluded.last_success, sync_state.last_success),
                       items_synced = excluded.items_synced,
                       error = excluded.error
                """,
                [source, now, now if success else None, items, error],
            )

    def get_sync_state(self, source: str) -> dict | None:
        rows = self.query("SELECT * FROM sync_state WHERE source = ?", [source])
        return rows[0] if rows else None


# Accessor
_store: StateStore | None = None


def get_store(db_path: str = None) -> StateStore:
    """Get the shared state store; a different db_path opens a new one."""
    global _store
    if _store is None or (db_path and str(db_path) != _store.db_path):
        _store = StateStore(db_path)
    return _store
