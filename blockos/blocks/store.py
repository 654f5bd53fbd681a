"""
Owner-scoped stores for blocks, sessions and routines.

Thin adapters over the StateStore. Every call is scoped by owner; a row that
belongs to another owner is treated as missing.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone

from blockos.blocks.models import (
    Block,
    Outcome,
    Routine,
    Session,
    TERMINAL_OUTCOMES,
    ensure_aware,
    new_id,
    to_iso,
)
from blockos.errors import InvalidTransitionError, NotFoundError, ValidationError
from blockos.state_store import StateStore, get_store

logger = logging.getLogger(__name__)

_TIME_FIELDS = ("planned_start", "planned_end")
_EDITABLE_BLOCK_FIELDS = {
    "title",
    "type",
    "planned_start",
    "planned_end",
    "stop_condition",
    "external_task_links",
    "is_quick_add",
}
_OPEN_OUTCOME_SQL = "(outcome IS NULL OR outcome = 'abandoned')"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _block_changes_to_row(changes: dict) -> dict:
    unknown = set(changes) - _EDITABLE_BLOCK_FIELDS
    if unknown:
        raise ValidationError(f"fields not editable: {sorted(unknown)}")
    row = {}
    for key, value in changes.items():
        if key in _TIME_FIELDS:
            row[key] = to_iso(value)
        elif key == "is_quick_add":
            row[key] = 1 if value else 0
        elif key == "type":
            row[key] = str(value)
        else:
            row[key] = value
    return row


class BlockStore:
    """Durable storage of blocks for one owner."""

    def __init__(self, owner: str, store: StateStore = None):
        self.owner = owner
        self.store = store or get_store()

    def get(self, block_id: str) -> Block:
        rows = self.store.query(
            "SELECT * FROM blocks WHERE id = ? AND owner = ?", [block_id, self.owner]
        )
        if not rows:
            raise NotFoundError(f"block {block_id} not found")
        return Block.from_row(rows[0])

    def query(
        self,
        start: datetime = None,
        end: datetime = None,
        ids: list[str] = None,
    ) -> list[Block]:
        """
        Blocks overlapping [start, end] (closed), optionally restricted to ids.
        Ordered by planned_start ascending.
        """
        where = ["owner = ?"]
        params: list = [self.owner]

        if start is not None and end is not None and end < start:
            raise ValidationError("query range end is before start")
        if end is not None:
            where.append("planned_start <= ?")
            params.append(to_iso(end))
        if start is not None:
            where.append("planned_end >= ?")
            params.append(to_iso(start))
        if ids is not None:
            if not ids:
                return []
            where.append(f"id IN ({','.join('?' for _ in ids)})")
            params.extend(ids)

        rows = self.store.query(
            f"SELECT * FROM blocks WHERE {' AND '.join(where)} ORDER BY planned_start, rowid",  # nosec B608
            params,
        )
        return [Block.from_row(row) for row in rows]

    def containing(self, instant: datetime) -> list[Block]:
        """Blocks whose [planned_start, planned_end] contains the instant."""
        return self.query(start=instant, end=instant)

    def routine_blocks(self, start: datetime, end: datetime) -> list[Block]:
        """Routine-generated blocks whose planned_start is in [start, end)."""
        rows = self.store.query(
            """SELECT * FROM blocks
               WHERE owner = ? AND routine_ref IS NOT NULL
               AND planned_start >= ? AND planned_start < ?
               ORDER BY planned_start""",
            [self.owner, to_iso(start), to_iso(end)],
        )
        return [Block.from_row(row) for row in rows]

    def find_by_external_ref(self, external_ref: str) -> Block | None:
        rows = self.store.query(
            "SELECT * FROM blocks WHERE owner = ? AND external_calendar_ref = ?",
            [self.owner, external_ref],
        )
        return Block.from_row(rows[0]) if rows else None

    def insert(self, block: Block) -> Block:
        """Insert one block. Duplicate calendar ref or routine/day → ConflictError."""
        self._check_owner(block)
        block.validate()
        self.store.insert("blocks", block.to_row())
        return block

    def insert_many(self, blocks: list[Block]) -> int:
        """All-or-nothing batch insert."""
        for block in blocks:
            self._check_owner(block)
            block.validate()
        return self.store.insert_many("blocks", [b.to_row() for b in blocks])

    def update(self, block_id: str, changes: dict) -> Block:
        """Apply a partial update and return the stored result."""
        current = self.get(block_id)
        start = changes.get("planned_start", current.planned_start)
        end = changes.get("planned_end", current.planned_end)
        if ensure_aware(end) <= ensure_aware(start):
            raise ValidationError(f"block {block_id}: planned_end must be after planned_start")

        row = _block_changes_to_row(changes)
        row["updated_at"] = _utcnow_iso()
        self.store.update("blocks", block_id, row, where="id = ? AND owner = ?", params=[self.owner])
        return self.get(block_id)

    def update_many(self, blocks: list[Block]) -> int:
        """
        Persist new planned_start/planned_end for every block in one
        transaction. Nothing is written unless every row is.
        """
        for block in blocks:
            self._check_owner(block)
            block.validate()

        now = _utcnow_iso()
        with self.store.transaction() as conn:
            for block in blocks:
                result = conn.execute(
                    """UPDATE blocks SET planned_start = ?, planned_end = ?, updated_at = ?
                       WHERE id = ? AND owner = ?""",
                    [to_iso(block.planned_start), to_iso(block.planned_end), now, block.id, self.owner],
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"block {block.id} not found")
        return len(blocks)

    def delete(self, block_id: str) -> None:
        """Delete a block; its sessions go with it."""
        deleted = self.store.delete("blocks", block_id, where="id = ? AND owner = ?", params=[self.owner])
        if not deleted:
            raise NotFoundError(f"block {block_id} not found")

    def _check_owner(self, block: Block) -> None:
        if block.owner != self.owner:
            raise ValidationError(f"block {block.id} belongs to {block.owner}, not {self.owner}")


class SessionStore:
    """Durable storage of execution sessions for one owner."""

    def __init__(self, owner: str, store: StateStore = None):
        self.owner = owner
        self.store = store or get_store()

    def get(self, session_id: str) -> Session:
        rows = self.store.query(
            "SELECT * FROM sessions WHERE id = ? AND owner = ?", [session_id, self.owner]
        )
        if not rows:
            raise NotFoundError(f"session {session_id} not found")
        return Session.from_row(rows[0])

    def create(
        self,
        block: Block,
        actual_start: datetime,
        time_to_start: int,
        outcome: Outcome = None,
        abort_reason: str = None,
    ) -> Session:
        session = Session(
            id=new_id("session"),
            owner=self.owner,
            block_ref=block.id,
            actual_start=actual_start,
            actual_end=actual_start if outcome in TERMINAL_OUTCOMES else None,
            outcome=outcome,
            abort_reason=abort_reason,
            time_to_start=time_to_start,
            created_at=actual_start,
        )
        with self.store.transaction() as conn:
            seq = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM sessions").fetchone()[0]
            conn.execute(
                """INSERT INTO sessions
                   (id, owner, block_ref, actual_start, actual_end, outcome, abort_reason,
                    time_to_start, seq, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    session.id,
                    self.owner,
                    block.id,
                    to_iso(session.actual_start),
                    to_iso(session.actual_end),
                    str(outcome) if outcome else None,
                    abort_reason,
                    time_to_start,
                    seq,
                    to_iso(session.created_at),
                ],
            )
        return session

    # ---- guarded transitions -------------------------------------------

    def _update_open(self, session_id: str, data: dict, stamp: datetime = None) -> Session:
        """Update only while the outcome is still null or abandoned."""
        data = dict(data, updated_at=to_iso(stamp) if stamp else _utcnow_iso())
        updated = self.store.update(
            "sessions",
            session_id,
            data,
            where=f"id = ? AND owner = ? AND {_OPEN_OUTCOME_SQL}",
            params=[self.owner],
        )
        if not updated:
            existing = self.get(session_id)
            raise InvalidTransitionError(
                f"session {session_id} is final ({existing.outcome}); no further changes allowed"
            )
        return self.get(session_id)

    def mark_abandoned(self, session_id: str, stopped_at: datetime = None) -> Session:
        """*stopped_at* is kept as updated_at so an orphaned stop can be aged out."""
        return self._update_open(session_id, {"outcome": str(Outcome.ABANDONED)}, stamp=stopped_at)

    def clear_abandoned(self, session_id: str) -> Session:
        return self._update_open(session_id, {"outcome": None})

    def finalize(
        self,
        session_id: str,
        outcome: Outcome,
        actual_end: datetime,
        abort_reason: str = None,
        resume_token: str = None,
    ) -> Session:
        if outcome not in TERMINAL_OUTCOMES:
            raise ValidationError(f"finalize needs a terminal outcome, got {outcome}")
        return self._update_open(
            session_id,
            {
                "outcome": str(outcome),
                "actual_end": to_iso(actual_end),
                "abort_reason": abort_reason,
                "resume_token": resume_token,
            },
        )

    # ---- reads ---------------------------------------------------------

    def latest_for_block(self, block_id: str) -> Session | None:
        rows = self.store.query(
            """SELECT * FROM sessions WHERE owner = ? AND block_ref = ?
               ORDER BY seq DESC LIMIT 1""",
            [self.owner, block_id],
        )
        return Session.from_row(rows[0]) if rows else None

    def latest_for_blocks(self, block_ids: list[str]) -> dict[str, Session]:
        if not block_ids:
            return {}
        placeholders = ",".join("?" for _ in block_ids)
        rows = self.store.query(
            f"""SELECT * FROM sessions WHERE owner = ? AND block_ref IN ({placeholders})
                ORDER BY seq DESC""",  # nosec B608
            [self.owner, *block_ids],
        )
        latest: dict[str, Session] = {}
        for row in rows:
            latest.setdefault(row["block_ref"], Session.from_row(row))
        return latest

    def stale_abandoned(self, since: datetime, stopped_before: datetime) -> list[Session]:
        """Abandoned sessions started after *since* whose stop is older than *stopped_before*."""
        rows = self.store.query(
            """SELECT * FROM sessions
               WHERE owner = ? AND outcome = ? AND actual_start > ? AND updated_at <= ?
               ORDER BY actual_start, seq""",
            [self.owner, str(Outcome.ABANDONED), to_iso(since), to_iso(stopped_before)],
        )
        return [Session.from_row(row) for row in rows]

    def active_session(self, since: datetime) -> Session | None:
        """Most recent un-finalized session started after *since*."""
        rows = self.store.query(
            """SELECT * FROM sessions
               WHERE owner = ? AND outcome IS NULL AND actual_start > ?
               ORDER BY actual_start DESC, seq DESC LIMIT 1""",
            [self.owner, to_iso(since)],
        )
        return Session.from_row(rows[0]) if rows else None

    def last_resume_token(self) -> Session | None:
        rows = self.store.query(
            """SELECT * FROM sessions
               WHERE owner = ? AND resume_token IS NOT NULL AND resume_token != ''
               ORDER BY seq DESC LIMIT 1""",
            [self.owner],
        )
        return Session.from_row(rows[0]) if rows else None

    def list_since(self, since: datetime) -> list[tuple[Session, Block | None]]:
        """Sessions created after *since*, newest first, with their block."""
        rows = self.store.query(
            """SELECT s.*, b.id AS b_id, b.owner AS b_owner, b.title AS b_title, b.type AS b_type,
                      b.planned_start AS b_planned_start, b.planned_end AS b_planned_end,
                      b.origin AS b_origin, b.external_calendar_ref AS b_external_calendar_ref,
                      b.routine_ref AS b_routine_ref
               FROM sessions s LEFT JOIN blocks b ON s.block_ref = b.id
               WHERE s.owner = ? AND s.created_at >= ?
               ORDER BY s.seq DESC""",
            [self.owner, to_iso(since)],
        )
        result = []
        for row in rows:
            block = None
            if row.get("b_id"):
                block = Block.from_row(
                    {key[2:]: value for key, value in row.items() if key.startswith("b_")}
                )
            result.append((Session.from_row(row), block))
        return result


class RoutineStore:
    """Recurring routine templates for one owner."""

    def __init__(self, owner: str, store: StateStore = None):
        self.owner = owner
        self.store = store or get_store()

    def list(self) -> list[Routine]:
        rows = self.store.query(
            "SELECT * FROM routines WHERE owner = ? ORDER BY start_time, id", [self.owner]
        )
        return [Routine.from_row(row) for row in rows]

    def get(self, routine_id: str) -> Routine:
        rows = self.store.query(
            "SELECT * FROM routines WHERE id = ? AND owner = ?", [routine_id, self.owner]
        )
        if not rows:
            raise NotFoundError(f"routine {routine_id} not found")
        return Routine.from_row(rows[0])

    def insert(self, routine: Routine) -> Routine:
        if routine.owner != self.owner:
            raise ValidationError(f"routine {routine.id} belongs to {routine.owner}")
        self.store.insert("routines", routine.to_row())
        return routine

    def delete(self, routine_id: str) -> None:
        if not self.store.delete("routines", routine_id, where="id = ? AND owner = ?", params=[self.owner]):
            raise NotFoundError(f"routine {routine_id} not found")


def day_bounds(day: date, tz) -> tuple[datetime, datetime]:
    """[00:00, next 00:00) of *day* in *tz*."""
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    return start, datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
