"""
Session Lifecycle - the execution timer as an explicit state machine.

    idle → running → stopping (pending undo) → aborted | running (undo)
                   → done
    idle → skipped

The caller owns a SessionLifecycle and drives it with commands (start, tick,
stop, undo, ...), either through the methods or by passing command objects
to handle(). Every transition that writes to the store is applied to the
in-memory state only after the write succeeded; a failed write leaves the
timer exactly where it was and the error propagates.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum

from blockos import config
from blockos.blocks.models import Block, Outcome, Session, ensure_aware
from blockos.blocks.store import BlockStore, SessionStore
from blockos.errors import BlockOSError, InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)


class TimerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    DONE = "done"
    ABORTED = "aborted"
    SKIPPED = "skipped"


TERMINAL_STATES = frozenset({TimerState.DONE, TimerState.ABORTED, TimerState.SKIPPED})

VALID_TRANSITIONS = {
    TimerState.IDLE: {TimerState.RUNNING, TimerState.SKIPPED},
    TimerState.RUNNING: {TimerState.STOPPING, TimerState.DONE},
    TimerState.STOPPING: {TimerState.RUNNING, TimerState.ABORTED},
    TimerState.DONE: set(),
    TimerState.ABORTED: set(),
    TimerState.SKIPPED: set(),
}


def time_to_start(block: Block, now: datetime) -> int:
    """Seconds between planned and actual start; early starts count as 0."""
    return max(0, int((ensure_aware(now) - block.planned_start).total_seconds()))


# =============================================================================
# COMMANDS
# =============================================================================


@dataclass(frozen=True)
class Start:
    block: Block
    now: datetime


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Complete:
    now: datetime
    resume_token: str | None = None


@dataclass(frozen=True)
class Stop:
    now: datetime
    abort_reason: str | None = None
    resume_token: str | None = None


@dataclass(frozen=True)
class Undo:
    now: datetime


@dataclass(frozen=True)
class ConfirmStop:
    now: datetime
    abort_reason: str | None = None
    resume_token: str | None = None


@dataclass(frozen=True)
class Poll:
    now: datetime


@dataclass(frozen=True)
class Skip:
    block: Block
    now: datetime
    reason: str | None = None


@dataclass(frozen=True)
class Restore:
    session: Session
    block: Block
    now: datetime


@dataclass(frozen=True)
class Reset:
    pass


Command = Start | Tick | Complete | Stop | Undo | ConfirmStop | Poll | Skip | Restore | Reset


# =============================================================================
# STATE
# =============================================================================


@dataclass(frozen=True)
class TimerSnapshot:
    """Everything the timer holds. Replaced wholesale on each transition."""

    state: TimerState = TimerState.IDLE
    block: Block | None = None
    session: Session | None = None
    elapsed_seconds: int = 0
    undo_deadline: datetime | None = None
    pending_abort_reason: str | None = None
    pending_resume_token: str | None = None

    @property
    def is_running(self) -> bool:
        return self.state == TimerState.RUNNING

    def to_dict(self) -> dict:
        return {
            "state": str(self.state),
            "block_id": self.block.id if self.block else None,
            "session_id": self.session.id if self.session else None,
            "elapsed_seconds": self.elapsed_seconds,
            "undo_deadline": self.undo_deadline.isoformat() if self.undo_deadline else None,
        }


class SessionLifecycle:
    """Timer for one block at a time, persisted through a SessionStore."""

    def __init__(self, sessions: SessionStore, undo_seconds: int = None):
        self.sessions = sessions
        if undo_seconds is None:
            undo_seconds = config.UNDO_COUNTDOWN_SECONDS
        self.undo_window = timedelta(seconds=undo_seconds)
        self._snapshot = TimerSnapshot()

    # ---- introspection -------------------------------------------------

    @property
    def snapshot(self) -> TimerSnapshot:
        return self._snapshot

    @property
    def state(self) -> TimerState:
        return self._snapshot.state

    @property
    def elapsed_seconds(self) -> int:
        return self._snapshot.elapsed_seconds

    @property
    def session(self) -> Session | None:
        return self._snapshot.session

    # ---- plumbing ------------------------------------------------------

    def _require(self, target: TimerState) -> None:
        current = self._snapshot.state
        if target not in VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(f"cannot go from {current} to {target}")

    @contextmanager
    def _transition(self, name: str):
        before = self._snapshot
        try:
            yield
        except BlockOSError as e:
            self._snapshot = before
            logger.warning("Timer %s failed, state kept at %s: %s", name, before.state, e)
            raise
        logger.info("Timer %s: %s → %s", name, before.state, self._snapshot.state)

    # ---- commands ------------------------------------------------------

    def start(self, block: Block, now: datetime) -> Session:
        if self._snapshot.state != TimerState.IDLE:
            raise InvalidTransitionError(f"cannot start while {self._snapshot.state}")
        now = ensure_aware(now)
        with self._transition("start"):
            session = self.sessions.create(block, actual_start=now, time_to_start=time_to_start(block, now))
            self._snapshot = TimerSnapshot(
                state=TimerState.RUNNING, block=block, session=session, elapsed_seconds=0
            )
        return session

    def tick(self) -> int:
        """One-second callback. Only counts while running; no I/O."""
        if self._snapshot.is_running:
            self._snapshot = replace(self._snapshot, elapsed_seconds=self._snapshot.elapsed_seconds + 1)
        return self._snapshot.elapsed_seconds

    def complete(self, now: datetime, resume_token: str = None) -> Session:
        self._require(TimerState.DONE)
        with self._transition("complete"):
            session = self.sessions.finalize(
                self._snapshot.session.id,
                Outcome.DONE,
                actual_end=ensure_aware(now),
                resume_token=resume_token or None,
            )
            self._snapshot = replace(self._snapshot, state=TimerState.DONE, session=session)
        return session

    def stop(self, now: datetime, abort_reason: str = None, resume_token: str = None) -> Session:
        """
        Provisional stop: the session is marked abandoned and an undo
        countdown starts. Elapsed time is frozen until undo or abort.
        """
        self._require(TimerState.STOPPING)
        with self._transition("stop"):
            session = self.sessions.mark_abandoned(self._snapshot.session.id, stopped_at=now)
            self._snapshot = replace(
                self._snapshot,
                state=TimerState.STOPPING,
                session=session,
                undo_deadline=ensure_aware(now) + self.undo_window,
                pending_abort_reason=abort_reason,
                pending_resume_token=resume_token,
            )
        return session

    def undo(self, now: datetime) -> Session:
        """Resume within the countdown; elapsed continues from where it froze."""
        if self._snapshot.state != TimerState.STOPPING:
            raise InvalidTransitionError(f"nothing to undo while {self._snapshot.state}")
        if ensure_aware(now) > self._snapshot.undo_deadline:
            raise InvalidTransitionError("undo window has closed")
        with self._transition("undo"):
            session = self.sessions.clear_abandoned(self._snapshot.session.id)
            self._snapshot = replace(
                self._snapshot,
                state=TimerState.RUNNING,
                session=session,
                undo_deadline=None,
                pending_abort_reason=None,
                pending_resume_token=None,
            )
        return session

    def confirm_stop(self, now: datetime, abort_reason: str = None, resume_token: str = None) -> Session:
        self._require(TimerState.ABORTED)
        reason = abort_reason if abort_reason is not None else self._snapshot.pending_abort_reason
        token = resume_token if resume_token is not None else self._snapshot.pending_resume_token
        with self._transition("abort"):
            session = self.sessions.finalize(
                self._snapshot.session.id,
                Outcome.ABORTED,
                actual_end=ensure_aware(now),
                abort_reason=reason,
                resume_token=token or None,
            )
            self._snapshot = replace(
                self._snapshot, state=TimerState.ABORTED, session=session, undo_deadline=None
            )
        return session

    def poll(self, now: datetime) -> Session | None:
        """Finalize a pending stop once its countdown has run out."""
        snap = self._snapshot
        if snap.state != TimerState.STOPPING or ensure_aware(now) < snap.undo_deadline:
            return None
        return self.confirm_stop(now)

    def skip(self, block: Block, now: datetime, reason: str = None) -> Session:
        """Record that a block will not be worked on. Terminal."""
        self._require(TimerState.SKIPPED)
        with self._transition("skip"):
            session = self.sessions.create(
                block,
                actual_start=ensure_aware(now),
                time_to_start=0,
                outcome=Outcome.SKIPPED,
                abort_reason=reason,
            )
            self._snapshot = TimerSnapshot(state=TimerState.SKIPPED, block=block, session=session)
        return session

    def restore(self, session: Session, block: Block, now: datetime) -> TimerSnapshot:
        """Pick up a session left running (page reload, process restart)."""
        if self._snapshot.state != TimerState.IDLE:
            raise InvalidTransitionError("restore is only possible from idle")
        if session.outcome is not None:
            raise InvalidTransitionError(f"session {session.id} is not running ({session.outcome})")
        elapsed = max(0, int((ensure_aware(now) - session.actual_start).total_seconds()))
        self._snapshot = TimerSnapshot(
            state=TimerState.RUNNING, block=block, session=session, elapsed_seconds=elapsed
        )
        logger.info("Timer restored for session %s at %ds", session.id, elapsed)
        return self._snapshot

    def reset(self) -> None:
        """Back to idle after a finished session. A live session cannot be reset."""
        if self._snapshot.state in (TimerState.RUNNING, TimerState.STOPPING):
            raise InvalidTransitionError(f"cannot reset while {self._snapshot.state}")
        self._snapshot = TimerSnapshot()

    # ---- message passing -----------------------------------------------

    def handle(self, command: Command):
        match command:
            case Start(block=block, now=now):
                return self.start(block, now)
            case Tick():
                return self.tick()
            case Complete(now=now, resume_token=token):
                return self.complete(now, token)
            case Stop(now=now, abort_reason=reason, resume_token=token):
                return self.stop(now, reason, token)
            case Undo(now=now):
                return self.undo(now)
            case ConfirmStop(now=now, abort_reason=reason, resume_token=token):
                return self.confirm_stop(now, reason, token)
            case Poll(now=now):
                return self.poll(now)
            case Skip(block=block, now=now, reason=reason):
                return self.skip(block, now, reason)
            case Restore(session=session, block=block, now=now):
                return self.restore(session, block, now)
            case Reset():
                return self.reset()
            case _:
                raise TypeError(f"unknown timer command: {command!r}")


def find_restorable(
    sessions: SessionStore, blocks: BlockStore, now: datetime, lookback_hours: int = None
) -> tuple[Session, Block] | None:
    """The running session worth restoring, if one started within the lookback."""
    if lookback_hours is None:
        lookback_hours = config.ACTIVE_SESSION_LOOKBACK_HOURS
    session = sessions.active_session(since=ensure_aware(now) - timedelta(hours=lookback_hours))
    if session is None or session.block_ref is None:
        return None
    try:
        block = blocks.get(session.block_ref)
    except NotFoundError:
        logger.debug("Active session %s points at a deleted block", session.id)
        return None
    return session, block


def expire_abandoned(
    sessions: SessionStore,
    now: datetime,
    undo_seconds: int = None,
    lookback_hours: int = None,
) -> list[Session]:
    """
    Finalize stops whose undo countdown died with the process.

    A session stays abandoned only while some timer is counting down. Once
    the window has passed with nobody left to confirm or undo, the stop
    stands and the session is aborted at *now*.
    """
    if undo_seconds is None:
        undo_seconds = config.UNDO_COUNTDOWN_SECONDS
    if lookback_hours is None:
        lookback_hours = config.ACTIVE_SESSION_LOOKBACK_HOURS
    now = ensure_aware(now)
    stale = sessions.stale_abandoned(
        since=now - timedelta(hours=lookback_hours),
        stopped_before=now - timedelta(seconds=undo_seconds),
    )
    expired = []
    for session in stale:
        try:
            expired.append(sessions.finalize(session.id, Outcome.ABORTED, actual_end=now))
        except InvalidTransitionError:
            # Finalized by a live timer between the read and the write.
            logger.debug("Session %s already final, not expiring", session.id)
    if expired:
        logger.info("Expired %d abandoned session(s) past their undo window", len(expired))
    return expired
