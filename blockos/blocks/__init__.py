"""
Block Engine

The execution core of BlockOS: planned blocks of time, the sessions run
against them, and the policies that keep a day's schedule honest.

Objects:
- Block (manual, calendar-synced or routine-generated)
- Session (one execution attempt against a block)
- Routine (recurring template materialized into blocks)

Invariants:
- Exactly one block is "current" at any instant, or none
- Fixed blocks (calendar, routine) are never moved by a refactor
- A session with outcome done/aborted/skipped is never mutated again
- Expanding routines or reconciling a calendar twice never duplicates
"""

from .calendar_sync import CalendarReconciler, CalendarSyncService
from .models import Block, BlockOrigin, BlockType, ExternalEvent, Outcome, Routine, Session
from .refactor import RefactorService, ScheduleRefactorer
from .resolver import CurrentBlockResolver
from .routines import RoutineExpander, RoutineSync
from .sessions import SessionLifecycle, TimerState
from .stats import ExecutionStats, execution_stats
from .status import BlockStatus, block_status
from .store import BlockStore, RoutineStore, SessionStore

__all__ = [
    "Block",
    "BlockOrigin",
    "BlockStatus",
    "BlockStore",
    "BlockType",
    "CalendarReconciler",
    "CalendarSyncService",
    "CurrentBlockResolver",
    "ExecutionStats",
    "ExternalEvent",
    "Outcome",
    "RefactorService",
    "Routine",
    "RoutineExpander",
    "RoutineStore",
    "RoutineSync",
    "ScheduleRefactorer",
    "Session",
    "SessionLifecycle",
    "SessionStore",
    "TimerState",
    "block_status",
    "execution_stats",
]
