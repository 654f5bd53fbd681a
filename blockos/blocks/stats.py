"""
Execution statistics over recent sessions.

Only done and aborted sessions are "finished" for rates. Abandoned
sessions (a stop still inside its undo window, or never confirmed) are left
out of every number.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, time, timedelta

from blockos import config
from blockos.blocks.models import Block, BlockType, Outcome, Session, ensure_aware
from blockos.blocks.store import SessionStore

logger = logging.getLogger(__name__)

MIN_SESSIONS_PER_HOUR = 2


@dataclass
class ExecutionStats:
    avg_time_to_start: int = 0
    completion_rate: int = 0
    overrun_rate: int = 0
    best_hour: int | None = None
    total_focus_minutes: int = 0
    blocks_completed: int = 0
    blocks_aborted: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def best_hour(sessions: list[Session], tz) -> int | None:
    """Local hour with the highest done ratio; hours need two finished sessions."""
    hourly: dict[int, list[int]] = defaultdict(lambda: [0, 0])
    for session in sessions:
        if session.outcome not in (Outcome.DONE, Outcome.ABORTED):
            continue
        bucket = hourly[session.actual_start.astimezone(tz).hour]
        bucket[1] += 1
        if session.outcome == Outcome.DONE:
            bucket[0] += 1

    best, best_rate = None, 0.0
    for hour in sorted(hourly):
        done, total = hourly[hour]
        if total < MIN_SESSIONS_PER_HOUR:
            continue
        rate = done / total
        if rate > best_rate:
            best, best_rate = hour, rate
    return best


def compute_stats(pairs: list[tuple[Session, Block | None]], tz=None) -> ExecutionStats:
    """Pure aggregation over (session, block) pairs."""
    tz = tz or config.local_tz()
    sessions = [(s, b) for s, b in pairs if s.outcome != Outcome.ABANDONED]

    completed = [s for s, _ in sessions if s.outcome == Outcome.DONE]
    aborted = [s for s, _ in sessions if s.outcome == Outcome.ABORTED]
    with_tts = [s for s, _ in sessions if s.time_to_start is not None]

    avg_tts = round(sum(s.time_to_start for s in with_tts) / len(with_tts)) if with_tts else 0

    ended = [(s, b) for s, b in sessions if b is not None and s.actual_end is not None]
    overruns = [s for s, b in ended if s.actual_end > b.planned_end]

    focus_minutes = sum(
        round((s.actual_end - s.actual_start).total_seconds() / 60)
        for s, b in ended
        if b.type == BlockType.FOCUS
    )

    return ExecutionStats(
        avg_time_to_start=avg_tts,
        completion_rate=_percent(len(completed), len(completed) + len(aborted)),
        overrun_rate=_percent(len(overruns), len(ended)),
        best_hour=best_hour([s for s, _ in sessions], tz),
        total_focus_minutes=focus_minutes,
        blocks_completed=len(completed),
        blocks_aborted=len(aborted),
    )


def stats_window_start(now: datetime, days: int, tz=None) -> datetime:
    """Local midnight *days* days before *now*."""
    tz = tz or config.local_tz()
    day = ensure_aware(now).astimezone(tz).date() - timedelta(days=days)
    return datetime.combine(day, time(0, 0), tzinfo=tz)


def execution_stats(sessions: SessionStore, now: datetime, days: int = 7, tz=None) -> ExecutionStats:
    tz = tz or config.local_tz()
    pairs = sessions.list_since(stats_window_start(now, days, tz))
    stats = compute_stats(pairs, tz)
    logger.debug("Stats over %d sessions (%d days)", len(pairs), days)
    return stats
