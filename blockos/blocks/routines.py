"""
Routine Expander - materialize recurring routines into concrete blocks.

Runs over a rolling horizon (default 7 days from today 00:00). Each routine
yields at most one block per calendar day, keyed by (routine_ref, date).
Running it twice without time passing inserts nothing the second time.

The existence check is an optimization; the unique index on
(owner, routine_ref, routine_day) is what keeps two concurrent expansions
from both inserting the same instance. A losing batch is rolled back
whole and simply finds the winner's blocks on the next run.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from blockos import config
from blockos.blocks.models import Block, BlockOrigin, Routine, ensure_aware, new_id
from blockos.blocks.store import BlockStore, RoutineStore, day_bounds
from blockos.errors import BlockOSError

logger = logging.getLogger(__name__)


def instance_key(routine_ref: str, day: date) -> tuple[str, str]:
    return (routine_ref, day.isoformat())


def plan_instances(
    routines: list[Routine],
    owner: str,
    today: date,
    tz,
    horizon_days: int,
    existing_keys: set[tuple[str, str]],
) -> list[Block]:
    """
    Pure planning step: the blocks that are missing for each day in
    [today, today + horizon_days).
    """
    planned = []
    for offset in range(horizon_days):
        day = today + timedelta(days=offset)
        for routine in routines:
            if not routine.occurs_on(day):
                continue
            key = instance_key(routine.id, day)
            if key in existing_keys:
                continue

            start = datetime.combine(day, routine.start_time, tzinfo=tz)
            planned.append(
                Block(
                    id=new_id("block"),
                    owner=owner,
                    title=routine.title,
                    type=routine.type,
                    planned_start=start,
                    planned_end=start + timedelta(minutes=routine.duration_minutes),
                    origin=BlockOrigin.ROUTINE,
                    routine_ref=routine.id,
                    routine_day=day,
                )
            )
            existing_keys.add(key)
    return planned


class RoutineExpander:
    """Idempotent expansion of routines into the block store."""

    def __init__(self, blocks: BlockStore, horizon_days: int = None):
        self.blocks = blocks
        self.horizon_days = horizon_days or config.ROUTINE_HORIZON_DAYS

    def existing_keys(self, today: date, tz, horizon_days: int) -> set[tuple[str, str]]:
        range_start, _ = day_bounds(today, tz)
        _, range_end = day_bounds(today + timedelta(days=horizon_days), tz)

        keys = set()
        for block in self.blocks.routine_blocks(range_start, range_end):
            day = block.routine_day or block.planned_start.astimezone(tz).date()
            keys.add(instance_key(block.routine_ref, day))
        return keys

    def expand(self, routines: list[Routine], now: datetime, horizon_days: int = None) -> list[Block]:
        """
        Insert the missing routine instances and return them.

        Days are calendar days in now's timezone. The insert is one batch:
        on failure nothing is written and the error propagates so the caller
        can retry the whole expansion.
        """
        now = ensure_aware(now)
        horizon = horizon_days or self.horizon_days
        tz = now.tzinfo
        today = now.date()

        owned = [r for r in routines if r.owner == self.blocks.owner]
        if not owned:
            return []

        existing = self.existing_keys(today, tz, horizon)
        new_blocks = plan_instances(owned, self.blocks.owner, today, tz, horizon, existing)

        if not new_blocks:
            logger.debug("Routine expansion: nothing missing over %d days", horizon)
            return []

        self.blocks.insert_many(new_blocks)
        logger.info(
            "Routine expansion: inserted %d blocks for %d routines over %d days",
            len(new_blocks),
            len(owned),
            horizon,
        )
        return new_blocks


@dataclass
class RoutineSyncResult:
    inserted: list[Block] = field(default_factory=list)
    success: bool = True
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "inserted": len(self.inserted),
            "blocks": [b.to_dict() for b in self.inserted],
            "error": self.error,
        }


class RoutineSync:
    """
    Caller of the expander: loads the owner's routines, expands them and
    reports a failed batch instead of raising.
    """

    def __init__(self, blocks: BlockStore, routines: RoutineStore, horizon_days: int = None):
        self.routines = routines
        self.expander = RoutineExpander(blocks, horizon_days)

    def run(self, now: datetime = None) -> RoutineSyncResult:
        now = ensure_aware(now) if now else datetime.now(config.local_tz())
        routines = self.routines.list()
        if not routines:
            return RoutineSyncResult()

        try:
            inserted = self.expander.expand(routines, now)
        except BlockOSError as e:
            logger.warning("Routine expansion failed, batch discarded: %s", e)
            return RoutineSyncResult(success=False, error=str(e))

        return RoutineSyncResult(inserted=inserted)
