"""
Schedule Refactorer - re-flow the rest of the day from "now".

Fixed blocks (calendar-synced or routine-generated) are anchors and never
move. Fluid blocks (manual, non-recurring) are packed one after another
starting at the next 5-minute boundary, keeping their durations, with a
transition buffer after every block. Only blocks whose times actually
change are returned, so a commit touches the minimum.

The proposal is computed entirely in memory; RefactorService applies it in
a single transaction so a half-refactored schedule is never visible.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from blockos import config
from blockos.blocks.models import Block, ensure_aware
from blockos.blocks.store import BlockStore, day_bounds

logger = logging.getLogger(__name__)


def round_up(now: datetime, minutes: int) -> datetime:
    """
    The next boundary strictly after *now*: 09:05 → 09:10, 09:07:30 → 09:10.
    """
    floored = now.replace(second=0, microsecond=0) - timedelta(minutes=now.minute % minutes)
    return floored + timedelta(minutes=minutes)


class ScheduleRefactorer:
    def __init__(self, buffer_minutes: int = None, granularity_minutes: int = None):
        if buffer_minutes is None:
            buffer_minutes = config.REFACTOR_BUFFER_MINUTES
        self.buffer = timedelta(minutes=buffer_minutes)
        self.granularity = granularity_minutes or config.REFACTOR_GRANULARITY_MINUTES

    def refactor(self, blocks: list[Block], now: datetime) -> list[Block]:
        """
        Returns the changed blocks only (new copies; inputs are untouched).

        Raises ValidationError before doing anything if any block has
        planned_end <= planned_start.
        """
        for block in blocks:
            block.validate()

        now = ensure_aware(now)
        remaining = sorted(
            (b for b in blocks if b.planned_end >= now),
            key=lambda b: b.planned_start,
        )

        cursor = round_up(now, self.granularity)
        candidates: list[Block] = []

        for block in remaining:
            if block.is_fixed:
                candidates.append(block)
                if block.planned_end > cursor:
                    cursor = block.planned_end + self.buffer
            else:
                moved = block.moved_to(cursor)
                candidates.append(moved)
                cursor = moved.planned_end + self.buffer

        originals = {b.id: b for b in blocks}
        proposal = [b for b in candidates if _changed(originals[b.id], b)]

        logger.info(
            "Refactor at %s: %d blocks considered, %d change",
            now.isoformat(),
            len(remaining),
            len(proposal),
        )
        return proposal


def _changed(original: Block, candidate: Block) -> bool:
    return (
        original.planned_start != candidate.planned_start
        or original.planned_end != candidate.planned_end
    )


@dataclass
class RefactorResult:
    proposal: list[Block] = field(default_factory=list)
    applied: bool = False

    @property
    def message(self) -> str:
        if not self.proposal:
            return "Your schedule is already optimal!"
        verb = "Moved" if self.applied else "Would move"
        return f"{verb} {len(self.proposal)} block(s)"

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "applied": self.applied,
            "proposal": [b.to_dict() for b in self.proposal] or None,
        }


class RefactorService:
    """Fetch the rest of today, propose a new arrangement, optionally commit it."""

    def __init__(self, blocks: BlockStore, refactorer: ScheduleRefactorer = None):
        self.blocks = blocks
        self.refactorer = refactorer or ScheduleRefactorer()

    def remaining_today(self, now: datetime) -> list[Block]:
        tz = config.local_tz()
        _, day_end = day_bounds(now.astimezone(tz).date(), tz)
        return [b for b in self.blocks.query(start=now, end=day_end) if b.planned_end >= now]

    def propose(self, now: datetime, blocks: list[Block] = None) -> list[Block]:
        now = ensure_aware(now)
        if blocks is None:
            blocks = self.remaining_today(now)
        return self.refactorer.refactor(blocks, now)

    def apply(self, proposal: list[Block]) -> int:
        """Commit a proposal as one batch."""
        if not proposal:
            return 0
        count = self.blocks.update_many(proposal)
        logger.info("Refactor applied: %d blocks moved", count)
        return count

    def run(self, now: datetime, apply: bool = False, blocks: list[Block] = None) -> RefactorResult:
        proposal = self.propose(now, blocks)
        if apply and proposal:
            self.apply(proposal)
            return RefactorResult(proposal=proposal, applied=True)
        return RefactorResult(proposal=proposal)
