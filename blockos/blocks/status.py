"""
Block status - what a block looks like to the person executing it.

Trackable blocks (focus, admin) go through Start → Done/Stop and count in
execution stats. Recovery and busy blocks are only ever "upcoming" or
"acknowledged".
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from blockos.blocks.models import TRACKABLE_TYPES, Block, BlockType, Outcome, Session, ensure_aware

READY_LEAD = timedelta(minutes=15)


class BlockStatus(StrEnum):
    UPCOMING = "upcoming"
    READY = "ready"
    ACTIVE = "active"
    DONE = "done"
    STOPPED = "stopped"
    SKIPPED = "skipped"
    MISSED = "missed"
    ACKNOWLEDGED = "acknowledged"


@dataclass(frozen=True)
class BlockStatusInfo:
    status: BlockStatus
    label: str
    can_start: bool = False
    can_skip: bool = False
    shows_in_stats: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = str(self.status)
        return data


def is_trackable(block_type: BlockType) -> bool:
    return block_type in TRACKABLE_TYPES


_FINISHED = {
    Outcome.DONE: BlockStatusInfo(BlockStatus.DONE, "Completed", shows_in_stats=True),
    Outcome.ABORTED: BlockStatusInfo(BlockStatus.STOPPED, "Stopped", shows_in_stats=True),
    Outcome.SKIPPED: BlockStatusInfo(BlockStatus.SKIPPED, "Skipped", shows_in_stats=True),
}


def block_status(block: Block, session: Session | None, now: datetime) -> BlockStatusInfo:
    """Status of *block* given its latest session (or None) at *now*."""
    now = ensure_aware(now)

    if not is_trackable(block.type):
        if now < block.planned_start:
            return BlockStatusInfo(BlockStatus.UPCOMING, "Scheduled")
        label = "In Progress" if now < block.planned_end else "Done"
        return BlockStatusInfo(BlockStatus.ACKNOWLEDGED, label)

    if session is not None:
        if session.outcome in _FINISHED:
            return _FINISHED[session.outcome]
        # Running, or stopped and still inside the undo window
        return BlockStatusInfo(BlockStatus.ACTIVE, "In Progress", shows_in_stats=True)

    if now < block.planned_start - READY_LEAD:
        return BlockStatusInfo(BlockStatus.UPCOMING, "Upcoming", can_start=True, can_skip=True)
    if now < block.planned_end:
        return BlockStatusInfo(BlockStatus.READY, "Ready", can_start=True, can_skip=True)
    return BlockStatusInfo(BlockStatus.MISSED, "Missed", can_skip=True, shows_in_stats=True)
