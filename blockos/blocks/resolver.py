"""
Current Block Resolver - which block is "now".

Among the blocks whose planned interval contains the instant, the most
recently started one wins; blocks already finished (their latest session is
done, aborted or skipped) are passed over. A block restarted after an abort
is live again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from blockos.blocks.models import TERMINAL_OUTCOMES, Block, Session, ensure_aware
from blockos.blocks.store import BlockStore, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class CurrentBlock:
    block: Block
    latest_session: Session | None

    def to_dict(self) -> dict:
        return {
            "block": self.block.to_dict(),
            "latest_session": self.latest_session.to_dict() if self.latest_session else None,
        }


def pick_current(blocks: list[Block], finished_ids: set[str], now: datetime) -> Block | None:
    """
    Pure selection over already-fetched data.

    Candidates contain *now*; order is planned_start descending with input
    order kept for equal starts.
    """
    now = ensure_aware(now)
    candidates = [b for b in blocks if b.contains(now)]
    candidates.sort(key=lambda b: b.planned_start, reverse=True)

    for block in candidates:
        if block.id not in finished_ids:
            return block
    return None


class CurrentBlockResolver:
    """Reads the block and session stores to find the active block."""

    def __init__(self, blocks: BlockStore, sessions: SessionStore):
        self.blocks = blocks
        self.sessions = sessions

    def resolve(self, now: datetime) -> Block | None:
        current = self.resolve_with_context(now)
        return current.block if current else None

    def resolve_with_context(self, now: datetime) -> CurrentBlock | None:
        """
        The active block plus its most recent session (used to resume a
        timer), or None when nothing is scheduled right now.
        """
        candidates = self.blocks.containing(now)
        if not candidates:
            return None

        latest = self.sessions.latest_for_blocks([b.id for b in candidates])
        finished = {bid for bid, session in latest.items() if session.outcome in TERMINAL_OUTCOMES}
        block = pick_current(candidates, finished, now)
        if block is None:
            logger.debug("All %d blocks at %s are finished", len(candidates), now.isoformat())
            return None

        return CurrentBlock(block=block, latest_session=latest.get(block.id))
