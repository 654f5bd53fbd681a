"""
Calendar Sync - merge external calendar events into the block set.

CalendarReconciler upserts one block per event, keyed by the event's
calendar-prefixed id (external_calendar_ref). Manually created blocks are
never touched. Every event is handled on its own: a failure is recorded and
the rest continue.

CalendarSyncService is the calling collaborator. It owns the freshness
policy (skip when the last successful sync is recent, unless forced),
fetches events through the provider adapter and records sync state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from blockos import config
from blockos.blocks.models import Block, BlockOrigin, BlockType, ExternalEvent, ensure_aware, new_id
from blockos.blocks.store import BlockStore, day_bounds
from blockos.errors import BlockOSError, UpstreamError, ValidationError
from blockos.state_store import StateStore

logger = logging.getLogger(__name__)

PLACEHOLDER_RESTRICTED = "Busy"
PLACEHOLDER_UNTITLED = "Untitled Event"


@dataclass
class ReconcileResult:
    synced: int = 0
    inserted: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    reconciled_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "synced": self.synced,
            "inserted": self.inserted,
            "updated": self.updated,
            "errors": self.errors,
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
        }


def event_title(event: ExternalEvent) -> str:
    """Restricted events keep their time commitment but not their details."""
    if event.title:
        return event.title
    return PLACEHOLDER_RESTRICTED if event.is_restricted else PLACEHOLDER_UNTITLED


class CalendarReconciler:
    """Upserts timed external events as calendar-origin blocks."""

    def __init__(self, blocks: BlockStore, block_type: str = None):
        self.blocks = blocks
        self.block_type = BlockType(block_type or config.CALENDAR_BLOCK_TYPE)

    def reconcile(self, events: list[ExternalEvent], now: datetime) -> ReconcileResult:
        """Upsert every timed event; *now* stamps the result."""
        now = ensure_aware(now)
        result = ReconcileResult(reconciled_at=now)
        timed = [e for e in events if e.is_timed]
        if len(timed) < len(events):
            logger.debug("Calendar reconcile: dropped %d all-day events", len(events) - len(timed))

        for event in timed:
            ref = event.external_ref
            try:
                if self._upsert(event):
                    result.inserted += 1
                else:
                    result.updated += 1
                result.synced += 1
            except BlockOSError as e:
                result.errors.append(f"{ref}: {e}")
                logger.warning("Calendar reconcile: event %s failed: %s", ref, e)

        logger.info(
            "Calendar reconcile at %s: %d synced (%d new, %d updated), %d errors",
            now.isoformat(),
            result.synced,
            result.inserted,
            result.updated,
            len(result.errors),
        )
        return result

    def _upsert(self, event: ExternalEvent) -> bool:
        """Returns True when a new block was inserted."""
        start, end = ensure_aware(event.start), ensure_aware(event.end)
        if end <= start:
            raise ValidationError(f"event ends at or before it starts ({start.isoformat()})")

        title = event_title(event)
        links = [event.link] if event.link else None
        ref = event.external_ref

        existing = self.blocks.find_by_external_ref(ref)
        if existing is not None:
            self.blocks.update(
                existing.id,
                {
                    "title": title,
                    "planned_start": start,
                    "planned_end": end,
                    "external_task_links": links,
                },
            )
            return False

        self.blocks.insert(
            Block(
                id=new_id("block"),
                owner=self.blocks.owner,
                title=title,
                type=self.block_type,
                planned_start=start,
                planned_end=end,
                origin=BlockOrigin.CALENDAR,
                external_calendar_ref=ref,
                external_task_links=links,
            )
        )
        return True


# =============================================================================
# CALLER: freshness policy + fetch + reconcile
# =============================================================================


class EventSource(Protocol):
    """Provider adapter: timed events only, auth already handled."""

    errors: list[str]

    def fetch_events(self, time_min: datetime, time_max: datetime) -> list[ExternalEvent]: ...


@dataclass
class SyncOutcome:
    synced: bool
    reason: str | None = None
    last_sync: str | None = None
    total_events: int = 0
    result: ReconcileResult | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "synced": self.synced,
            "reason": self.reason,
            "last_sync": self.last_sync,
            "total_events": self.total_events,
            "errors": self.errors,
        }
        if self.result is not None:
            data["block_count"] = self.result.synced
            data.update(inserted=self.result.inserted, updated=self.result.updated)
        return data


class CalendarSyncService:
    """Runs a reconciliation for one owner, at most once per freshness window."""

    def __init__(
        self,
        blocks: BlockStore,
        source: EventSource,
        state: StateStore,
        freshness: timedelta = None,
        lookahead_days: int = 7,
    ):
        self.blocks = blocks
        self.source = source
        self.state = state
        self.freshness = freshness or timedelta(minutes=config.CALENDAR_FRESHNESS_MINUTES)
        self.lookahead_days = lookahead_days
        self.reconciler = CalendarReconciler(blocks)

    @property
    def state_key(self) -> str:
        return f"calendar:{self.blocks.owner}"

    def is_fresh(self, now: datetime) -> tuple[bool, str | None]:
        state = self.state.get_sync_state(self.state_key)
        last_success = state.get("last_success") if state else None
        if not last_success:
            return False, None
        last = ensure_aware(datetime.fromisoformat(last_success))
        return now - last < self.freshness, last_success

    def sync(self, now: datetime = None, force: bool = False) -> SyncOutcome:
        now = ensure_aware(now) if now else datetime.now(config.local_tz())

        if not force:
            fresh, last_sync = self.is_fresh(now)
            if fresh:
                logger.debug("Calendar sync skipped, last success %s", last_sync)
                return SyncOutcome(synced=False, reason="cache_valid", last_sync=last_sync)

        tz = config.local_tz()
        time_min, _ = day_bounds(now.astimezone(tz).date(), tz)
        time_max = time_min + timedelta(days=self.lookahead_days)

        try:
            events = self.source.fetch_events(time_min, time_max)
        except UpstreamError as e:
            logger.error("Calendar fetch failed: %s", e)
            self.state.update_sync_state(self.state_key, success=False, error=str(e), at=now)
            return SyncOutcome(synced=False, reason="upstream_error", errors=[str(e)])

        result = self.reconciler.reconcile(events, now)
        errors = list(getattr(self.source, "errors", []) or []) + result.errors

        self.state.update_sync_state(
            self.state_key,
            success=True,
            items=result.synced,
            error="; ".join(errors[:3]) if errors else None,
            at=now,
        )
        return SyncOutcome(
            synced=True,
            last_sync=now.isoformat(),
            total_events=len([e for e in events if e.is_timed]),
            result=result,
            errors=errors,
        )
