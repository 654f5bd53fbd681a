"""
Block engine models.

Block     - a planned unit of time (manual, calendar-synced or routine-generated)
Session   - one execution attempt against a block
Routine   - a recurring template that materializes into blocks
ExternalEvent - a timed event handed over by a calendar adapter

All datetimes are timezone-aware in memory. Naive values are taken as UTC.
Rows store ISO-8601 UTC strings so lexical order is chronological order.
"""

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import StrEnum

from blockos.errors import ValidationError

# =============================================================================
# ENUMS
# =============================================================================


class BlockType(StrEnum):
    """What kind of time a block is."""

    FOCUS = "focus"
    ADMIN = "admin"
    RECOVERY = "recovery"
    BUSY = "busy"


class BlockOrigin(StrEnum):
    """Where a block came from. Decides whether a refactor may move it."""

    MANUAL = "manual"
    CALENDAR = "calendar"
    ROUTINE = "routine"


class Outcome(StrEnum):
    """Session outcome. Null (None) means still running."""

    DONE = "done"
    ABORTED = "aborted"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"


TERMINAL_OUTCOMES = frozenset({Outcome.DONE, Outcome.ABORTED, Outcome.SKIPPED})

# Types that go through Start → Done/Stop and count toward stats
TRACKABLE_TYPES = frozenset({BlockType.FOCUS, BlockType.ADMIN})


# =============================================================================
# TIME HELPERS
# =============================================================================


def ensure_aware(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; leave aware ones untouched."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return ensure_aware(value).astimezone(timezone.utc).isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _parse_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"invalid {field_name}: {value!r}") from e


# =============================================================================
# BLOCK
# =============================================================================


@dataclass
class Block:
    id: str
    owner: str
    title: str
    type: BlockType
    planned_start: datetime
    planned_end: datetime
    origin: BlockOrigin = BlockOrigin.MANUAL
    # Variant fields: calendar → external_calendar_ref; routine → routine_ref/routine_day
    external_calendar_ref: str | None = None
    routine_ref: str | None = None
    routine_day: date | None = None
    stop_condition: str | None = None
    external_task_links: list[str] | None = None
    is_quick_add: bool = False
    created_at: datetime | None = None

    def __post_init__(self):
        self.type = _parse_enum(BlockType, self.type, "block type")
        self.origin = _parse_enum(BlockOrigin, self.origin, "block origin")
        self.planned_start = ensure_aware(self.planned_start)
        self.planned_end = ensure_aware(self.planned_end)

    @property
    def duration(self) -> timedelta:
        return self.planned_end - self.planned_start

    @property
    def duration_min(self) -> int:
        return int(self.duration.total_seconds() // 60)

    @property
    def is_fixed(self) -> bool:
        """
        Fixed blocks are anchors a refactor never moves: externally committed
        time and recurring obligations. Manual, non-recurring blocks are fluid.
        """
        match self.origin:
            case BlockOrigin.CALENDAR | BlockOrigin.ROUTINE:
                return True
            case BlockOrigin.MANUAL:
                return self.routine_ref is not None

    def contains(self, instant: datetime) -> bool:
        """Closed interval: both edges count as inside."""
        instant = ensure_aware(instant)
        return self.planned_start <= instant <= self.planned_end

    def validate(self) -> "Block":
        """Reject malformed ranges and origin/variant mismatches."""
        if self.planned_end <= self.planned_start:
            raise ValidationError(
                f"block {self.id}: planned_end {self.planned_end.isoformat()} "
                f"must be after planned_start {self.planned_start.isoformat()}"
            )
        if self.origin == BlockOrigin.CALENDAR and not self.external_calendar_ref:
            raise ValidationError(f"block {self.id}: calendar block without external_calendar_ref")
        if self.origin == BlockOrigin.ROUTINE and not self.routine_ref:
            raise ValidationError(f"block {self.id}: routine block without routine_ref")
        return self

    def moved_to(self, start: datetime) -> "Block":
        """Copy re-anchored at *start*, keeping the duration."""
        return replace(self, planned_start=start, planned_end=start + self.duration)

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "title": self.title,
            "type": str(self.type),
            "planned_start": to_iso(self.planned_start),
            "planned_end": to_iso(self.planned_end),
            "origin": str(self.origin),
            "external_calendar_ref": self.external_calendar_ref,
            "routine_ref": self.routine_ref,
            "routine_day": self.routine_day.isoformat() if self.routine_day else None,
            "stop_condition": self.stop_condition,
            "external_task_links": self.external_task_links,
            "is_quick_add": 1 if self.is_quick_add else 0,
        }

    @classmethod
    def from_row(cls, row: dict) -> "Block":
        links = row.get("external_task_links")
        return cls(
            id=row["id"],
            owner=row["owner"],
            title=row["title"],
            type=row.get("type") or BlockType.FOCUS,
            planned_start=from_iso(row["planned_start"]),
            planned_end=from_iso(row["planned_end"]),
            origin=row.get("origin") or BlockOrigin.MANUAL,
            external_calendar_ref=row.get("external_calendar_ref"),
            routine_ref=row.get("routine_ref"),
            routine_day=date.fromisoformat(row["routine_day"]) if row.get("routine_day") else None,
            stop_condition=row.get("stop_condition"),
            external_task_links=json.loads(links) if links else None,
            is_quick_add=bool(row.get("is_quick_add", 0)),
            created_at=from_iso(row.get("created_at")),
        )

    def to_dict(self) -> dict:
        data = self.to_row()
        data["is_quick_add"] = self.is_quick_add
        data["is_fixed"] = self.is_fixed
        return data


# =============================================================================
# SESSION
# =============================================================================


@dataclass
class Session:
    id: str
    owner: str
    block_ref: str | None
    actual_start: datetime
    actual_end: datetime | None = None
    outcome: Outcome | None = None
    abort_reason: str | None = None
    resume_token: str | None = None
    time_to_start: int = 0
    created_at: datetime | None = None

    def __post_init__(self):
        if self.outcome is not None:
            self.outcome = _parse_enum(Outcome, self.outcome, "session outcome")
        self.actual_start = ensure_aware(self.actual_start)
        if self.actual_end is not None:
            self.actual_end = ensure_aware(self.actual_end)

    @property
    def is_finished(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES

    @property
    def is_open(self) -> bool:
        """Still mutable: running (None) or provisionally abandoned."""
        return self.outcome is None or self.outcome == Outcome.ABANDONED

    @classmethod
    def from_row(cls, row: dict) -> "Session":
        return cls(
            id=row["id"],
            owner=row["owner"],
            block_ref=row.get("block_ref"),
            actual_start=from_iso(row["actual_start"]),
            actual_end=from_iso(row.get("actual_end")),
            outcome=row.get("outcome"),
            abort_reason=row.get("abort_reason"),
            resume_token=row.get("resume_token"),
            time_to_start=int(row.get("time_to_start") or 0),
            created_at=from_iso(row.get("created_at")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "block_ref": self.block_ref,
            "actual_start": to_iso(self.actual_start),
            "actual_end": to_iso(self.actual_end),
            "outcome": str(self.outcome) if self.outcome else None,
            "abort_reason": self.abort_reason,
            "resume_token": self.resume_token,
            "time_to_start": self.time_to_start,
        }


# =============================================================================
# ROUTINE
# =============================================================================


@dataclass
class Routine:
    id: str
    owner: str
    title: str
    type: BlockType
    start_time: time
    duration_minutes: int
    recurrence_days: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self):
        self.type = _parse_enum(BlockType, self.type, "routine type")
        if isinstance(self.start_time, str):
            self.start_time = time.fromisoformat(self.start_time)
        self.recurrence_days = frozenset(int(d) for d in self.recurrence_days)
        bad = [d for d in self.recurrence_days if d < 1 or d > 7]
        if bad:
            raise ValidationError(f"routine {self.id}: weekday numbers must be 1..7, got {bad}")
        if self.duration_minutes <= 0:
            raise ValidationError(f"routine {self.id}: duration_minutes must be positive")

    def occurs_on(self, day: date) -> bool:
        """Weekday numbering: Monday=1 .. Sunday=7."""
        return day.isoweekday() in self.recurrence_days

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "title": self.title,
            "type": str(self.type),
            "start_time": self.start_time.strftime("%H:%M"),
            "duration_minutes": self.duration_minutes,
            "recurrence_days": sorted(self.recurrence_days),
        }

    @classmethod
    def from_row(cls, row: dict) -> "Routine":
        return cls(
            id=row["id"],
            owner=row["owner"],
            title=row["title"],
            type=row.get("type") or BlockType.FOCUS,
            start_time=row["start_time"],
            duration_minutes=int(row["duration_minutes"]),
            recurrence_days=frozenset(json.loads(row.get("recurrence_days") or "[]")),
        )


# =============================================================================
# EXTERNAL EVENT
# =============================================================================


@dataclass
class ExternalEvent:
    """A calendar event as delivered by the provider adapter."""

    id: str
    start: datetime | None
    end: datetime | None
    title: str | None = None
    link: str | None = None
    calendar_id: str | None = None
    visibility: str | None = None

    @property
    def external_ref(self) -> str:
        """Dedup key. Prefixed so equal ids from two calendars never collide."""
        if self.calendar_id:
            return f"{self.calendar_id}::{self.id}"
        return self.id

    @property
    def is_timed(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def is_restricted(self) -> bool:
        return self.visibility in ("private", "confidential")
