"""
Centralized configuration for BlockOS.

Values that vary by deployment belong here.
Override via environment variables where marked.
"""

import os
from zoneinfo import ZoneInfo

# ============================================================
# Identity
# ============================================================

DEFAULT_OWNER: str = os.environ.get("BLOCKOS_OWNER", "local")
"""Owner id used by the CLI when none is given."""

TIMEZONE_NAME: str = os.environ.get("BLOCKOS_TIMEZONE", "UTC")
"""Zone in which calendar days (routine days, 'today') are computed."""


def local_tz() -> ZoneInfo:
    return ZoneInfo(TIMEZONE_NAME)


# ============================================================
# Scheduling
# ============================================================

REFACTOR_BUFFER_MINUTES: int = int(os.environ.get("BLOCKOS_REFACTOR_BUFFER_MINUTES", "5"))
"""Transition buffer inserted after every block during a refactor."""

REFACTOR_GRANULARITY_MINUTES: int = int(
    os.environ.get("BLOCKOS_REFACTOR_GRANULARITY_MINUTES", "5")
)
"""The refactor cursor starts at the next boundary of this many minutes."""

ROUTINE_HORIZON_DAYS: int = int(os.environ.get("BLOCKOS_ROUTINE_HORIZON_DAYS", "7"))
"""Rolling window over which routines are materialized into blocks."""

# ============================================================
# Calendar
# ============================================================

CALENDAR_FRESHNESS_MINUTES: int = int(os.environ.get("BLOCKOS_CALENDAR_FRESHNESS_MINUTES", "60"))
"""A calendar sync newer than this is reused unless forced."""

CALENDAR_BLOCK_TYPE: str = os.environ.get("BLOCKOS_CALENDAR_BLOCK_TYPE", "focus")
"""Block type given to newly imported calendar events."""

# ============================================================
# Sessions
# ============================================================

UNDO_COUNTDOWN_SECONDS: int = int(os.environ.get("BLOCKOS_UNDO_COUNTDOWN_SECONDS", "5"))
"""Window after Stop during which the user may undo."""

ACTIVE_SESSION_LOOKBACK_HOURS: int = int(
    os.environ.get("BLOCKOS_ACTIVE_SESSION_LOOKBACK_HOURS", "24")
)
"""Only un-finalized sessions started this recently are restored."""

# ============================================================
# Logging
# ============================================================

LOG_LEVEL: str = os.environ.get("BLOCKOS_LOG_LEVEL", "INFO")

_log_json = os.environ.get("BLOCKOS_LOG_JSON")
LOG_JSON: bool | None = None if _log_json is None else _log_json.lower() in ("1", "true", "yes")
"""JSON log lines. None means auto-detect (JSON when stderr is not a TTY)."""
