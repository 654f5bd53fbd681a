"""
Declarative Schema Definition.

Every table, column and index for BlockOS lives here. The schema_engine reads
this and converges any database to match.

Adding a column = add one line here. The engine handles the rest.

Column definitions use CREATE TABLE syntax. The schema_engine knows how
to derive ALTER TABLE ADD COLUMN DDL (strips PK, adjusts NOT NULL, etc.).
"""

from collections import OrderedDict

# =============================================================================
# Schema version — bump when you change this file
# =============================================================================
SCHEMA_VERSION = 3

# =============================================================================
# Table Definitions
#
# Format: TABLES[name] = {"columns": [(col_name, col_ddl), ...]}
# =============================================================================

TABLES: dict[str, dict] = OrderedDict()

# ---------------------------------------------------------------------------
# blocks: planned units of time
# ---------------------------------------------------------------------------
TABLES["blocks"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("owner", "TEXT NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("type", "TEXT NOT NULL DEFAULT 'focus'"),
        # ISO-8601 UTC, lexical order == chronological order
        ("planned_start", "TEXT NOT NULL"),
        ("planned_end", "TEXT NOT NULL"),
        ("origin", "TEXT NOT NULL DEFAULT 'manual'"),
        # Variant fields
        ("external_calendar_ref", "TEXT"),
        ("routine_ref", "TEXT"),
        ("routine_day", "TEXT"),
        # Execution intent
        ("stop_condition", "TEXT"),
        ("external_task_links", "TEXT"),
        ("is_quick_add", "INTEGER NOT NULL DEFAULT 0"),
        # Timestamps
        ("created_at", "TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))"),
        ("updated_at", "TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))"),
    ],
}

# ---------------------------------------------------------------------------
# sessions: execution attempts against a block
# ---------------------------------------------------------------------------
TABLES["sessions"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("owner", "TEXT NOT NULL"),
        ("block_ref", "TEXT REFERENCES blocks(id) ON DELETE CASCADE"),
        ("actual_start", "TEXT NOT NULL"),
        ("actual_end", "TEXT"),
        ("outcome", "TEXT"),
        ("abort_reason", "TEXT"),
        ("resume_token", "TEXT"),
        ("time_to_start", "INTEGER NOT NULL DEFAULT 0"),
        # Creation order decides "latest"; seq breaks same-instant ties
        ("seq", "INTEGER NOT NULL DEFAULT 0"),
        ("created_at", "TEXT NOT NULL"),
        ("updated_at", "TEXT"),
    ],
}

# ---------------------------------------------------------------------------
# routines: recurring templates
# ---------------------------------------------------------------------------
TABLES["routines"] = {
    "columns": [
        ("id", "TEXT PRIMARY KEY"),
        ("owner", "TEXT NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("type", "TEXT NOT NULL DEFAULT 'focus'"),
        ("start_time", "TEXT NOT NULL"),  # HH:MM
        ("duration_minutes", "INTEGER NOT NULL"),
        ("recurrence_days", "TEXT NOT NULL DEFAULT '[]'"),  # JSON list of 1..7
        ("created_at", "TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))"),
    ],
}

# ---------------------------------------------------------------------------
# sync_state: last attempt / last success per source key
# ---------------------------------------------------------------------------
TABLES["sync_state"] = {
    "columns": [
        ("source", "TEXT PRIMARY KEY"),
        ("last_sync", "TEXT"),
        ("last_success", "TEXT"),
        ("items_synced", "INTEGER DEFAULT 0"),
        ("error", "TEXT"),
    ],
}

# =============================================================================
# Indexes
#
# Format: (index_name, table, columns_expr, where_clause_or_None)
# =============================================================================

INDEXES: list[tuple[str, str, str, str | None]] = [
    ("idx_blocks_owner_start", "blocks", "owner, planned_start", None),
    ("idx_blocks_owner_end", "blocks", "owner, planned_end", None),
    ("idx_sessions_block", "sessions", "block_ref, seq DESC", None),
    ("idx_sessions_owner_start", "sessions", "owner, actual_start", None),
    ("idx_routines_owner", "routines", "owner", None),
]

# Uniqueness backstops for check-then-insert writers (calendar upsert,
# routine expansion). Same tuple format as INDEXES.
UNIQUE_INDEXES: list[tuple[str, str, str, str | None]] = [
    (
        "uq_blocks_owner_calendar_ref",
        "blocks",
        "owner, external_calendar_ref",
        "external_calendar_ref IS NOT NULL",
    ),
    (
        "uq_blocks_routine_day",
        "blocks",
        "owner, routine_ref, routine_day",
        "routine_ref IS NOT NULL AND routine_day IS NOT NULL",
    ),
]
