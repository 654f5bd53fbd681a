#!/usr/bin/env python3
"""
BlockOS CLI - run your day from the terminal.
"""

import os
import sys
import time as time_module
from datetime import datetime, time, timedelta

from blockos import config, paths
from blockos import db as db_module
from blockos.blocks import (
    Block,
    BlockStore,
    BlockType,
    CalendarSyncService,
    CurrentBlockResolver,
    RefactorService,
    Routine,
    RoutineStore,
    RoutineSync,
    SessionLifecycle,
    SessionStore,
    block_status,
    execution_stats,
)
from blockos.blocks.models import new_id
from blockos.blocks.sessions import expire_abandoned, find_restorable
from blockos.blocks.store import day_bounds
from blockos.collectors import GoogleCalendarCollector, load_calendar_config
from blockos.errors import BlockOSError, ValidationError
from blockos.observability import configure_logging
from blockos.state_store import get_store

WEEKDAYS = {"mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6, "sun": 7}


def print_header(text: str):
    """Print a section header."""
    print(f"\n{'═' * 50}")
    print(f"  {text}")
    print(f"{'═' * 50}")


def print_table(headers: list, rows: list, widths: list = None):
    """Print a simple table."""
    if not widths:
        widths = [max(len(str(row[i])) for row in [headers] + rows) for i in range(len(headers))]

    header_str = " │ ".join(str(h).ljust(w) for h, w in zip(headers, widths))
    print(header_str)
    print("─" * len(header_str))

    for row in rows:
        print(" │ ".join(str(c)[:w].ljust(w) for c, w in zip(row, widths)))


def _now() -> datetime:
    return datetime.now(config.local_tz())


def _hhmm(value: datetime) -> str:
    return value.astimezone(config.local_tz()).strftime("%H:%M")


def _owner() -> str:
    return config.DEFAULT_OWNER


def _stores():
    store = get_store()
    owner = _owner()
    return store, BlockStore(owner, store), SessionStore(owner, store)


def _restored_lifecycle(sessions: SessionStore, blocks: BlockStore, now: datetime):
    """The running timer picked up from the store, after aging out orphaned stops."""
    expire_abandoned(sessions, now)
    found = find_restorable(sessions, blocks, now)
    if found is None:
        return None
    lifecycle = SessionLifecycle(sessions)
    lifecycle.restore(*found, now)
    return lifecycle


# =============================================================================
# COMMANDS
# =============================================================================


def cmd_init(args):
    """Create directories and the database."""
    print_header("BlockOS - Setup")
    for d in (paths.app_home(), paths.config_dir(), paths.data_dir()):
        d.mkdir(parents=True, exist_ok=True)
        print(f"  ✓ {d}")

    store = get_store()
    info = db_module.get_db_info(store.db_path)
    print(f"  ✓ Database: {store.db_path} (schema v{info['user_version']}, {len(info['tables'])} tables)")

    sources = paths.config_dir() / "sources.yaml"
    if sources.exists():
        print("  ✓ sources.yaml")
    else:
        print("  ✗ sources.yaml missing (calendar sync uses defaults)")


def cmd_now(args):
    """Show the current block."""
    _, blocks, sessions = _stores()
    now = _now()
    current = CurrentBlockResolver(blocks, sessions).resolve_with_context(now)

    print_header(f"NOW: {now.strftime('%a %d %b %H:%M')}")
    if current is None:
        print("  Nothing scheduled right now.")
        last = sessions.last_resume_token()
        if last:
            print(f"  Next step: {last.resume_token}")
        return

    block = current.block
    status = block_status(block, current.latest_session, now)
    print(f"  {block.title}  [{block.type}]")
    print(f"  {_hhmm(block.planned_start)}–{_hhmm(block.planned_end)}  ({block.duration_min} min)")
    print(f"  Status: {status.label}")
    if block.stop_condition:
        print(f"  Done when: {block.stop_condition}")


def cmd_add(args):
    """Add a manual block today: add <title> <HH:MM> <minutes> [type]"""
    if len(args) < 3:
        print("Usage: add <title> <HH:MM> <minutes> [focus|admin|recovery|busy]")
        return
    tz = config.local_tz()
    start = datetime.combine(_now().date(), time.fromisoformat(args[1]), tzinfo=tz)
    block = Block(
        id=new_id("block"),
        owner=_owner(),
        title=args[0],
        type=args[3] if len(args) > 3 else BlockType.FOCUS,
        planned_start=start,
        planned_end=start + timedelta(minutes=int(args[2])),
        is_quick_add=True,
    )
    _, blocks, _ = _stores()
    blocks.insert(block)
    print(f"✓ Added {block.title} {_hhmm(block.planned_start)}–{_hhmm(block.planned_end)}")


def cmd_today(args):
    """Show today's blocks with their status."""
    _, blocks, sessions = _stores()
    now = _now()
    day_start, day_end = day_bounds(now.date(), config.local_tz())
    todays = [b for b in blocks.query(start=day_start, end=day_end) if b.planned_start < day_end]
    latest = sessions.latest_for_blocks([b.id for b in todays])

    print_header(f"TODAY: {now.date().isoformat()}")
    if not todays:
        print("  No blocks.")
        return

    rows = []
    for block in todays:
        status = block_status(block, latest.get(block.id), now)
        fixed = "fixed" if block.is_fixed else ""
        rows.append(
            [
                _hhmm(block.planned_start),
                _hhmm(block.planned_end),
                block.title,
                block.type,
                status.label,
                fixed,
            ]
        )
    print_table(["Start", "End", "Title", "Type", "Status", ""], rows, [5, 5, 30, 8, 11, 5])


def cmd_start(args):
    """Start the current block."""
    _, blocks, sessions = _stores()
    now = _now()
    running = _restored_lifecycle(sessions, blocks, now)
    if running is not None:
        print(f"{running.snapshot.block.title} is already running ({running.elapsed_seconds // 60} min)")
        return
    block = CurrentBlockResolver(blocks, sessions).resolve(now)
    if block is None:
        print("Nothing to start right now.")
        return
    session = SessionLifecycle(sessions).start(block, now)
    print(f"▶ {block.title} started ({session.time_to_start}s after plan)")


def cmd_done(args):
    """Complete the running block: done [next step]"""
    _, blocks, sessions = _stores()
    now = _now()
    lifecycle = _restored_lifecycle(sessions, blocks, now)
    if lifecycle is None:
        print("No running session.")
        return
    lifecycle.complete(now, resume_token=" ".join(args) or None)
    print(f"✓ Done after {lifecycle.elapsed_seconds // 60} min")


def cmd_stop(args):
    """Stop the running block with an undo countdown: stop [reason]"""
    _, blocks, sessions = _stores()
    now = _now()
    lifecycle = _restored_lifecycle(sessions, blocks, now)
    if lifecycle is None:
        print("No running session.")
        return

    lifecycle.stop(now, abort_reason=" ".join(args) or None)
    seconds = int(lifecycle.undo_window.total_seconds())
    print(f"■ Stopping in {seconds}s - Ctrl+C to undo")
    try:
        for remaining in range(seconds, 0, -1):
            print(f"  {remaining}…", flush=True)
            time_module.sleep(1)
    except KeyboardInterrupt:
        lifecycle.undo(_now())
        print("\n↺ Resumed")
        return
    lifecycle.confirm_stop(_now())
    print("✗ Stopped")


def cmd_skip(args):
    """Skip the current block: skip [reason]"""
    _, blocks, sessions = _stores()
    now = _now()
    block = CurrentBlockResolver(blocks, sessions).resolve(now)
    if block is None:
        print("Nothing to skip right now.")
        return
    SessionLifecycle(sessions).skip(block, now, reason=" ".join(args) or None)
    print(f"⏭ Skipped {block.title}")


def cmd_routine(args):
    """Add a routine: routine <title> <HH:MM> <minutes> <mon,wed,fri> [type]"""
    store = get_store()
    routines = RoutineStore(_owner(), store)
    if not args:
        rows = [
            [
                r.title,
                r.start_time.strftime("%H:%M"),
                r.duration_minutes,
                ",".join(map(str, sorted(r.recurrence_days))),
            ]
            for r in routines.list()
        ]
        print_header("ROUTINES")
        if rows:
            print_table(["Title", "At", "Min", "Days"], rows, [30, 5, 4, 13])
        else:
            print("  None.")
        return
    if len(args) < 4:
        print("Usage: routine <title> <HH:MM> <minutes> <mon,wed,fri> [type]")
        return
    try:
        days = frozenset(WEEKDAYS[d.strip().lower()[:3]] for d in args[3].split(","))
    except KeyError as e:
        raise ValidationError(f"unknown weekday {e}") from e
    routine = Routine(
        id=new_id("routine"),
        owner=_owner(),
        title=args[0],
        type=args[4] if len(args) > 4 else BlockType.FOCUS,
        start_time=args[1],
        duration_minutes=int(args[2]),
        recurrence_days=days,
    )
    routines.insert(routine)
    print(f"✓ Routine {routine.title} added")


def cmd_expand(args):
    """Materialize routines into blocks."""
    store, blocks, _ = _stores()
    horizon = int(args[0]) if args else None
    result = RoutineSync(blocks, RoutineStore(_owner(), store), horizon).run(_now())
    if result.success:
        print(f"✓ {len(result.inserted)} routine blocks created")
    else:
        print(f"✗ Routine expansion failed: {result.error}")


def cmd_sync(args):
    """Sync Google Calendar: sync [--force]"""
    store, blocks, _ = _stores()
    calendar_config = load_calendar_config()
    service = CalendarSyncService(
        blocks,
        GoogleCalendarCollector(calendar_config),
        store,
        lookahead_days=int(calendar_config.get("lookahead_days", 7)),
    )
    outcome = service.sync(_now(), force="--force" in args)

    if not outcome.synced:
        print(f"Not synced: {outcome.reason}" + (f" (last {outcome.last_sync})" if outcome.last_sync else ""))
    else:
        result = outcome.result
        print(f"✓ {result.synced} events synced ({result.inserted} new, {result.updated} updated)")
    for error in outcome.errors:
        print(f"  ⚠ {error}")


def cmd_refactor(args):
    """Re-flow the rest of today: refactor [--apply]"""
    _, blocks, _ = _stores()
    result = RefactorService(blocks).run(_now(), apply="--apply" in args)

    print_header("REFACTOR")
    print(f"  {result.message}")
    rows = [[b.title, _hhmm(b.planned_start), _hhmm(b.planned_end)] for b in result.proposal]
    if rows:
        print_table(["Block", "New start", "New end"], rows, [30, 9, 7])
        if not result.applied:
            print("\nRun 'refactor --apply' to commit.")


def cmd_stats(args):
    """Show execution statistics: stats [days]"""
    _, _, sessions = _stores()
    days = int(args[0]) if args else 7
    stats = execution_stats(sessions, _now(), days=days)

    print_header(f"STATS (last {days} days)")
    best = f"{stats.best_hour:02d}:00" if stats.best_hour is not None else "-"
    print(f"  Avg time to start:  {stats.avg_time_to_start // 60}m {stats.avg_time_to_start % 60}s")
    print(f"  Completion rate:    {stats.completion_rate}%")
    print(f"  Overrun rate:       {stats.overrun_rate}%")
    print(f"  Best hour:          {best}")
    print(f"  Focus minutes:      {stats.total_focus_minutes}")
    print(f"  Completed/aborted:  {stats.blocks_completed}/{stats.blocks_aborted}")


def cmd_help(args):
    """Show help."""
    print("""
BlockOS CLI

USAGE: blockos <command> [args]

COMMANDS:

  init                 Create directories and the database
  now                  Show the current block
  today                Show today's blocks
  add <t> <HH:MM> <m>  Add a manual block today
  start                Start the current block
  done [next step]     Complete the running block
  stop [reason]        Stop the running block (5s undo)
  skip [reason]        Skip the current block
  routine [...]        List routines, or add one
  expand [days]        Materialize routines into blocks
  sync [--force]       Sync Google Calendar
  refactor [--apply]   Re-flow the rest of today
  stats [days]         Show execution statistics
  help                 Show this help
""")


COMMANDS = {
    "init": cmd_init,
    "now": cmd_now,
    "n": cmd_now,
    "today": cmd_today,
    "t": cmd_today,
    "add": cmd_add,
    "start": cmd_start,
    "done": cmd_done,
    "stop": cmd_stop,
    "skip": cmd_skip,
    "routine": cmd_routine,
    "expand": cmd_expand,
    "sync": cmd_sync,
    "s": cmd_sync,
    "refactor": cmd_refactor,
    "r": cmd_refactor,
    "stats": cmd_stats,
    "help": cmd_help,
    "h": cmd_help,
}


def main():
    """Main entry point."""
    configure_logging(level=os.environ.get("BLOCKOS_LOG_LEVEL", "WARNING"), json_format=False)
    if len(sys.argv) < 2:
        cmd_help([])
        return

    cmd = sys.argv[1]
    args = sys.argv[2:]

    if cmd not in COMMANDS:
        print(f"Unknown command: {cmd}")
        print("Run 'help' for available commands.")
        sys.exit(2)

    try:
        COMMANDS[cmd](args)
    except BlockOSError as e:
        print(f"✗ {type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
