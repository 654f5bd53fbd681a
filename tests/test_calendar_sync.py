"""
Tests for calendar reconciliation and the sync service around it.

Covers:
- Upsert per event ref (idempotent), distinct blocks per source calendar
- Placeholder titles for restricted/untitled events
- Per-event failure isolation
- Freshness window, force, and upstream failure bookkeeping
"""

from datetime import timedelta

import pytest

from blockos.blocks.calendar_sync import CalendarReconciler, CalendarSyncService, event_title
from blockos.blocks.models import BlockOrigin, BlockType
from blockos.errors import UpstreamError
from tests.factories import MONDAY, at, make_block, make_event


class FakeSource:
    """Provider adapter stand-in: returns canned events, records windows."""

    def __init__(self, events=None, error: Exception = None, errors=None):
        self.events = events or []
        self.error = error
        self.errors = errors or []
        self.windows = []

    def fetch_events(self, time_min, time_max):
        self.windows.append((time_min, time_max))
        if self.error:
            raise self.error
        return list(self.events)


@pytest.fixture
def reconciler(block_store):
    return CalendarReconciler(block_store, block_type="busy")


# =============================================================================
# RECONCILER
# =============================================================================


class TestReconciler:
    def test_new_event_becomes_calendar_block(self, reconciler, block_store):
        event = make_event("e1", start=at(14), minutes=60, link="https://cal/e1")
        result = reconciler.reconcile([event], at(12))

        assert (result.synced, result.inserted, result.updated) == (1, 1, 0)
        assert result.reconciled_at == at(12)
        assert result.to_dict()["reconciled_at"] == at(12).isoformat()
        block = block_store.find_by_external_ref("primary::e1")
        assert block.origin == BlockOrigin.CALENDAR
        assert block.type == BlockType.BUSY
        assert block.planned_start == at(14)
        assert block.planned_end == at(15)
        assert block.external_task_links == ["https://cal/e1"]
        assert block.is_fixed

    def test_same_event_twice_updates(self, reconciler, block_store):
        reconciler.reconcile([make_event("e1", start=at(14), title="Old")], at(12))
        result = reconciler.reconcile([make_event("e1", start=at(15), title="Moved")], at(12))

        assert (result.inserted, result.updated) == (0, 1)
        blocks = block_store.query()
        assert len(blocks) == 1
        assert blocks[0].title == "Moved"
        assert blocks[0].planned_start == at(15)

    def test_same_raw_id_two_calendars(self, reconciler, block_store):
        reconciler.reconcile(
            [
                make_event("e1", calendar_id="work@example.com"),
                make_event("e1", calendar_id="home@example.com"),
            ],
            at(12),
        )
        refs = sorted(b.external_calendar_ref for b in block_store.query())
        assert refs == ["home@example.com::e1", "work@example.com::e1"]

    def test_all_day_events_dropped(self, reconciler, block_store):
        all_day = make_event("holiday")
        all_day.start = all_day.end = None
        result = reconciler.reconcile([all_day, make_event("e2")], at(12))

        assert result.synced == 1
        assert len(block_store.query()) == 1

    def test_manual_blocks_untouched(self, reconciler, block_store):
        manual = block_store.insert(make_block(title="Mine", start=at(14), minutes=60))
        reconciler.reconcile([make_event("e1", start=at(14), minutes=60)], at(12))

        assert block_store.get(manual.id).title == "Mine"
        assert len(block_store.query()) == 2

    def test_bad_event_does_not_stop_others(self, reconciler, block_store):
        broken = make_event("broken", start=at(14), minutes=60)
        broken.end = at(13)
        result = reconciler.reconcile([broken, make_event("ok", start=at(16))], at(12))

        assert result.synced == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("primary::broken")
        assert block_store.find_by_external_ref("primary::ok") is not None

    def test_default_block_type_is_focus(self, block_store):
        CalendarReconciler(block_store).reconcile([make_event("e1")], at(12))
        assert block_store.query()[0].type == BlockType.FOCUS


class TestEventTitle:
    def test_title_kept(self):
        assert event_title(make_event(title="1:1")) == "1:1"

    def test_private_without_title_is_busy(self):
        assert event_title(make_event(title=None, visibility="private")) == "Busy"

    def test_untitled(self):
        assert event_title(make_event(title=None)) == "Untitled Event"


# =============================================================================
# SYNC SERVICE
# =============================================================================


class TestCalendarSyncService:
    def _service(self, block_store, state, source, **kwargs):
        return CalendarSyncService(block_store, source, state, **kwargs)

    def test_first_sync_runs(self, block_store, state):
        source = FakeSource([make_event("e1", start=at(14))])
        outcome = self._service(block_store, state, source).sync(at(9))

        assert outcome.synced
        assert outcome.result.inserted == 1
        assert outcome.result.reconciled_at == at(9)
        assert state.get_sync_state("calendar:u1")["last_success"] == at(9).isoformat()

    def test_window_is_today_plus_lookahead(self, block_store, state):
        source = FakeSource()
        self._service(block_store, state, source, lookahead_days=7).sync(at(9, 30))

        time_min, time_max = source.windows[0]
        assert time_min == at(0)
        assert time_max == at(0, day=MONDAY + timedelta(days=7))

    def test_fresh_cache_skips(self, block_store, state):
        source = FakeSource([make_event("e1")])
        service = self._service(block_store, state, source)
        service.sync(at(9))

        outcome = service.sync(at(9, 30))
        assert not outcome.synced
        assert outcome.reason == "cache_valid"
        assert outcome.last_sync == at(9).isoformat()
        assert len(source.windows) == 1

    def test_stale_cache_resyncs(self, block_store, state):
        source = FakeSource([make_event("e1")])
        service = self._service(block_store, state, source, freshness=timedelta(minutes=60))
        service.sync(at(9))

        assert service.sync(at(10, 1)).synced
        assert len(source.windows) == 2

    def test_force_ignores_cache(self, block_store, state):
        source = FakeSource([make_event("e1")])
        service = self._service(block_store, state, source)
        service.sync(at(9))

        outcome = service.sync(at(9, 5), force=True)
        assert outcome.synced
        assert outcome.result.updated == 1

    def test_upstream_failure_recorded(self, block_store, state):
        source = FakeSource(error=UpstreamError("all 2 calendars failed"))
        outcome = self._service(block_store, state, source).sync(at(9))

        assert not outcome.synced
        assert outcome.reason == "upstream_error"
        row = state.get_sync_state("calendar:u1")
        assert row["last_success"] is None
        assert row["error"] == "all 2 calendars failed"

    def test_failure_does_not_count_as_fresh(self, block_store, state):
        service = self._service(block_store, state, FakeSource(error=UpstreamError("down")))
        service.sync(at(9))

        service.source = FakeSource([make_event("e1")])
        assert service.sync(at(9, 1)).synced

    def test_partial_calendar_errors_surface(self, block_store, state):
        source = FakeSource([make_event("e1")], errors=["shared@example.com: 403"])
        outcome = self._service(block_store, state, source).sync(at(9))

        assert outcome.synced
        assert outcome.errors == ["shared@example.com: 403"]
        assert outcome.to_dict()["block_count"] == 1
