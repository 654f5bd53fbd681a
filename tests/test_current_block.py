"""
Tests for CurrentBlockResolver.

The active block is the most recently started block containing "now" that
whose latest session is not finished (done/aborted/skipped).
"""

import pytest

from blockos.blocks.models import BlockOrigin, Outcome
from blockos.blocks.resolver import CurrentBlockResolver, pick_current
from blockos.blocks.sessions import SessionLifecycle
from tests.factories import at, make_block


@pytest.fixture
def resolver(block_store, session_store):
    return CurrentBlockResolver(block_store, session_store)


# =============================================================================
# PURE SELECTION
# =============================================================================


class TestPickCurrent:
    def test_nothing_scheduled(self):
        assert pick_current([], set(), at(9)) is None

    def test_single_block(self):
        block = make_block(start=at(9), minutes=60)
        assert pick_current([block], set(), at(9, 30)) is block

    def test_latest_start_wins(self):
        long = make_block(title="long", start=at(8), minutes=180)
        short = make_block(title="short", start=at(9, 30), minutes=30)
        assert pick_current([long, short], set(), at(9, 45)).title == "short"

    def test_finished_block_passed_over(self):
        long = make_block(title="long", start=at(8), minutes=180)
        short = make_block(title="short", start=at(9, 30), minutes=30)
        assert pick_current([long, short], {short.id}, at(9, 45)).title == "long"

    def test_all_finished(self):
        block = make_block(start=at(9))
        assert pick_current([block], {block.id}, at(9, 10)) is None

    def test_boundaries_inclusive(self):
        block = make_block(start=at(9), minutes=30)
        assert pick_current([block], set(), at(9)) is block
        assert pick_current([block], set(), at(9, 30)) is block

    def test_equal_starts_keep_input_order(self):
        a = make_block(title="a", start=at(9), minutes=60)
        b = make_block(title="b", start=at(9), minutes=30)
        assert pick_current([a, b], set(), at(9, 10)).title == "a"

    def test_ignores_blocks_not_containing_now(self):
        later = make_block(start=at(11))
        assert pick_current([later], set(), at(9)) is None


# =============================================================================
# STORE-BACKED RESOLUTION
# =============================================================================


class TestResolver:
    def test_resolves_from_store(self, resolver, block_store):
        block = block_store.insert(make_block(start=at(9), minutes=60))
        assert resolver.resolve(at(9, 15)).id == block.id

    def test_nothing_now(self, resolver, block_store):
        block_store.insert(make_block(start=at(9), minutes=60))
        assert resolver.resolve(at(12)) is None

    def test_done_block_skipped_for_overlapping(self, resolver, block_store, session_store):
        meeting = block_store.insert(
            make_block(title="meeting", start=at(9), minutes=120, origin=BlockOrigin.CALENDAR)
        )
        focus = block_store.insert(make_block(title="focus", start=at(9, 30), minutes=30))
        session = session_store.create(focus, at(9, 30), 0)
        session_store.finalize(session.id, Outcome.DONE, at(9, 45))

        assert resolver.resolve(at(9, 50)).id == meeting.id

    def test_running_block_is_still_current(self, resolver, block_store, session_store):
        block = block_store.insert(make_block(start=at(9), minutes=60))
        session = session_store.create(block, at(9, 2), 120)

        current = resolver.resolve_with_context(at(9, 20))
        assert current.block.id == block.id
        assert current.latest_session.id == session.id

    def test_abandoned_session_does_not_finish_block(self, resolver, block_store, session_store):
        block = block_store.insert(make_block(start=at(9), minutes=60))
        session = session_store.create(block, at(9), 0)
        session_store.mark_abandoned(session.id)

        assert resolver.resolve(at(9, 20)).id == block.id

    def test_restarted_block_is_current_again(self, resolver, block_store, session_store):
        """Only the latest session decides; a retry after an abort is live."""
        block = block_store.insert(make_block(start=at(9), minutes=60))
        lifecycle = SessionLifecycle(session_store, undo_seconds=5)
        lifecycle.start(block, at(9))
        lifecycle.stop(at(9, 10))
        lifecycle.confirm_stop(at(9, 10, 5))
        lifecycle.reset()
        retry = lifecycle.start(block, at(9, 15))

        current = resolver.resolve_with_context(at(9, 20))
        assert current.block.id == block.id
        assert current.latest_session.id == retry.id
        assert current.latest_session.outcome is None

    def test_several_finished_sessions_keep_block_finished(self, resolver, block_store, session_store):
        block = block_store.insert(make_block(start=at(9), minutes=60))
        first = session_store.create(block, at(9), 0)
        session_store.finalize(first.id, Outcome.ABORTED, at(9, 10))
        second = session_store.create(block, at(9, 15), 900)
        session_store.finalize(second.id, Outcome.DONE, at(9, 18))

        assert resolver.resolve(at(9, 20)) is None

    def test_context_serialises(self, resolver, block_store):
        block_store.insert(make_block(start=at(9), minutes=60))
        data = resolver.resolve_with_context(at(9, 15)).to_dict()
        assert data["latest_session"] is None
        assert data["block"]["planned_start"] == at(9).isoformat()
