"""Tests for per-block status labels."""

import pytest

from blockos.blocks.models import BlockType, Outcome, Session
from blockos.blocks.status import BlockStatus, block_status, is_trackable
from tests.factories import OWNER, at, make_block


def _session(block, outcome=None):
    return Session(
        id="s1", owner=OWNER, block_ref=block.id, actual_start=block.planned_start, outcome=outcome
    )


@pytest.fixture
def focus():
    return make_block(title="Write", start=at(10), minutes=60)


class TestTrackable:
    def test_far_ahead_is_upcoming(self, focus):
        info = block_status(focus, None, at(9, 30))
        assert info.status == BlockStatus.UPCOMING
        assert info.can_start and info.can_skip
        assert not info.shows_in_stats

    def test_ready_within_15_minutes(self, focus):
        assert block_status(focus, None, at(9, 45)).status == BlockStatus.READY
        assert block_status(focus, None, at(10, 30)).status == BlockStatus.READY

    def test_missed_after_end(self, focus):
        info = block_status(focus, None, at(11))
        assert info.status == BlockStatus.MISSED
        assert info.label == "Missed"
        assert not info.can_start
        assert info.can_skip
        assert info.shows_in_stats

    def test_running_session_is_active(self, focus):
        info = block_status(focus, _session(focus), at(10, 10))
        assert info.status == BlockStatus.ACTIVE
        assert info.label == "In Progress"
        assert not info.can_start

    def test_abandoned_still_active(self, focus):
        info = block_status(focus, _session(focus, Outcome.ABANDONED), at(10, 10))
        assert info.status == BlockStatus.ACTIVE

    @pytest.mark.parametrize(
        "outcome,status,label",
        [
            (Outcome.DONE, BlockStatus.DONE, "Completed"),
            (Outcome.ABORTED, BlockStatus.STOPPED, "Stopped"),
            (Outcome.SKIPPED, BlockStatus.SKIPPED, "Skipped"),
        ],
    )
    def test_finished(self, focus, outcome, status, label):
        info = block_status(focus, _session(focus, outcome), at(12))
        assert info.status == status
        assert info.label == label
        assert info.shows_in_stats
        assert not info.can_start


class TestNonTrackable:
    @pytest.fixture
    def lunch(self):
        return make_block(title="Lunch", start=at(12), minutes=60, type=BlockType.RECOVERY)

    def test_recovery_is_not_trackable(self):
        assert is_trackable(BlockType.FOCUS)
        assert is_trackable(BlockType.ADMIN)
        assert not is_trackable(BlockType.RECOVERY)
        assert not is_trackable(BlockType.BUSY)

    def test_scheduled_before_start(self, lunch):
        info = block_status(lunch, None, at(11))
        assert info.status == BlockStatus.UPCOMING
        assert info.label == "Scheduled"
        assert not info.can_start

    def test_acknowledged_during_and_after(self, lunch):
        during = block_status(lunch, None, at(12, 30))
        after = block_status(lunch, None, at(14))
        assert during.status == after.status == BlockStatus.ACKNOWLEDGED
        assert during.label == "In Progress"
        assert after.label == "Done"
        assert not after.shows_in_stats

    def test_to_dict(self, lunch):
        data = block_status(lunch, None, at(11)).to_dict()
        assert data["status"] == "upcoming"
        assert data["can_skip"] is False
