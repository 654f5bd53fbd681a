"""
BlockOS API Tests

Tests for api/server.py endpoints through TestClient. The store, clock and
calendar source are swapped via dependency_overrides so no request ever
touches the real database or Google.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from api.server import app, get_calendar_config, get_event_source, get_now, get_state
from blockos.blocks.models import BlockOrigin, BlockType
from blockos.blocks.sessions import SessionLifecycle
from blockos.errors import NotFoundError, PersistenceError, UpstreamError, ValidationError
from tests.factories import OWNER, at, make_block, make_event, make_routine

NOW = at(9, 7)


class FakeSource:
    def __init__(self, events=None, error=None):
        self.events = events or []
        self.error = error
        self.errors = []

    def fetch_events(self, time_min, time_max):
        if self.error:
            raise self.error
        return list(self.events)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def client(state, source):
    app.dependency_overrides[get_state] = lambda: state
    app.dependency_overrides[get_now] = lambda: NOW
    app.dependency_overrides[get_event_source] = lambda: source
    app.dependency_overrides[get_calendar_config] = lambda: {"lookahead_days": 7}
    yield TestClient(app)
    app.dependency_overrides.clear()


def _get(client, path, **params):
    return client.get(path, params={"owner": OWNER, **params})


def _post(client, path, body=None):
    return client.post(path, params={"owner": OWNER}, json=body)


# =============================================================================
# ENVELOPE / MIDDLEWARE
# =============================================================================


class TestEnvelope:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["data"]["healthy"] is True
        assert data["data"]["schema_version"] >= 1
        assert data["computed_at"] == NOW.isoformat()

    def test_request_id_generated(self, client):
        response = client.get("/api/health")
        assert response.headers["x-request-id"].startswith("req-")

    def test_request_id_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-test123"})
        assert response.headers["x-request-id"] == "req-test123"


class TestErrorMapping:
    @pytest.mark.parametrize(
        "error,status",
        [
            (ValidationError("bad range"), 422),
            (NotFoundError("gone"), 404),
            (UpstreamError("google down"), 502),
            (PersistenceError("disk full"), 503),
        ],
    )
    def test_engine_errors(self, client, error, status):
        with patch("api.server.execution_stats", side_effect=error):
            response = _get(client, "/api/stats")
        assert response.status_code == status
        body = response.json()
        assert body["status"] == "error"
        assert body["error"] == str(error)
        assert body["error_code"] == type(error).__name__

    def test_bad_query_param(self, client):
        assert _get(client, "/api/stats", days=0).status_code == 422

    def test_bad_body(self, client):
        assert _post(client, "/api/routines/expand", {"horizon_days": 0}).status_code == 422


# =============================================================================
# CURRENT BLOCK
# =============================================================================


class TestCurrentBlock:
    def test_nothing_scheduled(self, client):
        data = _get(client, "/api/blocks/current").json()["data"]
        assert data == {"current": None, "last_resume_token": None}

    def test_current_with_status(self, client, block_store):
        block = block_store.insert(make_block(title="Write", start=at(9), minutes=60))
        data = _get(client, "/api/blocks/current").json()["data"]

        assert data["current"]["block"]["id"] == block.id
        assert data["current"]["latest_session"] is None
        assert data["current"]["status"]["status"] == "ready"

    def test_other_owner_not_visible(self, client, block_store):
        block_store.insert(make_block(start=at(9), minutes=60))
        response = client.get("/api/blocks/current", params={"owner": "someone-else"})
        assert response.json()["data"]["current"] is None

    def test_last_resume_token(self, client, block_store, session_store):
        earlier = block_store.insert(make_block(start=at(8), minutes=30))
        lifecycle = SessionLifecycle(session_store)
        lifecycle.start(earlier, at(8))
        lifecycle.complete(at(8, 30), resume_token="draft intro")

        data = _get(client, "/api/blocks/current").json()["data"]
        assert data["last_resume_token"] == "draft intro"


# =============================================================================
# REFACTOR
# =============================================================================


class TestRefactor:
    @pytest.fixture
    def fluid(self, block_store):
        return block_store.insert(make_block(title="Write", start=at(9, 30), minutes=30))

    def test_preview_does_not_write(self, client, block_store, fluid):
        data = _post(client, "/api/blocks/refactor").json()["data"]
        assert data["message"] == "Would move 1 block(s)"
        assert data["applied"] is False
        assert data["proposal"][0]["id"] == fluid.id
        assert block_store.get(fluid.id).planned_start == at(9, 30)

    def test_apply(self, client, block_store, fluid):
        data = _post(client, "/api/blocks/refactor", {"apply": True}).json()["data"]
        assert data["message"] == "Moved 1 block(s)"
        assert block_store.get(fluid.id).planned_start == at(9, 10)
        assert block_store.get(fluid.id).planned_end == at(9, 40)

    def test_already_optimal(self, client, block_store):
        block_store.insert(
            make_block(start=at(10), minutes=60, origin=BlockOrigin.CALENDAR, type=BlockType.BUSY)
        )
        data = _post(client, "/api/blocks/refactor").json()["data"]
        assert data["message"] == "Your schedule is already optimal!"
        assert data["proposal"] is None


# =============================================================================
# ROUTINES / CALENDAR / STATS
# =============================================================================


class TestRoutines:
    def test_expand(self, client, routine_store, block_store):
        routine_store.insert(make_routine(days=(1, 3, 5)))
        data = _post(client, "/api/routines/expand", {"horizon_days": 7}).json()["data"]
        assert data["success"] is True
        assert data["inserted"] == 3

        again = _post(client, "/api/routines/expand").json()["data"]
        assert again["inserted"] == 0
        assert len(block_store.query()) == 3

    def test_no_routines(self, client):
        data = _post(client, "/api/routines/expand").json()["data"]
        assert data == {"success": True, "inserted": 0, "blocks": [], "error": None}


class TestCalendarSync:
    def test_sync_then_cache(self, client, source, block_store):
        source.events = [make_event("e1", start=at(14)), make_event("e2", start=at(16))]

        first = _post(client, "/api/calendar/sync").json()["data"]
        assert first["synced"] is True
        assert first["block_count"] == 2
        assert first["inserted"] == 2
        assert block_store.find_by_external_ref("primary::e1") is not None

        second = _post(client, "/api/calendar/sync").json()["data"]
        assert second["synced"] is False
        assert second["reason"] == "cache_valid"

        forced = _post(client, "/api/calendar/sync", {"force": True}).json()["data"]
        assert forced["synced"] is True
        assert forced["updated"] == 2

    def test_upstream_error_is_502(self, client, source):
        source.error = UpstreamError("token expired")
        response = _post(client, "/api/calendar/sync")
        assert response.status_code == 502
        assert "token expired" in response.json()["error"]


class TestStats:
    def test_empty_stats(self, client):
        data = _get(client, "/api/stats").json()["data"]
        assert data["completion_rate"] == 0
        assert data["best_hour"] is None
        assert data["since"] == "2026-10-12"

    def test_counts_finished_sessions(self, client, block_store, session_store):
        block = block_store.insert(make_block(start=at(8), minutes=30))
        lifecycle = SessionLifecycle(session_store)
        lifecycle.start(block, at(8, 1))
        lifecycle.complete(at(8, 25))

        data = _get(client, "/api/stats", days=1).json()["data"]
        assert data["blocks_completed"] == 1
        assert data["completion_rate"] == 100
        assert data["avg_time_to_start"] == 60
