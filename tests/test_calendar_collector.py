"""
Tests for the Google Calendar adapter.

The Google service is a MagicMock; nothing talks to the network.
"""

from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from blockos.collectors.calendar import (
    GoogleCalendarCollector,
    load_calendar_config,
    parse_event_time,
)
from blockos.errors import UpstreamError
from tests.factories import at

NO_RETRY = {"max_retries": 0}


def _event(event_id, start="2026-10-19T14:00:00Z", end="2026-10-19T15:00:00Z", **fields):
    return {"id": event_id, "start": {"dateTime": start}, "end": {"dateTime": end}, **fields}


def _service(events_by_calendar: dict, calendar_list=None):
    """Fake discovery service. A value that is an Exception is raised on execute."""
    service = MagicMock()

    def events_list(calendarId, **kwargs):
        request = MagicMock()
        result = events_by_calendar[calendarId]
        if isinstance(result, Exception):
            request.execute.side_effect = result
        else:
            request.execute.return_value = {"items": result}
        return request

    service.events.return_value.list.side_effect = events_list
    service.calendarList.return_value.list.return_value.execute.return_value = {
        "items": [{"id": cid} for cid in (calendar_list or [])]
    }
    return service


def _collector(service, calendar_ids=None):
    config = {"calendar_ids": calendar_ids or [], "retry": NO_RETRY, "max_results": 50}
    return GoogleCalendarCollector(config, service=service)


# =============================================================================
# CONFIG
# =============================================================================


class TestConfig:
    def test_defaults_without_file(self, tmp_path):
        config = load_calendar_config(tmp_path / "missing.yaml")
        assert config["calendar_ids"] == []
        assert config["lookahead_days"] == 7

    def test_reads_calendar_section(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text("calendar:\n  calendar_ids: [work]\n  lookahead_days: 14\n")
        config = load_calendar_config(path)
        assert config["calendar_ids"] == ["work"]
        assert config["lookahead_days"] == 14
        assert config["max_results"] == 100

    def test_default_location_is_config_dir(self, isolated_home):
        (isolated_home / "config").mkdir(parents=True, exist_ok=True)
        (isolated_home / "config" / "sources.yaml").write_text("calendar:\n  max_results: 10\n")
        assert load_calendar_config()["max_results"] == 10


# =============================================================================
# FETCH
# =============================================================================


class TestParseEventTime:
    def test_zulu(self):
        assert parse_event_time({"dateTime": "2026-10-19T14:00:00Z"}) == at(14)

    def test_offset(self):
        assert parse_event_time({"dateTime": "2026-10-19T16:00:00+02:00"}) == at(14)

    def test_all_day(self):
        assert parse_event_time({"date": "2026-10-19"}) is None
        assert parse_event_time(None) is None


class TestCollect:
    def test_configured_calendars(self):
        service = _service({"work": [_event("a")], "home": [_event("b")]})
        events = _collector(service, ["work", "home"]).fetch_events(at(0), at(23))

        assert [(e.calendar_id, e.id) for e in events] == [("work", "a"), ("home", "b")]
        assert events[0].external_ref == "work::a"
        service.calendarList.assert_not_called()
        kwargs = service.events.return_value.list.call_args_list[0].kwargs
        assert kwargs["singleEvents"] is True
        assert kwargs["orderBy"] == "startTime"
        assert kwargs["maxResults"] == 50

    def test_falls_back_to_calendar_list(self):
        service = _service({"primary": [_event("a")]}, calendar_list=["primary"])
        events = _collector(service).fetch_events(at(0), at(23))
        assert [e.id for e in events] == ["a"]

    def test_transform_drops_all_day_and_cancelled(self):
        items = [
            _event("timed", summary="Review", htmlLink="https://cal/timed", visibility="private"),
            {"id": "allday", "start": {"date": "2026-10-19"}, "end": {"date": "2026-10-20"}},
            _event("gone", status="cancelled"),
            _event(None),
        ]
        events = _collector(_service({"work": items}), ["work"]).fetch_events(at(0), at(23))

        assert len(events) == 1
        event = events[0]
        assert event.title == "Review"
        assert event.link == "https://cal/timed"
        assert event.visibility == "private"
        assert (event.start, event.end) == (at(14), at(15))

    def test_one_failing_calendar_is_skipped(self):
        error = HttpError(httplib2.Response({"status": "403"}), b"")
        service = _service({"work": [_event("a")], "shared": error})
        collector = _collector(service, ["work", "shared"])

        events = collector.fetch_events(at(0), at(23))
        assert [e.id for e in events] == ["a"]
        assert len(collector.errors) == 1
        assert collector.errors[0].startswith("shared:")

    def test_all_calendars_failing_raises(self):
        service = _service({"work": OSError("network down")})
        with pytest.raises(UpstreamError):
            _collector(service, ["work"]).fetch_events(at(0), at(23))

    def test_no_token_file(self):
        collector = GoogleCalendarCollector({"token_file": "nope.json", "retry": NO_RETRY})
        with pytest.raises(UpstreamError, match="not connected"):
            collector.fetch_events(at(0), at(23))
