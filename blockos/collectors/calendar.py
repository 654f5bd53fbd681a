"""
Google Calendar adapter - fetches timed events for calendar sync.

Reads the `calendar` section of sources.yaml:

    calendar:
      calendar_ids: []          # empty: every calendar on the account
      token_file: google_token.json
      lookahead_days: 7
      max_results: 100
      retry:
        max_retries: 3
        base_delay: 1.0

Auth uses an authorized-user token file; expired tokens are refreshed here
so the sync core never deals with credentials.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from blockos import paths
from blockos.blocks.models import ExternalEvent, ensure_aware
from blockos.errors import UpstreamError

from .resilience import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

DEFAULTS = {
    "calendar_ids": [],
    "token_file": "google_token.json",
    "lookahead_days": 7,
    "max_results": 100,
    "retry": {},
}


def load_calendar_config(config_file: Path = None) -> dict:
    """`calendar` section of sources.yaml merged over defaults."""
    config_file = config_file or paths.config_dir() / "sources.yaml"
    section: dict = {}
    if config_file.exists():
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
        section = data.get("calendar") or {}
    return {**DEFAULTS, **section}


def parse_event_time(value: dict | None) -> datetime | None:
    """dateTime → aware datetime. All-day (date only) events have no time."""
    if not isinstance(value, dict) or "dateTime" not in value:
        return None
    return ensure_aware(datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00")))


class GoogleCalendarCollector:
    """Provider adapter for CalendarSyncService."""

    source_name = "calendar"

    def __init__(self, config: dict = None, service: Any = None):
        self.config = config if config is not None else load_calendar_config()
        self.retry = RetryConfig.from_dict(self.config.get("retry"))
        self._service = service
        self.errors: list[str] = []

    # ---- auth ----------------------------------------------------------

    def _token_path(self) -> Path:
        path = Path(self.config.get("token_file") or DEFAULTS["token_file"])
        return path if path.is_absolute() else paths.config_dir() / path

    def _get_service(self):
        """Get Calendar API service from the stored user token."""
        if self._service:
            return self._service

        token_path = self._token_path()
        if not token_path.exists():
            raise UpstreamError(f"calendar not connected: no token at {token_path}")

        try:
            creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
            if not creds.valid and creds.expired and creds.refresh_token:
                creds.refresh(Request())
                token_path.write_text(creds.to_json())
                logger.info("Refreshed Google Calendar token")
        except (GoogleAuthError, ValueError, OSError) as e:
            raise UpstreamError(f"calendar auth failed: {e}") from e

        self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service

    # ---- fetch ---------------------------------------------------------

    def _call(self, request):
        return retry_with_backoff(request.execute, self.retry, logger)

    def calendar_ids(self) -> list[str]:
        """Configured calendars, or every calendar on the account."""
        configured = self.config.get("calendar_ids") or []
        if configured:
            return list(configured)
        try:
            result = self._call(self._get_service().calendarList().list())
        except (HttpError, OSError) as e:
            raise UpstreamError(f"calendar list failed: {e}") from e
        return [item["id"] for item in result.get("items", []) if item.get("id")]

    def collect(self, time_min: datetime, time_max: datetime) -> dict[str, Any]:
        """
        Raw events from every calendar in the window.

        A calendar that keeps failing is skipped and recorded in self.errors.
        Raises UpstreamError only when there were calendars and all failed.
        """
        service = self._get_service()
        self.errors = []
        ids = self.calendar_ids()
        all_events: list[dict] = []
        failed = 0

        for calendar_id in ids:
            request = service.events().list(
                calendarId=calendar_id,
                timeMin=ensure_aware(time_min).isoformat(),
                timeMax=ensure_aware(time_max).isoformat(),
                singleEvents=True,
                orderBy="startTime",
                maxResults=int(self.config.get("max_results", 100)),
            )
            try:
                result = self._call(request)
            except (HttpError, OSError) as e:
                failed += 1
                logger.warning("Skipping calendar %s: %s", calendar_id, e)
                self.errors.append(f"{calendar_id}: {e}")
                continue

            for event in result.get("items", []):
                all_events.append({**event, "calendar_id": calendar_id})

        if ids and failed == len(ids):
            raise UpstreamError(f"all {failed} calendars failed")

        logger.info("Fetched %d events from %d calendars", len(all_events), len(ids) - failed)
        return {"events": all_events}

    def transform(self, raw_data: dict) -> list[ExternalEvent]:
        """Raw Google events → timed ExternalEvents (all-day dropped)."""
        events = []
        for item in raw_data.get("events", []):
            if not item.get("id") or item.get("status") == "cancelled":
                continue
            start = parse_event_time(item.get("start"))
            end = parse_event_time(item.get("end"))
            if start is None or end is None:
                continue
            events.append(
                ExternalEvent(
                    id=item["id"],
                    calendar_id=item.get("calendar_id"),
                    title=item.get("summary"),
                    start=start,
                    end=end,
                    link=item.get("htmlLink"),
                    visibility=item.get("visibility"),
                )
            )
        return events

    def fetch_events(self, time_min: datetime, time_max: datetime) -> list[ExternalEvent]:
        return self.transform(self.collect(time_min, time_max))
