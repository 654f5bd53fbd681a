"""Provider adapters that feed external data into the block engine."""

from .calendar import GoogleCalendarCollector, load_calendar_config
from .resilience import RetryConfig, retry_with_backoff

__all__ = ["GoogleCalendarCollector", "RetryConfig", "load_calendar_config", "retry_with_backoff"]
