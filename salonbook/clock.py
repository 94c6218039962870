"""Business-local wall clock."""
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from flask import current_app


class Clock:
    def now(self, timezone_name: str) -> datetime:
        """Current naive wall-clock time in the business's timezone."""
        return datetime.now(ZoneInfo(timezone_name or "UTC")).replace(tzinfo=None, microsecond=0)


class FixedClock(Clock):
    """Clock pinned to one instant, for scripted runs and tests."""

    def __init__(self, instant: datetime) -> None:
        self.instant = instant

    def now(self, timezone_name: str) -> datetime:
        return self.instant


def get_clock() -> Clock:
    """The clock configured on the current app."""
    return current_app.extensions["salonbook.clock"]
