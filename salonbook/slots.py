"""Candidate slot generation."""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

from .intervals import Interval


@dataclass(frozen=True)
class Slot:
    """A bookable start time. Transient: valid only until a booking consumes it."""

    staff_id: int
    start: datetime
    duration_minutes: int

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def to_dict(self) -> dict[str, object]:
        return {
            "staff_id": self.staff_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes,
        }


class SlotGenerator:
    """Lazy, finite, restartable sequence of candidate start times.

    Iterating twice walks the open intervals twice; no generator state is
    shared between iterations.
    """

    def __init__(self, intervals: Iterable[Interval], duration: timedelta, granularity: timedelta) -> None:
        if duration <= timedelta(0):
            raise ValueError("duration must be positive")
        if granularity <= timedelta(0):
            raise ValueError("granularity must be positive")
        self.intervals = tuple(sorted(intervals))
        self.duration = duration
        self.granularity = granularity

    def __iter__(self) -> Iterator[datetime]:
        for interval in self.intervals:
            candidate = interval.start
            while candidate + self.duration <= interval.end:
                yield candidate
                candidate += self.granularity
