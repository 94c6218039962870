"""Buffered interval conflict detection."""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

NO_BUFFER = timedelta(0)


@dataclass(frozen=True)
class BlockedInterval:
    """An occupied stretch of a staff member's time.

    Appointments carry their pre/post buffers; time off and breaks have none.
    """

    start: datetime
    end: datetime
    pre_buffer: timedelta = NO_BUFFER
    post_buffer: timedelta = NO_BUFFER
    kind: str = "appointment"
    ref_id: int | None = None

    @property
    def buffered_start(self) -> datetime:
        return self.start - self.pre_buffer

    @property
    def buffered_end(self) -> datetime:
        return self.end + self.post_buffer


def intervals_conflict(
    start: datetime,
    end: datetime,
    blocked: BlockedInterval,
    pre_buffer: timedelta = NO_BUFFER,
    post_buffer: timedelta = NO_BUFFER,
) -> bool:
    """True when ``[start - pre, end + post)`` overlaps the blocked buffered interval."""
    return start - pre_buffer < blocked.buffered_end and blocked.buffered_start < end + post_buffer


class ConflictDetector:
    def __init__(self, blocked: Iterable[BlockedInterval]) -> None:
        self.blocked = sorted(blocked, key=lambda b: (b.buffered_start, b.buffered_end))

    def conflicts_for(
        self,
        start: datetime,
        end: datetime,
        pre_buffer: timedelta = NO_BUFFER,
        post_buffer: timedelta = NO_BUFFER,
    ) -> list[BlockedInterval]:
        horizon = end + post_buffer
        found = []
        for blocked in self.blocked:
            if blocked.buffered_start >= horizon:
                break
            if intervals_conflict(start, end, blocked, pre_buffer, post_buffer):
                found.append(blocked)
        return found

    def is_free(
        self,
        start: datetime,
        end: datetime,
        pre_buffer: timedelta = NO_BUFFER,
        post_buffer: timedelta = NO_BUFFER,
    ) -> bool:
        return not self.conflicts_for(start, end, pre_buffer, post_buffer)

    def filter(
        self,
        candidates: Iterable[datetime],
        duration: timedelta,
        pre_buffer: timedelta = NO_BUFFER,
        post_buffer: timedelta = NO_BUFFER,
    ) -> Iterator[datetime]:
        for start in candidates:
            if self.is_free(start, start + duration, pre_buffer, post_buffer):
                yield start
