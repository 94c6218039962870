"""Tests for reading the booking ledger."""
from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import MONDAY, TUESDAY, add_appointment, add_time_off, at, seed_salon
from salonbook.intervals import day_bounds
from salonbook.ledger import BookingLedgerReader, blocked_from_appointment
from salonbook.models import Appointment


@pytest.fixture
def setup_data(app):
    with app.app_context():
        seed_salon()


def completed(released_at):
    return Appointment(
        appointment_id=5,
        scheduled_start=at(MONDAY, 10),
        scheduled_end=at(MONDAY, 11),
        status="COMPLETED",
        pre_buffer_minutes=0,
        post_buffer_minutes=15,
        released_at=released_at,
    )


def test_completed_appointment_blocks_until_release() -> None:
    blocked = blocked_from_appointment(completed(at(MONDAY, 10, 20)))

    assert (blocked.start, blocked.end) == (at(MONDAY, 10), at(MONDAY, 10, 20))
    assert blocked.post_buffer == timedelta(minutes=15)


def test_completed_before_start_blocks_nothing() -> None:
    assert blocked_from_appointment(completed(at(MONDAY, 9, 30))) is None


def test_completed_without_release_keeps_full_interval() -> None:
    assert blocked_from_appointment(completed(None)).end == at(MONDAY, 11)


def test_blocked_intervals_skip_released_statuses_and_excluded_ids(app, setup_data) -> None:
    with app.app_context():
        kept = add_appointment(at(MONDAY, 9))
        excluded = add_appointment(at(MONDAY, 10))
        add_appointment(at(MONDAY, 11), status="CANCELLED")
        add_appointment(at(MONDAY, 12), status="NO_SHOW")
        add_appointment(at(MONDAY + timedelta(days=3), 12, 30))
        time_off_id = add_time_off(at(MONDAY, 15), at(MONDAY, 16))

        blocked = BookingLedgerReader(1).blocked_intervals(day_bounds(MONDAY), exclude_ids=[excluded])

        assert sorted((b.kind, b.ref_id) for b in blocked) == [("appointment", kept), ("time_off", time_off_id)]


def test_versions_report_untouched_days_as_none(app, setup_data) -> None:
    with app.app_context():
        reader = BookingLedgerReader(1)

        assert reader.versions([TUESDAY, MONDAY, MONDAY]) == {MONDAY: None, TUESDAY: None}
