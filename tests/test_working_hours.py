"""Tests for resolving a staff member's open intervals on a date."""
from __future__ import annotations

from datetime import datetime, time

import pytest

from conftest import MONDAY, TUESDAY, add_time_off, at, seed_salon
from salonbook.errors import ScheduleNotFoundError
from salonbook.extensions import db
from salonbook.intervals import Interval
from salonbook.models import Schedule, Staff, TimeOff
from salonbook.working_hours import WorkingHoursResolver, resolve_open_intervals, schedule_weekday


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def setup_data(app):
    with app.app_context():
        seed_salon()


def entry(day_of_week, start, end, break_start=None, break_end=None, is_working=True):
    return Schedule(
        staff_id=1,
        day_of_week=day_of_week,
        is_working=is_working,
        start_time=start,
        end_time=end,
        break_start=break_start,
        break_end=break_end,
    )


def test_schedule_weekday_uses_sunday_as_zero() -> None:
    assert schedule_weekday(MONDAY) == 1
    assert schedule_weekday(datetime(2030, 1, 6).date()) == 0


def test_resolve_plain_working_day() -> None:
    entries = [entry(1, time(9, 0), time(17, 0))]

    assert resolve_open_intervals(entries, [], MONDAY) == [Interval(at(MONDAY, 9), at(MONDAY, 17))]


def test_resolve_subtracts_break() -> None:
    entries = [entry(1, time(9, 0), time(17, 0), time(12, 0), time(12, 30))]

    assert resolve_open_intervals(entries, [], MONDAY) == [
        Interval(at(MONDAY, 9), at(MONDAY, 12)),
        Interval(at(MONDAY, 12, 30), at(MONDAY, 17)),
    ]


def test_resolve_partial_time_off() -> None:
    entries = [entry(1, time(9, 0), time(17, 0))]
    time_off = [TimeOff(staff_id=1, starts_at=at(MONDAY, 13), ends_at=at(MONDAY, 15))]

    assert resolve_open_intervals(entries, time_off, MONDAY) == [
        Interval(at(MONDAY, 9), at(MONDAY, 13)),
        Interval(at(MONDAY, 15), at(MONDAY, 17)),
    ]


def test_resolve_multi_day_time_off_covers_whole_day() -> None:
    entries = [entry(1, time(9, 0), time(17, 0))]
    time_off = [TimeOff(staff_id=1, starts_at=datetime(2030, 1, 5, 0, 0), ends_at=at(TUESDAY, 0))]

    assert resolve_open_intervals(entries, time_off, MONDAY) == []


def test_resolve_day_off_and_non_working_entry() -> None:
    entries = [entry(1, time(9, 0), time(17, 0), is_working=False)]

    assert resolve_open_intervals(entries, [], MONDAY) == []
    assert resolve_open_intervals(entries, [], TUESDAY) == []


def test_resolve_split_shift_entries_are_merged() -> None:
    entries = [entry(1, time(9, 0), time(12, 0)), entry(1, time(12, 0), time(14, 0)), entry(1, time(16, 0), time(18, 0))]

    assert resolve_open_intervals(entries, [], MONDAY) == [
        Interval(at(MONDAY, 9), at(MONDAY, 14)),
        Interval(at(MONDAY, 16), at(MONDAY, 18)),
    ]


def test_resolver_raises_when_staff_has_no_schedule(app, setup_data) -> None:
    with app.app_context():
        db.session.add(Staff(staff_id=4, business_id=1, display_name="New Hire"))
        db.session.commit()

        with pytest.raises(ScheduleNotFoundError):
            WorkingHoursResolver().resolve(4, MONDAY)


def test_resolver_reads_time_off_from_store(app, setup_data) -> None:
    with app.app_context():
        add_time_off(at(MONDAY, 9), at(MONDAY, 11))

        assert WorkingHoursResolver().resolve(1, MONDAY) == [Interval(at(MONDAY, 11), at(MONDAY, 17))]


def test_get_working_hours_endpoint_200(client, setup_data) -> None:
    response = client.get(f"/staff/1/working-hours?date={TUESDAY.isoformat()}")
    data = response.get_json()

    assert response.status_code == 200
    assert data["staff"]["display_name"] == "Alex"
    assert data["schedule"][0]["break_start"] == "12:00:00"
    assert data["time_off"] == []
    assert data["open_intervals"] == [
        {"start": f"{TUESDAY.isoformat()}T09:00:00", "end": f"{TUESDAY.isoformat()}T12:00:00"},
        {"start": f"{TUESDAY.isoformat()}T13:00:00", "end": f"{TUESDAY.isoformat()}T17:00:00"},
    ]


def test_get_working_hours_no_schedule_404(client, setup_data, app) -> None:
    with app.app_context():
        db.session.add(Staff(staff_id=4, business_id=1, display_name="New Hire"))
        db.session.commit()

    response = client.get(f"/staff/4/working-hours?date={MONDAY.isoformat()}")

    assert response.status_code == 404
    assert response.get_json()["error"] == "schedule_not_found"


def test_get_working_hours_invalid_date_400(client, setup_data) -> None:
    response = client.get("/staff/1/working-hours?date=not-a-date")

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"
