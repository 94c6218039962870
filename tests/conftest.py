"""pytest configuration: path management, app fixture and seed helpers."""
from __future__ import annotations

import sys
from datetime import date, datetime, time, timedelta
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the salonbook package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from salonbook import create_app  # noqa: E402
from salonbook.clock import FixedClock  # noqa: E402
from salonbook.config import TestingConfig  # noqa: E402
from salonbook.extensions import db  # noqa: E402
from salonbook.models import (Appointment, Business, Client, Schedule,  # noqa: E402
                              Service, Staff, TimeOff)

# Monday 2030-01-07, 08:00 business-local
NOW = datetime(2030, 1, 7, 8, 0)
MONDAY = NOW.date()
TUESDAY = MONDAY + timedelta(days=1)
MONDAY_DOW = 1
TUESDAY_DOW = 2


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def app():
    flask_app = create_app(TestingConfig)
    flask_app.extensions["salonbook.clock"] = FixedClock(NOW)
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


def seed_salon() -> None:
    """One business with two working staff members, one inactive, and three services.

    Staff 1 works Monday 09:00-17:00 and Tuesday 09:00-17:00 with a 12:00-13:00 break.
    Staff 2 works Monday 09:00-12:00. Staff 3 is inactive. Business 2 is a second tenant.
    """
    db.session.add_all([
        Business(business_id=1, name="Test Salon", timezone="UTC"),
        Business(business_id=2, name="Other Salon", timezone="UTC"),
    ])
    db.session.flush()
    db.session.add_all([
        Client(client_id=1, business_id=1, name="Client One", email="one@example.com"),
        Client(client_id=2, business_id=1, name="Client Two", email="two@example.com"),
        Client(client_id=20, business_id=2, name="Other Client"),
        Staff(staff_id=1, business_id=1, display_name="Alex"),
        Staff(staff_id=2, business_id=1, display_name="Jordan"),
        Staff(staff_id=3, business_id=1, display_name="Sam", is_active=False),
        Staff(staff_id=20, business_id=2, display_name="Other Staff"),
        Service(service_id=1, business_id=1, name="Haircut", duration_minutes=30, price_cents=2500),
        Service(service_id=2, business_id=1, name="Fade", duration_minutes=45, price_cents=4550),
        Service(
            service_id=3, business_id=1, name="Color", duration_minutes=30,
            pre_buffer_minutes=10, post_buffer_minutes=15, price_cents=8000,
        ),
        Service(service_id=20, business_id=2, name="Other Cut", duration_minutes=30, price_cents=1000),
    ])
    db.session.flush()
    db.session.add_all([
        Schedule(staff_id=1, day_of_week=MONDAY_DOW, start_time=time(9, 0), end_time=time(17, 0)),
        Schedule(
            staff_id=1, day_of_week=TUESDAY_DOW, start_time=time(9, 0), end_time=time(17, 0),
            break_start=time(12, 0), break_end=time(13, 0),
        ),
        Schedule(staff_id=2, day_of_week=MONDAY_DOW, start_time=time(9, 0), end_time=time(12, 0)),
        Schedule(staff_id=3, day_of_week=MONDAY_DOW, start_time=time(9, 0), end_time=time(17, 0)),
        Schedule(staff_id=20, day_of_week=MONDAY_DOW, start_time=time(9, 0), end_time=time(17, 0)),
    ])
    db.session.commit()


def add_appointment(
    starts_at: datetime,
    minutes: int = 30,
    staff_id: int = 1,
    service_id: int = 1,
    status: str = "BOOKED",
    pre_buffer: int = 0,
    post_buffer: int = 0,
    client_id: int = 1,
    price_cents: int = 2500,
) -> int:
    appointment = Appointment(
        business_id=1,
        client_id=client_id,
        staff_id=staff_id,
        service_id=service_id,
        scheduled_start=starts_at,
        scheduled_end=starts_at + timedelta(minutes=minutes),
        status=status,
        total_price_cents=price_cents,
        duration_minutes=minutes,
        pre_buffer_minutes=pre_buffer,
        post_buffer_minutes=post_buffer,
    )
    db.session.add(appointment)
    db.session.commit()
    return appointment.appointment_id


def add_time_off(starts_at: datetime, ends_at: datetime, staff_id: int = 1) -> int:
    time_off = TimeOff(staff_id=staff_id, starts_at=starts_at, ends_at=ends_at, reason="personal")
    db.session.add(time_off)
    db.session.commit()
    return time_off.time_off_id
