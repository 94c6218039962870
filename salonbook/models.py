"""Database models for the SalonBook scheduling engine."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value) -> str | None:
    return value.isoformat() if value else None


class AppointmentStatus(str, Enum):
    BOOKED = "BOOKED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    IN_SERVICE = "IN_SERVICE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


# Statuses whose interval no longer occupies the staff member.
RELEASED_STATUSES = (
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.NO_SHOW.value,
    AppointmentStatus.RESCHEDULED.value,
)

LIVE_STATUSES = tuple(s.value for s in AppointmentStatus if s.value not in RELEASED_STATUSES)

BOOKING_SOURCES = (
    "PHONE",
    "WALK_IN",
    "ONLINE",
    "APP",
    "INSTAGRAM",
    "FACEBOOK",
    "REFERRAL",
    "KIOSK",
    "AI_VOICE",
    "MARKETPLACE",
)


class Business(db.Model):
    __tablename__ = "businesses"

    business_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class Client(db.Model):
    __tablename__ = "clients"

    client_id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.business_id"), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255))
    phone = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    business = db.relationship("Business")

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.client_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
        }


class Staff(db.Model):
    __tablename__ = "staff"

    staff_id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.business_id"), nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    business = db.relationship("Business")
    schedules = db.relationship("Schedule", back_populates="staff", lazy="dynamic")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.staff_id,
            "business_id": self.business_id,
            "display_name": self.display_name,
            "is_active": bool(self.is_active),
        }


class Schedule(db.Model):
    """Weekly recurring working hours for a staff member."""

    __tablename__ = "schedules"

    schedule_id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.staff_id"), nullable=False, index=True)
    day_of_week = db.Column(db.Integer, nullable=False)  # 0=Sunday, 1=Monday, etc.
    is_working = db.Column(db.Boolean, nullable=False, default=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    break_start = db.Column(db.Time)
    break_end = db.Column(db.Time)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    staff = db.relationship("Staff", back_populates="schedules")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.schedule_id,
            "staff_id": self.staff_id,
            "day_of_week": self.day_of_week,
            "is_working": bool(self.is_working),
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "break_start": _iso(self.break_start),
            "break_end": _iso(self.break_end),
        }


class TimeOff(db.Model):
    """Date-specific exception (vacation, holiday, sick day) for a staff member."""

    __tablename__ = "time_off"

    time_off_id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.staff_id"), nullable=False, index=True)
    starts_at = db.Column(db.DateTime, nullable=False)
    ends_at = db.Column(db.DateTime, nullable=False)
    reason = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    staff = db.relationship("Staff")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.time_off_id,
            "staff_id": self.staff_id,
            "starts_at": _iso(self.starts_at),
            "ends_at": _iso(self.ends_at),
            "reason": self.reason,
        }


class Service(db.Model):
    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.business_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    pre_buffer_minutes = db.Column(db.Integer, nullable=False, default=0)
    post_buffer_minutes = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "business_id": self.business_id,
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "pre_buffer_minutes": self.pre_buffer_minutes or 0,
            "post_buffer_minutes": self.post_buffer_minutes or 0,
            "price_cents": self.price_cents,
        }


class Appointment(db.Model):
    """A booked interval of a staff member's time for one client and service."""

    __tablename__ = "appointments"
    __table_args__ = (
        db.CheckConstraint("scheduled_start < scheduled_end", name="ck_appointment_interval"),
        db.Index("ix_appointments_staff_start", "staff_id", "scheduled_start"),
    )

    appointment_id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.business_id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.client_id"), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.staff_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    scheduled_start = db.Column(db.DateTime, nullable=False)
    scheduled_end = db.Column(db.DateTime, nullable=False)
    status = db.Column(
        db.Enum(
            *[s.value for s in AppointmentStatus],
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        default=AppointmentStatus.BOOKED.value,
    )
    source = db.Column(
        db.Enum(*BOOKING_SOURCES, name="booking_source", native_enum=False, validate_strings=True),
        nullable=False,
        default="ONLINE",
    )
    notes = db.Column(db.Text)
    deposit_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # Snapshot of the service at booking time
    duration_minutes = db.Column(db.Integer, nullable=False)
    pre_buffer_minutes = db.Column(db.Integer, nullable=False, default=0)
    post_buffer_minutes = db.Column(db.Integer, nullable=False, default=0)

    released_at = db.Column(db.DateTime)
    rescheduled_from_id = db.Column(db.Integer, db.ForeignKey("appointments.appointment_id"))
    series_id = db.Column(db.String(36), index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    business = db.relationship("Business")
    client = db.relationship("Client")
    staff = db.relationship("Staff")
    service = db.relationship("Service")

    @property
    def buffered_start(self) -> datetime:
        return self.scheduled_start - timedelta(minutes=self.pre_buffer_minutes or 0)

    @property
    def buffered_end(self) -> datetime:
        return self.scheduled_end + timedelta(minutes=self.post_buffer_minutes or 0)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "business_id": self.business_id,
            "client_id": self.client_id,
            "client": self.client.to_dict_basic() if self.client else None,
            "staff_id": self.staff_id,
            "staff": self.staff.to_dict() if self.staff else None,
            "service_id": self.service_id,
            "service": self.service.to_dict() if self.service else None,
            "scheduled_start": _iso(self.scheduled_start),
            "scheduled_end": _iso(self.scheduled_end),
            "duration_minutes": self.duration_minutes,
            "pre_buffer_minutes": self.pre_buffer_minutes,
            "post_buffer_minutes": self.post_buffer_minutes,
            "status": self.status,
            "source": self.source,
            "notes": self.notes,
            "deposit_paid_cents": self.deposit_paid_cents,
            "total_price_cents": self.total_price_cents,
            "released_at": _iso(self.released_at),
            "rescheduled_from_id": self.rescheduled_from_id,
            "series_id": self.series_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AppointmentStatusChange(db.Model):
    """Audit trail of lifecycle transitions."""

    __tablename__ = "appointment_status_changes"

    change_id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(
        db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=False, index=True
    )
    from_status = db.Column(db.String(20))
    to_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.Integer)
    reason = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.change_id,
            "appointment_id": self.appointment_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by,
            "reason": self.reason,
            "created_at": _iso(self.created_at),
        }


class StaffDayLedger(db.Model):
    """Commit guard for one staff member's day.

    Each committed booking bumps ``version`` for every day its buffered
    interval touches; a commit only succeeds against the version it read.
    """

    __tablename__ = "staff_day_ledgers"
    __table_args__ = (db.UniqueConstraint("staff_id", "day", name="uq_staff_day_ledger"),)

    ledger_id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.staff_id"), nullable=False)
    day = db.Column(db.Date, nullable=False)
    version = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)


class Notification(db.Model):
    """In-app notification written when an appointment changes."""

    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.client_id"), nullable=False, index=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.appointment_id"))
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    notification_type = db.Column(db.String(50), nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)


class ClientLoyalty(db.Model):
    """Client loyalty points per business."""

    __tablename__ = "client_loyalty"
    __table_args__ = (db.UniqueConstraint("business_id", "client_id", name="uq_client_loyalty"),)

    client_loyalty_id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.business_id"), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.client_id"), nullable=False)
    points_balance = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)
