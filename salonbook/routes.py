"""HTTP routes for the SalonBook scheduling engine."""
from __future__ import annotations

from datetime import date, datetime

from flask import Blueprint, Response, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .availability import AvailabilityService
from .booking import BookingOrchestrator
from .context import context_from_request
from .errors import NotFoundError, SchedulingError, ValidationError
from .extensions import db
from .lifecycle import AppointmentLifecycle, allowed_targets, get_appointment, parse_status
from .metrics import render_latest
from .models import AppointmentStatus, AppointmentStatusChange, Staff
from .working_hours import WorkingHoursResolver, resolve_open_intervals, schedule_weekday

bp = Blueprint("api", __name__)

RETRY_AFTER_SECONDS = 1


def error_response(exc: SchedulingError):
    """Render a scheduling error as ``{"error", "message", ...}`` with its HTTP status."""
    response = jsonify(exc.to_dict())
    response.status_code = exc.http_status
    if exc.retryable:
        response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return response


def _database_error(message: str, exc: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.exception(message, exc_info=exc)
    return jsonify({"error": "database_error"}), 500


def _parse_date(value: str | None, field: str = "date") -> date:
    if not value:
        raise ValidationError(f"{field} is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(value)
    except (ValueError, TypeError):
        raise ValidationError(f"{field} must be a valid date (YYYY-MM-DD)") from None


def _parse_datetime(value, field: str = "starts_at") -> datetime:
    """Parse a business-local wall-clock time; offsets are rejected."""
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        parsed = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        raise ValidationError(f"{field} must be a valid ISO format datetime") from None
    if parsed.tzinfo is not None:
        raise ValidationError(f"{field} must be a local time in the business's timezone, without an offset")
    return parsed


def _int_field(payload: dict, field: str, required: bool = True, default: int | None = None) -> int | None:
    value = payload.get(field)
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        raise ValidationError(f"{field} must be an integer") from None


def _appointment_payload(appointment) -> dict[str, object]:
    data = appointment.to_dict()
    data["allowed_transitions"] = allowed_targets(appointment.status)
    return data


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


@bp.get("/metrics")
def metrics() -> Response:
    """Prometheus exposition of booking and lifecycle counters.
    ---
    tags:
      - Health
    responses:
      200:
        description: Metrics in the Prometheus text format.
    """
    body, content_type = render_latest()
    return Response(body, content_type=content_type)


@bp.get("/staff/<int:staff_id>/availability")
def check_staff_availability(staff_id: int) -> tuple[dict[str, object], int]:
    """Return bookable slots for one staff member, service and date.
    ---
    tags:
      - Availability
    parameters:
      - in: path
        name: staff_id
        type: integer
        required: true
      - in: query
        name: service_id
        type: integer
        required: true
      - in: query
        name: date
        type: string
        format: date
        required: true
      - in: query
        name: granularity
        type: integer
        description: Minutes between candidate start times (defaults to config)
    responses:
      200:
        description: Available slots in start order
      400:
        description: Invalid query parameters or date in the past
      404:
        description: Staff, service or schedule not found
    """
    try:
        service_id = _int_field(request.args, "service_id")
        target_date = _parse_date(request.args.get("date"))
        granularity = _int_field(request.args, "granularity", required=False)

        slots = AvailabilityService().for_staff(
            context_from_request(request), staff_id, service_id, target_date, granularity
        )
        return jsonify({
            "staff_id": staff_id,
            "service_id": service_id,
            "date": target_date.isoformat(),
            "available_slots": [slot.to_dict() for slot in slots],
        }), 200

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to compute availability", exc)


@bp.get("/businesses/<int:business_id>/availability")
def check_business_availability(business_id: int) -> tuple[dict[str, object], int]:
    """Return bookable slots for every active staff member of a business.
    ---
    tags:
      - Availability
    parameters:
      - in: path
        name: business_id
        type: integer
        required: true
      - in: query
        name: service_id
        type: integer
        required: true
      - in: query
        name: date
        type: string
        format: date
        required: true
    responses:
      200:
        description: Slots keyed by staff member
      400:
        description: Invalid query parameters
      404:
        description: Business or service not found
    """
    try:
        service_id = _int_field(request.args, "service_id")
        target_date = _parse_date(request.args.get("date"))
        granularity = _int_field(request.args, "granularity", required=False)

        by_staff = AvailabilityService().for_business(
            context_from_request(request), business_id, service_id, target_date, granularity
        )
        return jsonify({
            "business_id": business_id,
            "service_id": service_id,
            "date": target_date.isoformat(),
            "staff": [
                {"staff_id": staff_id, "available_slots": [slot.to_dict() for slot in slots]}
                for staff_id, slots in by_staff.items()
            ],
        }), 200

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to compute business availability", exc)


@bp.get("/staff/<int:staff_id>/working-hours")
def get_working_hours(staff_id: int) -> tuple[dict[str, object], int]:
    """Return the resolved open intervals for a staff member on a date.
    ---
    tags:
      - Availability
    parameters:
      - in: path
        name: staff_id
        type: integer
        required: true
      - in: query
        name: date
        type: string
        format: date
        required: true
    responses:
      200:
        description: Open intervals after breaks and time off
      404:
        description: Staff or schedule not found
    """
    try:
        target_date = _parse_date(request.args.get("date"))
        ctx = context_from_request(request)
        staff = Staff.query.get(staff_id)
        if not staff or not ctx.can_access_business(staff.business_id):
            raise NotFoundError("Staff not found", details={"staff_id": staff_id})

        resolver = WorkingHoursResolver()
        entries = resolver.schedule_entries(staff_id)
        time_off = resolver.time_off_for(staff_id, target_date)
        weekday = schedule_weekday(target_date)

        return jsonify({
            "staff": staff.to_dict(),
            "date": target_date.isoformat(),
            "schedule": [entry.to_dict() for entry in entries if entry.day_of_week == weekday],
            "time_off": [t.to_dict() for t in time_off],
            "open_intervals": [
                interval.to_dict() for interval in resolve_open_intervals(entries, time_off, target_date)
            ],
        }), 200

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to resolve working hours", exc)


@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book an appointment at the requested start time.
    ---
    tags:
      - Appointments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            client_id:
              type: integer
            staff_id:
              type: integer
            service_id:
              type: integer
            starts_at:
              type: string
              format: date-time
              description: Business-local wall-clock time
            source:
              type: string
              example: ONLINE
            notes:
              type: string
            deposit_paid_cents:
              type: integer
          required:
            - client_id
            - staff_id
            - service_id
            - starts_at
    responses:
      201:
        description: Appointment booked
      400:
        description: Invalid payload or time outside working hours
      404:
        description: Client, staff or service not found
      409:
        description: Time slot no longer available
      503:
        description: Record store unavailable, retry later
    """
    try:
        payload = request.get_json(silent=True) or {}

        appointment = BookingOrchestrator().request_booking(
            context_from_request(request),
            client_id=_int_field(payload, "client_id"),
            staff_id=_int_field(payload, "staff_id"),
            service_id=_int_field(payload, "service_id"),
            desired_start=_parse_datetime(payload.get("starts_at")),
            source=(payload.get("source") or "ONLINE").upper(),
            notes=(payload.get("notes") or "").strip() or None,
            deposit_paid_cents=_int_field(payload, "deposit_paid_cents", required=False, default=0),
        )
        return jsonify({
            "message": "Appointment booked successfully",
            "appointment": _appointment_payload(appointment),
        }), 201

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to create appointment", exc)


@bp.post("/appointments/recurring")
def create_recurring_appointments() -> tuple[dict[str, object], int]:
    """Book a recurring series of appointments.
    ---
    tags:
      - Appointments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            client_id:
              type: integer
            staff_id:
              type: integer
            service_id:
              type: integer
            starts_at:
              type: string
              format: date-time
            frequency:
              type: string
              enum: [daily, weekly, biweekly, monthly]
            occurrences:
              type: integer
    responses:
      201:
        description: Series processed; lists booked and failed occurrences
      400:
        description: Invalid payload
      404:
        description: Client, staff or service not found
    """
    try:
        payload = request.get_json(silent=True) or {}

        result = BookingOrchestrator().book_series(
            context_from_request(request),
            client_id=_int_field(payload, "client_id"),
            staff_id=_int_field(payload, "staff_id"),
            service_id=_int_field(payload, "service_id"),
            first_start=_parse_datetime(payload.get("starts_at")),
            frequency=(payload.get("frequency") or "").lower(),
            occurrences=_int_field(payload, "occurrences"),
            source=(payload.get("source") or "ONLINE").upper(),
            notes=(payload.get("notes") or "").strip() or None,
        )
        return jsonify({
            "series_id": result.series_id,
            "booked": [_appointment_payload(a) for a in result.booked],
            "failed": result.failed,
        }), 201

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to create recurring appointments", exc)


@bp.get("/appointments/<int:appointment_id>")
def get_appointment_details(appointment_id: int) -> tuple[dict[str, object], int]:
    """Return one appointment with the statuses it may move to next.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        type: integer
        required: true
    responses:
      200:
        description: Appointment details
      404:
        description: Appointment not found
    """
    try:
        appointment = get_appointment(context_from_request(request), appointment_id)
        return jsonify({"appointment": _appointment_payload(appointment)}), 200

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to fetch appointment", exc)


@bp.patch("/appointments/<int:appointment_id>")
def update_appointment_status(appointment_id: int) -> tuple[dict[str, object], int]:
    """Move an appointment along its lifecycle.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        type: integer
        required: true
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            status:
              type: string
              example: CONFIRMED
            reason:
              type: string
            starts_at:
              type: string
              format: date-time
              description: Required when status is RESCHEDULED
          required:
            - status
    responses:
      200:
        description: Status updated
      201:
        description: Rescheduled; returns the replacement appointment
      400:
        description: Invalid status
      404:
        description: Appointment not found
      409:
        description: Transition not allowed from the current status
    """
    try:
        payload = request.get_json(silent=True) or {}
        if not payload.get("status"):
            raise ValidationError("status is required")

        ctx = context_from_request(request)
        target = parse_status(payload["status"])
        reason = (payload.get("reason") or "").strip() or None

        if target == AppointmentStatus.RESCHEDULED.value and payload.get("starts_at"):
            replacement = BookingOrchestrator().reschedule(
                ctx, appointment_id, _parse_datetime(payload.get("starts_at")), reason=reason
            )
            return jsonify({
                "message": "Appointment rescheduled",
                "appointment": _appointment_payload(replacement),
            }), 201

        appointment = AppointmentLifecycle().transition(ctx, appointment_id, target, reason)
        return jsonify({
            "message": f"Appointment status updated to {appointment.status}",
            "appointment": _appointment_payload(appointment),
        }), 200

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to update appointment status", exc)


@bp.post("/appointments/<int:appointment_id>/reschedule")
def reschedule_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Move an appointment to a new start time, optionally with another staff member.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        type: integer
        required: true
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            starts_at:
              type: string
              format: date-time
            staff_id:
              type: integer
            reason:
              type: string
          required:
            - starts_at
    responses:
      201:
        description: Replacement appointment booked, original marked RESCHEDULED
      400:
        description: Invalid payload
      404:
        description: Appointment not found
      409:
        description: New time slot not available, or the appointment can no longer be rescheduled
    """
    try:
        payload = request.get_json(silent=True) or {}

        replacement = BookingOrchestrator().reschedule(
            context_from_request(request),
            appointment_id,
            _parse_datetime(payload.get("starts_at")),
            staff_id=_int_field(payload, "staff_id", required=False),
            reason=(payload.get("reason") or "").strip() or None,
        )
        return jsonify({
            "message": "Appointment rescheduled",
            "appointment": _appointment_payload(replacement),
        }), 201

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to reschedule appointment", exc)


@bp.get("/appointments/<int:appointment_id>/history")
def get_appointment_history(appointment_id: int) -> tuple[dict[str, object], int]:
    """Return the audit trail of status changes for an appointment.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        type: integer
        required: true
    responses:
      200:
        description: Status changes, oldest first
      404:
        description: Appointment not found
    """
    try:
        appointment = get_appointment(context_from_request(request), appointment_id)
        changes = (
            AppointmentStatusChange.query.filter_by(appointment_id=appointment.appointment_id)
            .order_by(AppointmentStatusChange.change_id)
            .all()
        )
        return jsonify({
            "appointment_id": appointment_id,
            "status": appointment.status,
            "history": [change.to_dict() for change in changes],
        }), 200

    except SchedulingError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        return _database_error("Failed to fetch appointment history", exc)
