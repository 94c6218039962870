"""
Domain errors raised by the scheduling engine.

Every error carries a machine readable ``code`` and the HTTP status the API
layer answers with, so routes can render them through a single helper.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from .extensions import db


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    http_status = 500
    code = "scheduling_error"
    retryable = False

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(SchedulingError):
    """Malformed or unacceptable input. Rejected immediately, never retried."""

    http_status = 400
    code = "invalid_payload"


class NotFoundError(ValidationError):
    """An identifier in the request does not resolve to a record."""

    http_status = 404
    code = "not_found"


class ScheduleNotFoundError(NotFoundError):
    """The staff member has no schedule record at all."""

    code = "schedule_not_found"

    def __init__(self, staff_id: int) -> None:
        super().__init__(
            f"Staff member {staff_id} has no working schedule",
            details={"staff_id": staff_id},
        )


class ConflictError(SchedulingError):
    """The request collides with the current state of the ledger."""

    http_status = 409
    code = "conflict"


class SlotNoLongerAvailableError(ConflictError):
    """The requested interval was taken between availability query and commit."""

    code = "slot_no_longer_available"

    def __init__(self, staff_id: int, starts_at, ends_at, conflicting_ids=None) -> None:
        super().__init__(
            "Time slot no longer available; re-query availability and pick another slot",
            details={
                "staff_id": staff_id,
                "starts_at": starts_at.isoformat(),
                "ends_at": ends_at.isoformat(),
                "conflicting_appointment_ids": list(conflicting_ids or []),
            },
        )


class InvalidTransitionError(ConflictError):
    """The requested status change is not an edge of the lifecycle graph."""

    code = "invalid_transition"

    def __init__(self, current_status: str, requested_status: str, appointment_id: int | None = None) -> None:
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot move appointment from {current_status} to {requested_status}",
            details={
                "appointment_id": appointment_id,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )


class StoreUnavailableError(SchedulingError):
    """The record store timed out or is unreachable. Safe to retry with backoff."""

    http_status = 503
    code = "store_unavailable"
    retryable = True


class InvariantViolationError(SchedulingError):
    """A committed state broke a scheduling invariant. Indicates a bug."""

    http_status = 500
    code = "invariant_violation"


@contextmanager
def store_guard(operation: str):
    """Translate store timeouts and lost connections into ``StoreUnavailableError``."""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        db.session.rollback()
        raise StoreUnavailableError(
            "Record store unavailable, retry with backoff",
            details={"operation": operation},
        ) from exc
