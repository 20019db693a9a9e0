from __future__ import annotations


class SchedulingError(Exception):
    """Base class for every failure the scheduling engine reports to callers.

    Each subclass fixes the ``error_code`` and HTTP status the API boundary
    responds with, so handlers can map errors without inspecting messages.
    """

    error_code = "SCHEDULING_ERROR"
    status_code = 500
    default_message = "Scheduling failed."

    def __init__(self, human_message: str | None = None) -> None:
        self.human_message = human_message or self.default_message
        super().__init__(self.human_message)

    def to_response(self) -> dict[str, object]:
        return {
            "ok": False,
            "error_code": self.error_code,
            "human_message": self.human_message,
        }


class ValidationError(SchedulingError):
    error_code = "INVALID_ARGS"
    status_code = 400
    default_message = "Invalid scheduling request."


class NotFoundError(SchedulingError):
    error_code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found."


class ConflictError(SchedulingError):
    error_code = "TIME_SLOT_TAKEN"
    status_code = 409
    default_message = "Someone just booked this time slot. Please pick another one."


class ExpiredError(SchedulingError):
    error_code = "BOOKING_REQUEST_EXPIRED"
    status_code = 410
    default_message = "This booking request has expired. Please request the slot again."


class InvalidStateError(SchedulingError):
    error_code = "INVALID_STATE"
    status_code = 409
    default_message = "This booking request can no longer be changed."


class UnavailableError(SchedulingError):
    error_code = "CALENDAR_UNAVAILABLE"
    status_code = 503
    default_message = "External calendar data is temporarily unavailable."
