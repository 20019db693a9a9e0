from __future__ import annotations

import json
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import BaseModel, Field, model_validator

from app.config import HOLD_WINDOW_MINUTES
from app.db.models import Booking, BookingRequest
from app.scheduling.errors import (
    ConflictError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
)
from app.scheduling.intervals import (
    Slot,
    confirmed_intervals,
    interval_of,
    normalize_datetime,
    utc_now,
)
from app.scheduling.repositories import BookingRepository, BookingRequestRepository
from app.scheduling.slots import SlotGenerator


PENDING = "pending"
CONFIRMED = "confirmed"
EXPIRED = "expired"
CANCELLED = "cancelled"

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

logger = logging.getLogger("scheduler.scheduling.workflow")


class CustomerInfo(BaseModel):
    customer_name: str = Field(min_length=1, max_length=100)
    customer_email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    customer_phone: str | None = Field(default=None, max_length=25)
    notes: str | None = None


class CreateBookingRequestArgs(CustomerInfo):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def validate_interval(self) -> "CreateBookingRequestArgs":
        self.start_time = normalize_datetime(self.start_time)
        self.end_time = normalize_datetime(self.end_time)
        if self.start_time >= self.end_time:
            raise ValueError("end_time must be after start_time.")
        return self


def parse_create_request_args(raw_args: dict[str, Any]) -> CreateBookingRequestArgs:
    return CreateBookingRequestArgs.model_validate(raw_args)


def generate_confirmation_token() -> str:
    return secrets.token_hex(32)


def effective_status(booking_request: Any, now: datetime) -> str:
    """Status as callers must see it: a lapsed pending hold reads as expired."""
    expires_at = normalize_datetime(booking_request.expires_at)
    if booking_request.status == PENDING and expires_at is not None and now > expires_at:
        return EXPIRED
    return booking_request.status


class BookingRequestWorkflow:
    """Holds a slot as a pending request and turns it into a confirmed booking.

    Only ``pending`` requests move; ``confirmed``, ``expired`` and ``cancelled``
    are terminal. Expiry is evaluated lazily against the injected clock and
    persisted by the next write that touches the request.
    """

    def __init__(
        self,
        slot_generator: SlotGenerator,
        bookings: BookingRepository,
        requests: BookingRequestRepository,
        publisher: Any = None,
        clock: Callable[[], datetime] = utc_now,
        hold_window_minutes: int = HOLD_WINDOW_MINUTES,
    ) -> None:
        self.slot_generator = slot_generator
        self.bookings = bookings
        self.requests = requests
        self.publisher = publisher
        self.clock = clock
        self.hold_window = timedelta(minutes=hold_window_minutes)

    def create_request(self, host_id: int, args: CreateBookingRequestArgs) -> BookingRequest:
        slot = Slot(start=args.start_time, end=args.end_time)
        result = self.slot_generator.validate_slot(host_id, slot)
        if result.partial:
            logger.warning(
                "Booking request for host_id=%s validated without external calendar data",
                host_id,
            )

        now = self.clock()
        booking_request = BookingRequest(
            id=str(uuid.uuid4()),
            host_id=host_id,
            customer_name=args.customer_name,
            customer_email=args.customer_email,
            customer_phone=args.customer_phone,
            notes=args.notes,
            start_time=slot.start,
            end_time=slot.end,
            confirmation_token=generate_confirmation_token(),
            status=PENDING,
            expires_at=now + self.hold_window,
            created_at=now,
            updated_at=now,
        )
        self.bookings.run_atomic(lambda: self.requests.add(booking_request))
        logger.info(
            "Booking request created request_id=%s host_id=%s start=%s",
            booking_request.id,
            host_id,
            slot.start.isoformat(),
        )
        return booking_request

    def get_request(self, request_id: str) -> BookingRequest:
        booking_request = self.requests.get(request_id)
        if booking_request is None:
            raise NotFoundError("Booking request not found.")
        return booking_request

    def confirm_request(self, token: str) -> Booking:
        booking_request = self.requests.find_by_token(token)
        if booking_request is None:
            raise NotFoundError("Booking request not found.")
        if booking_request.status != PENDING:
            raise InvalidStateError(f"Booking request is already {booking_request.status}.")

        now = self.clock()
        request_id = booking_request.id
        host_id = booking_request.host_id
        if effective_status(booking_request, now) == EXPIRED:
            self._close_if_pending(request_id, EXPIRED, now)
            raise ExpiredError()

        slot = interval_of(booking_request)
        constraints = self.slot_generator.constraints_for(host_id, slot)

        def confirm_unit() -> Booking | None:
            locked = self.requests.get_for_update(request_id)
            if locked is None:
                raise NotFoundError("Booking request not found.")
            if locked.status != PENDING:
                raise InvalidStateError(f"Booking request is already {locked.status}.")
            if constraints.daily_cap:
                self.bookings.lock_host(host_id)

            search = constraints.search_range(slot)
            confirmed = confirmed_intervals(
                self.bookings.find_confirmed_in_range(host_id, search.start, search.end)
            )
            if not constraints.admits(slot, confirmed):
                _transition(locked, CANCELLED, now)
                self.requests.save(locked)
                return None

            booking = Booking(
                host_id=host_id,
                booking_request_id=locked.id,
                customer_name=locked.customer_name,
                customer_email=locked.customer_email,
                customer_phone=locked.customer_phone,
                notes=locked.notes,
                start_time=slot.start,
                end_time=slot.end,
                status=CONFIRMED,
                source="booking_request",
            )
            self.bookings.insert_confirmed(booking)
            _transition(locked, CONFIRMED, now)
            locked.confirmed_at = now
            self.requests.save(locked)
            return booking

        try:
            booking = self.bookings.run_atomic(confirm_unit)
        except ConflictError:
            # The storage constraint rejected the insert and the unit rolled back.
            self._close_if_pending(request_id, CANCELLED, now)
            self._log_lost_race(request_id, host_id)
            raise

        if booking is None:
            self._log_lost_race(request_id, host_id)
            raise ConflictError()

        logger.info(
            json.dumps(
                {
                    "event": "booking_confirmed",
                    "booking_id": booking.id,
                    "request_id": request_id,
                    "host_id": host_id,
                    "start_time": slot.start.isoformat(),
                    "end_time": slot.end.isoformat(),
                }
            )
        )
        self._publish(booking)
        return booking

    def cancel_request(self, request_id: str) -> BookingRequest:
        if self.requests.get(request_id) is None:
            raise NotFoundError("Booking request not found.")
        now = self.clock()

        def cancel_unit() -> tuple[BookingRequest, str | None]:
            locked = self.requests.get_for_update(request_id)
            if locked is None:
                raise NotFoundError("Booking request not found.")
            status = effective_status(locked, now)
            if status == EXPIRED and locked.status == PENDING:
                _transition(locked, EXPIRED, now)
                self.requests.save(locked)
            if locked.status != PENDING:
                return locked, locked.status
            _transition(locked, CANCELLED, now)
            self.requests.save(locked)
            return locked, None

        booking_request, blocking_status = self.bookings.run_atomic(cancel_unit)
        if blocking_status is not None:
            raise InvalidStateError(f"Booking request is already {blocking_status}.")
        logger.info("Booking request cancelled request_id=%s", request_id)
        return booking_request

    def _close_if_pending(self, request_id: str, status: str, now: datetime) -> None:
        def close_unit() -> None:
            locked = self.requests.get_for_update(request_id)
            if locked is not None and locked.status == PENDING:
                _transition(locked, status, now)
                self.requests.save(locked)

        self.bookings.run_atomic(close_unit)

    def _log_lost_race(self, request_id: str, host_id: int) -> None:
        logger.info(
            json.dumps(
                {
                    "event": "booking_request_lost_race",
                    "request_id": request_id,
                    "host_id": host_id,
                }
            )
        )

    def _publish(self, booking: Booking) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.booking_confirmed(booking)
        except Exception:
            logger.exception("Booking confirmed notification failed for booking_id=%s", booking.id)


def _transition(booking_request: Any, status: str, now: datetime) -> None:
    if booking_request.status != PENDING:
        raise InvalidStateError(f"Booking request is already {booking_request.status}.")
    booking_request.status = status
    booking_request.updated_at = now


def serialize_booking_request(booking_request: BookingRequest, now: datetime) -> dict[str, Any]:
    return {
        "id": booking_request.id,
        "host_id": booking_request.host_id,
        "customer_name": booking_request.customer_name,
        "customer_email": booking_request.customer_email,
        "customer_phone": booking_request.customer_phone,
        "start_time": normalize_datetime(booking_request.start_time).isoformat(),
        "end_time": normalize_datetime(booking_request.end_time).isoformat(),
        "status": effective_status(booking_request, now),
        "expires_at": normalize_datetime(booking_request.expires_at).isoformat(),
        "notes": booking_request.notes,
    }
