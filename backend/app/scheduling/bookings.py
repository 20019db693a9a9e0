from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, model_validator

from app.db.models import Booking
from app.scheduling.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.scheduling.intervals import (
    Interval,
    any_overlap,
    confirmed_intervals,
    normalize_datetime,
)
from app.scheduling.workflow import CustomerInfo


logger = logging.getLogger("scheduler.scheduling.bookings")


class CreateBookingArgs(CustomerInfo):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def validate_interval(self) -> "CreateBookingArgs":
        self.start_time = normalize_datetime(self.start_time)
        self.end_time = normalize_datetime(self.end_time)
        if self.start_time >= self.end_time:
            raise ValueError("end_time must be after start_time.")
        return self


class ListBookingsArgs(BaseModel):
    start: datetime | None = None
    end: datetime | None = None
    days: int = Field(default=30, ge=1, le=366)

    def resolve_range(self, now: datetime) -> tuple[datetime, datetime]:
        start = normalize_datetime(self.start) or now
        end = normalize_datetime(self.end) or start + timedelta(days=self.days)
        if start >= end:
            raise ValidationError("end must be after start.")
        return start, end


def parse_create_booking_args(raw_args: dict[str, Any]) -> CreateBookingArgs:
    return CreateBookingArgs.model_validate(raw_args)


def parse_list_bookings_args(raw_args: dict[str, Any]) -> ListBookingsArgs:
    return ListBookingsArgs.model_validate(raw_args)


class HostBookings:
    """Bookings a host places or cancels directly, outside the request workflow.

    Direct creation ignores availability windows but goes through the same
    atomic re-check and insert as request confirmation.
    """

    def __init__(self, accounts: Any, bookings: Any, publisher: Any = None) -> None:
        self.accounts = accounts
        self.bookings = bookings
        self.publisher = publisher

    def create_booking(self, host_id: int, args: CreateBookingArgs) -> Booking:
        self.accounts.get_host_timezone(host_id)
        candidate = Interval(start=args.start_time, end=args.end_time)

        def create_unit() -> Booking:
            existing = confirmed_intervals(
                self.bookings.find_confirmed_in_range(host_id, candidate.start, candidate.end)
            )
            if any_overlap(candidate, existing):
                raise ConflictError("Time slot overlaps with an existing booking.")
            booking = Booking(
                host_id=host_id,
                customer_name=args.customer_name,
                customer_email=args.customer_email,
                customer_phone=args.customer_phone,
                notes=args.notes,
                start_time=candidate.start,
                end_time=candidate.end,
                status="confirmed",
                source="host",
            )
            return self.bookings.insert_confirmed(booking)

        booking = self.bookings.run_atomic(create_unit)
        logger.info("Host booking created booking_id=%s host_id=%s", booking.id, host_id)
        if self.publisher is not None:
            try:
                self.publisher.booking_confirmed(booking)
            except Exception:
                logger.exception("Booking confirmed notification failed for booking_id=%s", booking.id)
        return booking

    def list_bookings(self, host_id: int, range_start: datetime, range_end: datetime) -> list[Booking]:
        self.accounts.get_host_timezone(host_id)
        return self.bookings.list_for_host(host_id, range_start, range_end)

    def cancel_booking(self, host_id: int, booking_id: int) -> Booking:
        def cancel_unit() -> Booking:
            booking = self.bookings.get(host_id, booking_id)
            if booking is None:
                raise NotFoundError("Booking not found.")
            if str(booking.status).lower() == "cancelled":
                raise InvalidStateError("Booking is already cancelled.")
            booking.status = "cancelled"
            return self.bookings.save(booking)

        booking = self.bookings.run_atomic(cancel_unit)
        logger.info("Booking cancelled booking_id=%s host_id=%s", booking_id, host_id)
        return booking


def serialize_booking(booking: Booking) -> dict[str, Any]:
    return {
        "id": booking.id,
        "host_id": booking.host_id,
        "booking_request_id": booking.booking_request_id,
        "customer_name": booking.customer_name,
        "customer_email": booking.customer_email,
        "customer_phone": booking.customer_phone,
        "start_time": normalize_datetime(booking.start_time).isoformat(),
        "end_time": normalize_datetime(booking.end_time).isoformat(),
        "status": booking.status,
        "source": booking.source,
        "notes": booking.notes,
    }
