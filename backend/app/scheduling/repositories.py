from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Protocol, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import ALLOWED_BOOKING_HORIZON_DAYS, DEFAULT_BOOKING_HORIZON_DAYS
from app.db.models import Booking, BookingRequest, Host
from app.scheduling.errors import ConflictError, NotFoundError
from app.scheduling.intervals import local_day_bounds


T = TypeVar("T")

# Created by the 20260302_0002 revision; rejects overlapping confirmed bookings per host.
BOOKING_OVERLAP_CONSTRAINT = "ex_bookings_host_no_overlap"

logger = logging.getLogger("scheduler.scheduling.repositories")


class AccountDirectory(Protocol):
    def get_host_timezone(self, host_id: int) -> str: ...

    def get_booking_horizon_days(self, host_id: int) -> int: ...


class BookingRepository(Protocol):
    def find_confirmed_in_range(
        self, host_id: int, range_start: datetime, range_end: datetime
    ) -> list[Any]: ...

    def find_confirmed_by_host_and_date(self, host_id: int, day: date, tz_name: str) -> list[Any]: ...

    def insert_confirmed(self, booking: Any) -> Any: ...

    def lock_host(self, host_id: int) -> None: ...

    def run_atomic(self, fn: Callable[[], T]) -> T: ...


class BookingRequestRepository(Protocol):
    def add(self, booking_request: Any) -> Any: ...

    def get(self, request_id: str) -> Any | None: ...

    def get_for_update(self, request_id: str) -> Any | None: ...

    def find_by_token(self, token: str) -> Any | None: ...

    def save(self, booking_request: Any) -> Any: ...


class SqlAlchemyAccountDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_host(self, host_id: int) -> Host:
        host = self.db.get(Host, host_id)
        if host is None:
            raise NotFoundError("Host not found.")
        return host

    def get_host_timezone(self, host_id: int) -> str:
        return self.get_host(host_id).timezone

    def get_booking_horizon_days(self, host_id: int) -> int:
        horizon_days = self.get_host(host_id).booking_horizon_days
        if horizon_days not in ALLOWED_BOOKING_HORIZON_DAYS:
            return DEFAULT_BOOKING_HORIZON_DAYS
        return horizon_days


class SqlAlchemyBookingRepository:
    """Confirmed-booking storage on one ``Session``.

    Writes only flush; ``run_atomic`` owns the transaction and commits every
    write made inside it together, including writes made through the
    ``SqlAlchemyBookingRequestRepository`` sharing the same session.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def find_confirmed_in_range(
        self,
        host_id: int,
        range_start: datetime,
        range_end: datetime,
    ) -> list[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.host_id == host_id)
            .filter(Booking.status == "confirmed")
            .filter(Booking.end_time > range_start)
            .filter(Booking.start_time < range_end)
            .order_by(Booking.start_time)
            .all()
        )

    def find_confirmed_by_host_and_date(self, host_id: int, day: date, tz_name: str) -> list[Booking]:
        bounds = local_day_bounds(day, tz_name)
        return self.find_confirmed_in_range(host_id, bounds.start, bounds.end)

    def list_for_host(self, host_id: int, range_start: datetime, range_end: datetime) -> list[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.host_id == host_id)
            .filter(Booking.end_time > range_start)
            .filter(Booking.start_time < range_end)
            .order_by(Booking.start_time)
            .all()
        )

    def get(self, host_id: int, booking_id: int) -> Booking | None:
        booking = self.db.get(Booking, booking_id)
        if booking is None or booking.host_id != host_id:
            return None
        return booking

    def insert_confirmed(self, booking: Booking) -> Booking:
        booking.status = "confirmed"
        self.db.add(booking)
        try:
            self.db.flush()
        except IntegrityError as exc:
            if BOOKING_OVERLAP_CONSTRAINT in str(exc):
                logger.warning(
                    "Overlap constraint rejected booking insert host_id=%s start=%s",
                    booking.host_id,
                    booking.start_time.isoformat(),
                )
                raise ConflictError() from exc
            raise
        return booking

    def save(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def lock_host(self, host_id: int) -> None:
        # The overlap constraint cannot see per-day counts; cap checks serialize here.
        self.db.query(Host).filter(Host.id == host_id).with_for_update().first()

    def run_atomic(self, fn: Callable[[], T]) -> T:
        # Reads made before the unit leave an autobegun transaction open.
        if self.db.in_transaction():
            self.db.commit()
        with self.db.begin():
            return fn()


class SqlAlchemyBookingRequestRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def add(self, booking_request: BookingRequest) -> BookingRequest:
        self.db.add(booking_request)
        self.db.flush()
        return booking_request

    def get(self, request_id: str) -> BookingRequest | None:
        return self.db.get(BookingRequest, request_id)

    def get_for_update(self, request_id: str) -> BookingRequest | None:
        return (
            self.db.query(BookingRequest)
            .filter(BookingRequest.id == request_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def find_by_token(self, token: str) -> BookingRequest | None:
        return (
            self.db.query(BookingRequest)
            .filter(BookingRequest.confirmation_token == token)
            .first()
        )

    def save(self, booking_request: BookingRequest) -> BookingRequest:
        self.db.add(booking_request)
        self.db.flush()
        return booking_request
