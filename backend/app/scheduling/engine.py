from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.scheduling.availability import SqlAlchemyAvailabilityRuleSet
from app.scheduling.bookings import HostBookings
from app.scheduling.intervals import utc_now
from app.scheduling.repositories import (
    SqlAlchemyAccountDirectory,
    SqlAlchemyBookingRepository,
    SqlAlchemyBookingRequestRepository,
)
from app.scheduling.slots import SlotGenerator
from app.scheduling.workflow import BookingRequestWorkflow


@dataclass
class SchedulingEngine:
    accounts: Any
    slot_generator: SlotGenerator
    workflow: BookingRequestWorkflow
    host_bookings: HostBookings
    clock: Callable[[], datetime] = utc_now


def assemble_engine(
    accounts: Any,
    rule_set: Any,
    bookings: Any,
    requests: Any,
    busy_provider: Any = None,
    publisher: Any = None,
    clock: Callable[[], datetime] = utc_now,
) -> SchedulingEngine:
    slot_generator = SlotGenerator(
        accounts=accounts,
        rule_set=rule_set,
        bookings=bookings,
        busy_provider=busy_provider,
        clock=clock,
    )
    return SchedulingEngine(
        accounts=accounts,
        slot_generator=slot_generator,
        workflow=BookingRequestWorkflow(
            slot_generator=slot_generator,
            bookings=bookings,
            requests=requests,
            publisher=publisher,
            clock=clock,
        ),
        host_bookings=HostBookings(accounts=accounts, bookings=bookings, publisher=publisher),
        clock=clock,
    )


def build_engine(db: Session, session_factory: Callable[[], Session] | None = None) -> SchedulingEngine:
    """Wire the scheduling components onto one request-scoped session."""
    from app.integrations.google_calendar import GoogleCalendarBusyProvider
    from app.notifications import BookingNotificationPublisher

    publisher = BookingNotificationPublisher(session_factory) if session_factory else None
    return assemble_engine(
        accounts=SqlAlchemyAccountDirectory(db),
        rule_set=SqlAlchemyAvailabilityRuleSet(db),
        bookings=SqlAlchemyBookingRepository(db),
        requests=SqlAlchemyBookingRequestRepository(db),
        busy_provider=GoogleCalendarBusyProvider(db),
        publisher=publisher,
    )
