from __future__ import annotations

import json
import logging
from typing import Any, Callable, Protocol

from sqlalchemy.orm import Session

from app.db.models import Booking, Host
from app.integrations.google_calendar import create_event, is_google_calendar_connected
from app.scheduling.intervals import normalize_datetime


logger = logging.getLogger("scheduler.notifications")


class NotificationPublisher(Protocol):
    def booking_confirmed(self, booking: Any) -> None: ...


class BookingNotificationPublisher:
    """Announces confirmed bookings and mirrors them to the host's Google calendar.

    Runs after the booking is committed, on its own session; nothing here can
    undo a confirmation.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def booking_confirmed(self, booking: Any) -> None:
        logger.info(
            json.dumps(
                {
                    "event": "booking_confirmed_notification",
                    "booking_id": booking.id,
                    "host_id": booking.host_id,
                    "customer_email": booking.customer_email,
                    "start_time": normalize_datetime(booking.start_time).isoformat(),
                }
            )
        )

        db = self.session_factory()
        try:
            host = db.get(Host, booking.host_id)
            if host is None or not is_google_calendar_connected(host):
                return
            stored = db.get(Booking, booking.id)
            if stored is None:
                return
            try:
                event_payload = create_event(host=host, booking=stored, db=db)
            except Exception:
                db.rollback()
                logger.exception(
                    "Google calendar sync failed for booking_id=%s host_id=%s",
                    booking.id,
                    booking.host_id,
                )
                return
            stored.external_event_provider = "google"
            stored.external_event_id = event_payload["id"].strip()
            db.commit()
        finally:
            db.close()
