from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib import parse, request

from sqlalchemy.orm import Session

from app.db.models import Booking, GoogleOAuthCredential, Host
from app.scheduling.errors import UnavailableError
from app.scheduling.intervals import Interval, normalize_datetime

GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_FREEBUSY_ENDPOINT = "https://www.googleapis.com/calendar/v3/freeBusy"
GOOGLE_CALENDAR_EVENT_ENDPOINT_TEMPLATE = (
    "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"
)


def get_access_token(host_id: int, db: Session) -> str:
    credentials = _find_credentials(db=db, host_id=host_id)
    if credentials is None:
        raise LookupError("Google OAuth credentials not found for host.")

    expiry = normalize_datetime(credentials.token_expiry)
    if credentials.access_token and expiry is not None:
        if expiry - timedelta(seconds=60) > datetime.now(timezone.utc):
            return credentials.access_token

    if not credentials.refresh_token:
        raise ValueError("Missing Google refresh token for host.")

    client_id = os.getenv("GOOGLE_CLIENT_ID", "").strip()
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET", "").strip()
    if not client_id or not client_secret:
        raise ValueError("Google OAuth client configuration is incomplete.")

    form_payload = parse.urlencode(
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": credentials.refresh_token,
            "grant_type": "refresh_token",
        }
    ).encode("utf-8")
    req = request.Request(
        GOOGLE_TOKEN_ENDPOINT,
        data=form_payload,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    payload = _read_json(req, failure="Google token refresh failed.")

    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        raise ValueError("Google token refresh missing access_token.")

    credentials.access_token = access_token.strip()
    credentials.token_expiry = _expiry_from_seconds(payload.get("expires_in"))
    credentials.updated_at = datetime.now(timezone.utc)
    db.commit()
    return credentials.access_token


class GoogleCalendarBusyProvider:
    """Busy intervals from a host's connected Google calendar.

    Hosts without a connected calendar have no external busy time. Any
    transport, auth or payload failure surfaces as ``UnavailableError``.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_busy_intervals(
        self,
        host_id: int,
        range_start: datetime,
        range_end: datetime,
    ) -> list[Interval]:
        host = self.db.get(Host, host_id)
        if host is None or not is_google_calendar_connected(host):
            return []

        try:
            access_token = get_access_token(host_id=host_id, db=self.db)
        except (LookupError, ValueError) as exc:
            raise UnavailableError(str(exc)) from exc

        calendar_id = (host.calendar_id or "primary").strip() or "primary"
        body = {
            "timeMin": range_start.astimezone(timezone.utc).isoformat(),
            "timeMax": range_end.astimezone(timezone.utc).isoformat(),
            "items": [{"id": calendar_id}],
        }
        req = request.Request(
            GOOGLE_FREEBUSY_ENDPOINT,
            data=json.dumps(body, separators=(",", ":")).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {access_token}",
            },
            method="POST",
        )
        try:
            payload = _read_json(req, failure="Google freeBusy query failed.")
        except ValueError as exc:
            raise UnavailableError(str(exc)) from exc
        return parse_free_busy(payload, calendar_id=calendar_id)


def parse_free_busy(payload: dict[str, Any], calendar_id: str) -> list[Interval]:
    calendars = payload.get("calendars")
    if not isinstance(calendars, dict):
        raise UnavailableError("Google freeBusy response missing calendars.")
    entry = calendars.get(calendar_id)
    if not isinstance(entry, dict):
        raise UnavailableError("Google freeBusy response missing requested calendar.")
    if entry.get("errors"):
        raise UnavailableError("Google freeBusy reported errors for calendar.")

    intervals: list[Interval] = []
    for item in entry.get("busy") or []:
        start = _parse_rfc3339(item.get("start"))
        end = _parse_rfc3339(item.get("end"))
        if start is None or end is None or start >= end:
            continue
        intervals.append(Interval(start=start, end=end))
    return intervals


def create_event(host: Host, booking: Booking, db: Session) -> dict[str, Any]:
    access_token = get_access_token(host_id=host.id, db=db)

    calendar_id = (host.calendar_id or "primary").strip() or "primary"
    calendar_path = parse.quote(calendar_id, safe="")
    endpoint = GOOGLE_CALENDAR_EVENT_ENDPOINT_TEMPLATE.format(calendar_id=calendar_path)

    description = (
        f"Email: {booking.customer_email}\n"
        f"Phone: {booking.customer_phone or ''}\n"
        f"Notes: {booking.notes or ''}"
    )
    payload = {
        "summary": f"Meeting with {booking.customer_name}",
        "description": description,
        "start": {
            "dateTime": normalize_datetime(booking.start_time).isoformat(),
            "timeZone": host.timezone,
        },
        "end": {
            "dateTime": normalize_datetime(booking.end_time).isoformat(),
            "timeZone": host.timezone,
        },
        "attendees": [{"email": booking.customer_email}],
        "reminders": {"useDefault": True},
    }
    req = request.Request(
        endpoint,
        data=json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        },
        method="POST",
    )
    event_payload = _read_json(req, failure="Google calendar event creation failed.")

    event_id = event_payload.get("id")
    if not isinstance(event_id, str) or not event_id.strip():
        raise ValueError("Google calendar event response missing id.")
    return event_payload


def is_google_calendar_connected(host: Any) -> bool:
    return (
        (getattr(host, "calendar_provider", "") or "").lower() == "google"
        and (getattr(host, "calendar_oauth_status", "") or "").lower() == "connected"
    )


def _read_json(req: request.Request, failure: str) -> dict[str, Any]:
    try:
        with request.urlopen(req, timeout=15) as resp:
            body = resp.read().decode("utf-8")
    except Exception as exc:
        raise ValueError(failure) from exc

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{failure} Response was invalid JSON.") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"{failure} Response was not an object.")
    return payload


def _parse_rfc3339(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return normalize_datetime(parsed)


def _find_credentials(db: Session, host_id: int) -> GoogleOAuthCredential | None:
    return (
        db.query(GoogleOAuthCredential)
        .filter(GoogleOAuthCredential.host_id == host_id)
        .first()
    )


def _expiry_from_seconds(expires_in: Any) -> datetime | None:
    try:
        if expires_in is None:
            return None
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)
