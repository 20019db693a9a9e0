from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.scheduling.errors import ValidationError


@dataclass(frozen=True)
class Interval:
    """Half-open ``[start, end)`` span of absolute time."""

    start: datetime
    end: datetime

    def buffered(self, minutes: int) -> "Interval":
        if not minutes:
            return self
        pad = timedelta(minutes=minutes)
        return Interval(start=self.start - pad, end=self.end + pad)


@dataclass(frozen=True)
class Slot(Interval):
    def to_json(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def overlaps(a: Interval, b: Interval) -> bool:
    # Back-to-back (a.end == b.start) and zero-length spans never overlap.
    return a.start < b.end and b.start < a.end


def any_overlap(candidate: Interval, existing: Iterable[Interval]) -> bool:
    for other in existing:
        if overlaps(candidate, other):
            return True
    return False


def interval_of(row: Any) -> Interval | None:
    """Build an interval from anything carrying ``start_time``/``end_time``."""
    start = normalize_datetime(getattr(row, "start_time", None))
    end = normalize_datetime(getattr(row, "end_time", None))
    if start is None or end is None:
        return None
    return Interval(start=start, end=end)


def confirmed_intervals(bookings: Iterable[Any], exclude_id: Any = None) -> list[Interval]:
    intervals: list[Interval] = []
    for booking in bookings:
        if str(getattr(booking, "status", "") or "").lower() != "confirmed":
            continue
        if exclude_id is not None and getattr(booking, "id", None) == exclude_id:
            continue
        interval = interval_of(booking)
        if interval is not None:
            intervals.append(interval)
    return intervals


def normalize_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def host_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown host timezone: {tz_name!r}.") from exc


def local_day_bounds(day: date, tz_name: str) -> Interval:
    """UTC interval covering the host-local calendar day ``day``."""
    tzinfo = host_zone(tz_name)
    start_local = datetime.combine(day, time.min, tzinfo=tzinfo)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tzinfo)
    return Interval(
        start=start_local.astimezone(timezone.utc),
        end=end_local.astimezone(timezone.utc),
    )
