from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Protocol
from zoneinfo import ZoneInfo

import dateparser
from pydantic import BaseModel, Field

from app.config import (
    DEFAULT_SLOT_DURATION_MINUTES,
    MAX_SLOT_DURATION_MINUTES,
    MIN_SLOT_DURATION_MINUTES,
)
from app.scheduling.availability import AvailabilityRuleSet
from app.scheduling.errors import ConflictError, UnavailableError, ValidationError
from app.scheduling.intervals import (
    Interval,
    Slot,
    any_overlap,
    confirmed_intervals,
    host_zone,
    interval_of,
    local_day_bounds,
    utc_now,
)
from app.scheduling.repositories import AccountDirectory, BookingRepository


logger = logging.getLogger("scheduler.scheduling.slots")


class ExternalBusyProvider(Protocol):
    def get_busy_intervals(
        self, host_id: int, range_start: datetime, range_end: datetime
    ) -> list[Interval]: ...


class NullBusyProvider:
    def get_busy_intervals(
        self, host_id: int, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        return []


class GenerateSlotsArgs(BaseModel):
    date: str = Field(min_length=1)
    duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES


def parse_generate_slots_args(raw_args: dict[str, Any]) -> GenerateSlotsArgs:
    return GenerateSlotsArgs.model_validate(raw_args)


@dataclass(frozen=True)
class SlotResult:
    slots: list[Slot]
    # Set when external calendar data could not be fetched; slots then only
    # account for bookings stored here.
    partial: bool = False

    def to_json(self) -> dict[str, Any]:
        return {
            "slots": [slot.to_json() for slot in self.slots],
            "partial": self.partial,
        }


@dataclass(frozen=True)
class SlotConstraints:
    """What a host's rules demand of one slot on one host-local day."""

    day: Interval
    buffer_minutes: int = 0
    daily_cap: int | None = None

    def search_range(self, slot: Interval) -> Interval:
        shadow = slot.buffered(self.buffer_minutes)
        return Interval(
            start=min(self.day.start, shadow.start),
            end=max(self.day.end, shadow.end),
        )

    def admits(self, slot: Interval, confirmed: list[Interval]) -> bool:
        if is_day_saturated(self.daily_cap, self.day, confirmed):
            return False
        return is_slot_free(slot, self.buffer_minutes, confirmed)


@dataclass
class _DayPlan:
    host_id: int
    day: date
    tz_name: str
    bounds: Interval
    candidates: dict[Slot, int] = field(default_factory=dict)
    daily_cap: int | None = None


def is_slot_free(slot: Interval, buffer_minutes: int, blocking: Iterable[Interval]) -> bool:
    return not any_overlap(slot.buffered(buffer_minutes), blocking)


def is_day_saturated(daily_cap: int | None, day: Interval, confirmed: Iterable[Interval]) -> bool:
    if not daily_cap:
        return False
    booked = sum(1 for interval in confirmed if day.start <= interval.start < day.end)
    return booked >= daily_cap


def day_of_week(day: date) -> int:
    # 0=Sunday .. 6=Saturday
    return day.isoweekday() % 7


class SlotGenerator:
    def __init__(
        self,
        accounts: AccountDirectory,
        rule_set: AvailabilityRuleSet,
        bookings: BookingRepository,
        busy_provider: ExternalBusyProvider | None = None,
        clock: Callable[[], datetime] = utc_now,
        min_duration_minutes: int = MIN_SLOT_DURATION_MINUTES,
        max_duration_minutes: int = MAX_SLOT_DURATION_MINUTES,
    ) -> None:
        self.accounts = accounts
        self.rule_set = rule_set
        self.bookings = bookings
        self.busy_provider = busy_provider or NullBusyProvider()
        self.clock = clock
        self.min_duration_minutes = min_duration_minutes
        self.max_duration_minutes = max_duration_minutes

    def generate_slots(self, host_id: int, day: date, duration_minutes: int) -> SlotResult:
        plan = self._plan(host_id=host_id, day=day, duration_minutes=duration_minutes)
        return self._filter(plan)

    def validate_slot(self, host_id: int, slot: Slot) -> SlotResult:
        """Re-run generation for the slot's day and require the slot to survive it.

        Raises ``ValidationError`` when the slot is not a tile of any availability
        window and ``ConflictError`` when it is one but is no longer free.
        """
        duration = slot.end - slot.start
        duration_minutes = int(duration.total_seconds() // 60)
        if duration <= timedelta(0) or duration != timedelta(minutes=duration_minutes):
            raise ValidationError("Slot duration must be a whole number of minutes.")

        zone = host_zone(self.accounts.get_host_timezone(host_id))
        local_day = slot.start.astimezone(zone).date()
        plan = self._plan(host_id=host_id, day=local_day, duration_minutes=duration_minutes)
        if slot not in plan.candidates:
            raise ValidationError("Requested time is not an available slot for this host.")

        result = self._filter(plan)
        if slot not in result.slots:
            raise ConflictError()
        return result

    def constraints_for(self, host_id: int, slot: Interval) -> SlotConstraints:
        tz_name = self.accounts.get_host_timezone(host_id)
        zone = host_zone(tz_name)
        local_day = slot.start.astimezone(zone).date()
        rules = self.rule_set.rules_for(host_id, day_of_week(local_day))
        windows = [(_rule_window(local_day, rule, zone), rule.buffer_minutes or 0) for rule in rules]
        return SlotConstraints(
            day=local_day_bounds(local_day, tz_name),
            buffer_minutes=_slot_buffer(slot, windows),
            daily_cap=_daily_cap(rules),
        )

    def _plan(self, host_id: int, day: date, duration_minutes: int) -> _DayPlan:
        if not self.min_duration_minutes <= duration_minutes <= self.max_duration_minutes:
            raise ValidationError(
                f"Duration must be between {self.min_duration_minutes} and "
                f"{self.max_duration_minutes} minutes."
            )

        tz_name = self.accounts.get_host_timezone(host_id)
        horizon_days = self.accounts.get_booking_horizon_days(host_id)
        zone = host_zone(tz_name)
        now = self.clock()
        today = now.astimezone(zone).date()
        if day < today:
            raise ValidationError("Date is in the past.")
        if day > today + timedelta(days=horizon_days):
            raise ValidationError(
                f"Date is beyond this host's booking horizon of {horizon_days} days."
            )

        rules = self.rule_set.rules_for(host_id, day_of_week(day))
        plan = _DayPlan(
            host_id=host_id,
            day=day,
            tz_name=tz_name,
            bounds=local_day_bounds(day, tz_name),
            daily_cap=_daily_cap(rules),
        )
        step = timedelta(minutes=duration_minutes)
        windows = [(_rule_window(day, rule, zone), rule.buffer_minutes or 0) for rule in rules]
        for window, _buffer in windows:
            cursor = window.start
            while cursor + step <= window.end:
                slot = Slot(start=cursor, end=cursor + step)
                if cursor >= now and slot not in plan.candidates:
                    # A slot inside several windows takes the largest of their buffers.
                    plan.candidates[slot] = _slot_buffer(slot, windows)
                cursor += step
        return plan

    def _filter(self, plan: _DayPlan) -> SlotResult:
        if not plan.candidates:
            return SlotResult(slots=[])

        if plan.daily_cap:
            booked_today = confirmed_intervals(
                self.bookings.find_confirmed_by_host_and_date(plan.host_id, plan.day, plan.tz_name)
            )
            if is_day_saturated(plan.daily_cap, plan.bounds, booked_today):
                logger.info(
                    "Daily booking cap reached host_id=%s date=%s cap=%s",
                    plan.host_id,
                    plan.day.isoformat(),
                    plan.daily_cap,
                )
                return SlotResult(slots=[])

        max_buffer = timedelta(minutes=max(plan.candidates.values()))
        earliest = min(slot.start for slot in plan.candidates) - max_buffer
        latest = max(slot.end for slot in plan.candidates) + max_buffer
        range_start = min(plan.bounds.start, earliest)
        range_end = max(plan.bounds.end, latest)

        confirmed = confirmed_intervals(
            self.bookings.find_confirmed_in_range(plan.host_id, range_start, range_end)
        )

        partial = False
        try:
            busy = _normalize_busy(
                self.busy_provider.get_busy_intervals(plan.host_id, range_start, range_end)
            )
        except UnavailableError:
            logger.warning(
                "External busy intervals unavailable host_id=%s date=%s; using internal bookings only",
                plan.host_id,
                plan.day.isoformat(),
            )
            busy = []
            partial = True

        blocking = confirmed + busy
        survivors = [
            slot
            for slot, buffer_minutes in plan.candidates.items()
            if is_slot_free(slot, buffer_minutes, blocking)
        ]
        return SlotResult(
            slots=sorted(survivors, key=lambda slot: (slot.start, slot.end)),
            partial=partial,
        )


def resolve_requested_date(
    text: str,
    tz_name: str,
    now_dt: datetime | None = None,
) -> date:
    """Parse ``YYYY-MM-DD`` or a phrase such as "next monday" in the host timezone."""
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Valid date is required (YYYY-MM-DD).")
    try:
        return date.fromisoformat(cleaned)
    except ValueError:
        pass

    zone = host_zone(tz_name)
    reference = (now_dt or utc_now()).astimezone(zone)
    parsed = dateparser.parse(
        cleaned,
        settings={
            "TIMEZONE": tz_name,
            "RELATIVE_BASE": reference.replace(tzinfo=None),
            "PREFER_DATES_FROM": "future",
        },
    )
    if parsed is None:
        raise ValidationError("Valid date is required (YYYY-MM-DD).")
    return parsed.date()


def _rule_window(day: date, rule: Any, zone: ZoneInfo) -> Interval:
    start_local = datetime.combine(day, rule.start_time, tzinfo=zone)
    end_local = datetime.combine(day, rule.end_time, tzinfo=zone)
    return Interval(
        start=start_local.astimezone(timezone.utc),
        end=end_local.astimezone(timezone.utc),
    )


def _slot_buffer(slot: Interval, windows: list[tuple[Interval, int]]) -> int:
    return max(
        (
            buffer_minutes
            for window, buffer_minutes in windows
            if window.start <= slot.start and slot.end <= window.end
        ),
        default=0,
    )


def _daily_cap(rules: list[Any]) -> int | None:
    caps = [rule.max_bookings_per_day for rule in rules if rule.max_bookings_per_day]
    return min(caps) if caps else None


def _normalize_busy(intervals: Iterable[Any]) -> list[Interval]:
    normalized: list[Interval] = []
    for item in intervals:
        if isinstance(item, Interval):
            normalized.append(item)
            continue
        interval = interval_of(item)
        if interval is not None:
            normalized.append(interval)
    return normalized
