import threading
from datetime import datetime, time, timedelta, timezone
from itertools import count
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models import Host
from app.scheduling.engine import assemble_engine
from app.scheduling.errors import ConflictError, NotFoundError, UnavailableError
from app.scheduling.intervals import any_overlap, confirmed_intervals, interval_of, local_day_bounds


# Sunday; the following day, 2026-03-02, is a Monday.
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
HOST_ID = 1


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def make_rule(day_of_week=1, start="09:00", end="17:00", buffer_minutes=0, max_bookings_per_day=None):
    start_hour, start_minute = (int(part) for part in start.split(":"))
    end_hour, end_minute = (int(part) for part in end.split(":"))
    return SimpleNamespace(
        day_of_week=day_of_week,
        start_time=time(start_hour, start_minute),
        end_time=time(end_hour, end_minute),
        buffer_minutes=buffer_minutes,
        max_bookings_per_day=max_bookings_per_day,
    )


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeAccounts:
    def __init__(self):
        self.hosts = {}

    def add_host(self, host_id=HOST_ID, timezone_name="UTC", horizon_days=30):
        self.hosts[host_id] = SimpleNamespace(
            id=host_id, timezone=timezone_name, booking_horizon_days=horizon_days
        )

    def get_host_timezone(self, host_id):
        if host_id not in self.hosts:
            raise NotFoundError("Host not found.")
        return self.hosts[host_id].timezone

    def get_booking_horizon_days(self, host_id):
        if host_id not in self.hosts:
            raise NotFoundError("Host not found.")
        return self.hosts[host_id].booking_horizon_days


class FakeRuleSet:
    def __init__(self):
        self.rules = {}

    def add(self, host_id=HOST_ID, **kwargs):
        rule = make_rule(**kwargs)
        self.rules.setdefault(host_id, []).append(rule)
        return rule

    def rules_for(self, host_id, day_of_week):
        rules = [r for r in self.rules.get(host_id, []) if r.day_of_week == day_of_week]
        return sorted(rules, key=lambda rule: (rule.start_time, rule.end_time))


class InMemoryBookingRepository:
    """Booking storage with the same overlap guarantee as the database constraint.

    With ``serialize`` on, ``run_atomic`` holds one lock for the whole unit like
    a row lock would; with it off, only ``insert_confirmed`` is guarded.
    """

    def __init__(self, serialize=True):
        self.rows = []
        self.serialize = serialize
        self.unit_lock = threading.RLock()
        self.insert_lock = threading.Lock()
        self.locked_hosts = []
        self._ids = count(1)

    def add_confirmed(self, host_id, start, end, booking_id=None):
        booking = SimpleNamespace(
            id=booking_id or next(self._ids),
            host_id=host_id,
            booking_request_id=None,
            customer_name="Existing",
            customer_email="existing@example.com",
            customer_phone=None,
            notes=None,
            start_time=start,
            end_time=end,
            status="confirmed",
            source="host",
        )
        self.rows.append(booking)
        return booking

    def confirmed_for(self, host_id):
        return [b for b in self.rows if b.host_id == host_id and b.status == "confirmed"]

    def find_confirmed_in_range(self, host_id, range_start, range_end):
        return sorted(
            [
                b
                for b in list(self.rows)
                if b.host_id == host_id
                and b.status == "confirmed"
                and b.end_time > range_start
                and b.start_time < range_end
            ],
            key=lambda b: b.start_time,
        )

    def find_confirmed_by_host_and_date(self, host_id, day, tz_name):
        bounds = local_day_bounds(day, tz_name)
        return self.find_confirmed_in_range(host_id, bounds.start, bounds.end)

    def list_for_host(self, host_id, range_start, range_end):
        return sorted(
            [
                b
                for b in self.rows
                if b.host_id == host_id and b.end_time > range_start and b.start_time < range_end
            ],
            key=lambda b: b.start_time,
        )

    def get(self, host_id, booking_id):
        for booking in self.rows:
            if booking.id == booking_id and booking.host_id == host_id:
                return booking
        return None

    def insert_confirmed(self, booking):
        with self.insert_lock:
            candidate = interval_of(booking)
            existing = confirmed_intervals(self.confirmed_for(booking.host_id))
            if any_overlap(candidate, existing):
                raise ConflictError()
            booking.status = "confirmed"
            booking.id = next(self._ids)
            self.rows.append(booking)
        return booking

    def save(self, booking):
        return booking

    def lock_host(self, host_id):
        self.locked_hosts.append(host_id)

    def run_atomic(self, fn):
        if self.serialize:
            with self.unit_lock:
                return fn()
        return fn()


class InMemoryBookingRequestRepository:
    def __init__(self):
        self.rows = {}

    def add(self, booking_request):
        self.rows[booking_request.id] = booking_request
        return booking_request

    def get(self, request_id):
        return self.rows.get(request_id)

    def get_for_update(self, request_id):
        return self.rows.get(request_id)

    def find_by_token(self, token):
        for booking_request in self.rows.values():
            if booking_request.confirmation_token == token:
                return booking_request
        return None

    def save(self, booking_request):
        self.rows[booking_request.id] = booking_request
        return booking_request


class RecordingPublisher:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    def booking_confirmed(self, booking):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.published.append(booking)


class FailingBusyProvider:
    def get_busy_intervals(self, host_id, range_start, range_end):
        raise UnavailableError()


class StaticBusyProvider:
    def __init__(self, intervals):
        self.intervals = intervals

    def get_busy_intervals(self, host_id, range_start, range_end):
        return list(self.intervals)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def accounts():
    directory = FakeAccounts()
    directory.add_host()
    return directory


@pytest.fixture
def rule_set():
    return FakeRuleSet()


@pytest.fixture
def bookings():
    return InMemoryBookingRepository()


@pytest.fixture
def requests_repo():
    return InMemoryBookingRequestRepository()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def engine(accounts, rule_set, bookings, requests_repo, publisher, clock):
    return assemble_engine(
        accounts=accounts,
        rule_set=rule_set,
        bookings=bookings,
        requests=requests_repo,
        publisher=publisher,
        clock=clock,
    )


@pytest.fixture
def db_session():
    sql_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(sql_engine)
    session = sessionmaker(bind=sql_engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        sql_engine.dispose()


@pytest.fixture
def host_row(db_session):
    host = Host(name="Dana Host", email="dana@example.com", timezone="UTC", booking_horizon_days=30)
    db_session.add(host)
    db_session.commit()
    return host
