from datetime import date, time

import pytest
from sqlalchemy.exc import IntegrityError

from app.db.models import AvailabilityRule, Booking, BookingRequest
from app.scheduling.availability import SqlAlchemyAvailabilityRuleSet
from app.scheduling.engine import assemble_engine
from app.scheduling.errors import ConflictError, NotFoundError
from app.scheduling.intervals import normalize_datetime
from app.scheduling.repositories import (
    BOOKING_OVERLAP_CONSTRAINT,
    SqlAlchemyAccountDirectory,
    SqlAlchemyBookingRepository,
    SqlAlchemyBookingRequestRepository,
)
from app.scheduling.workflow import parse_create_request_args
from conftest import NOW, FakeClock, utc


def _booking(host_id, start, end, status="confirmed", name="Ali"):
    return Booking(
        host_id=host_id,
        customer_name=name,
        customer_email=f"{name.lower()}@example.com",
        start_time=start,
        end_time=end,
        status=status,
        source="host",
    )


def test_account_directory_reads_host_settings(db_session, host_row):
    directory = SqlAlchemyAccountDirectory(db_session)

    assert directory.get_host_timezone(host_row.id) == "UTC"
    assert directory.get_booking_horizon_days(host_row.id) == 30
    with pytest.raises(NotFoundError):
        directory.get_host_timezone(host_row.id + 100)


def test_find_confirmed_in_range_uses_half_open_overlap(db_session, host_row):
    db_session.add_all(
        [
            _booking(host_row.id, utc(2026, 3, 2, 9), utc(2026, 3, 2, 10), name="Early"),
            _booking(host_row.id, utc(2026, 3, 2, 12), utc(2026, 3, 2, 13), name="Noon"),
            _booking(host_row.id, utc(2026, 3, 2, 10), utc(2026, 3, 2, 11), status="cancelled"),
            _booking(host_row.id, utc(2026, 3, 2, 11), utc(2026, 3, 2, 12), name="Late"),
        ]
    )
    db_session.commit()
    repository = SqlAlchemyBookingRepository(db_session)

    found = repository.find_confirmed_in_range(host_row.id, utc(2026, 3, 2, 10), utc(2026, 3, 2, 12))

    assert [b.customer_name for b in found] == ["Late"]


def test_find_confirmed_by_host_and_date_uses_local_day(db_session, host_row):
    db_session.add_all(
        [
            _booking(host_row.id, utc(2026, 3, 2, 23), utc(2026, 3, 3, 0), name="Monday"),
            _booking(host_row.id, utc(2026, 3, 3, 9), utc(2026, 3, 3, 10), name="Tuesday"),
        ]
    )
    db_session.commit()
    repository = SqlAlchemyBookingRepository(db_session)

    found = repository.find_confirmed_by_host_and_date(host_row.id, date(2026, 3, 2), "UTC")

    assert [b.customer_name for b in found] == ["Monday"]


def test_run_atomic_commits_inserted_booking(db_session, host_row):
    repository = SqlAlchemyBookingRepository(db_session)
    repository.find_confirmed_in_range(host_row.id, utc(2026, 3, 2), utc(2026, 3, 3))

    booking = repository.run_atomic(
        lambda: repository.insert_confirmed(
            _booking(host_row.id, utc(2026, 3, 2, 9), utc(2026, 3, 2, 10), status="pending")
        )
    )

    assert booking.id is not None
    assert booking.status == "confirmed"
    assert repository.get(host_row.id, booking.id) is booking
    assert repository.get(host_row.id + 1, booking.id) is None


def test_run_atomic_rolls_back_on_error(db_session, host_row):
    repository = SqlAlchemyBookingRepository(db_session)

    def failing_unit():
        repository.insert_confirmed(_booking(host_row.id, utc(2026, 3, 2, 9), utc(2026, 3, 2, 10)))
        raise ConflictError()

    with pytest.raises(ConflictError):
        repository.run_atomic(failing_unit)

    assert db_session.query(Booking).count() == 0


def test_list_for_host_includes_cancelled_bookings(db_session, host_row):
    db_session.add_all(
        [
            _booking(host_row.id, utc(2026, 3, 2, 9), utc(2026, 3, 2, 10)),
            _booking(host_row.id, utc(2026, 3, 2, 10), utc(2026, 3, 2, 11), status="cancelled"),
        ]
    )
    db_session.commit()
    repository = SqlAlchemyBookingRepository(db_session)

    listed = repository.list_for_host(host_row.id, utc(2026, 3, 2), utc(2026, 3, 3))

    assert [b.status for b in listed] == ["confirmed", "cancelled"]


def test_booking_request_repository_lookups(db_session, host_row):
    bookings = SqlAlchemyBookingRepository(db_session)
    requests = SqlAlchemyBookingRequestRepository(db_session)
    booking_request = BookingRequest(
        host_id=host_row.id,
        customer_name="Pat",
        customer_email="pat@example.com",
        start_time=utc(2026, 3, 2, 10),
        end_time=utc(2026, 3, 2, 11),
        confirmation_token="a" * 64,
        expires_at=utc(2026, 3, 1, 12, 30),
        created_at=NOW,
    )
    bookings.run_atomic(lambda: requests.add(booking_request))

    assert booking_request.id is not None
    assert booking_request.status == "pending"
    assert requests.get(booking_request.id) is booking_request
    assert requests.find_by_token("a" * 64) is booking_request
    assert requests.find_by_token("b" * 64) is None
    assert requests.get_for_update(booking_request.id) is booking_request


def test_rule_set_returns_rules_for_one_weekday_in_order(db_session, host_row):
    db_session.add_all(
        [
            AvailabilityRule(host_id=host_row.id, day_of_week=1, start_time=time(13), end_time=time(17)),
            AvailabilityRule(host_id=host_row.id, day_of_week=1, start_time=time(9), end_time=time(12)),
            AvailabilityRule(host_id=host_row.id, day_of_week=2, start_time=time(9), end_time=time(17)),
        ]
    )
    db_session.commit()

    rules = SqlAlchemyAvailabilityRuleSet(db_session).rules_for(host_row.id, 1)

    assert [(r.start_time, r.end_time) for r in rules] == [(time(9), time(12)), (time(13), time(17))]


def test_request_round_trip_through_database(db_session, host_row):
    db_session.add(
        AvailabilityRule(
            host_id=host_row.id,
            day_of_week=1,
            start_time=time(9),
            end_time=time(17),
            buffer_minutes=15,
        )
    )
    db_session.commit()
    engine = assemble_engine(
        accounts=SqlAlchemyAccountDirectory(db_session),
        rule_set=SqlAlchemyAvailabilityRuleSet(db_session),
        bookings=SqlAlchemyBookingRepository(db_session),
        requests=SqlAlchemyBookingRequestRepository(db_session),
        clock=FakeClock(),
    )
    args = parse_create_request_args(
        {
            "customer_name": "Pat",
            "customer_email": "pat@example.com",
            "start_time": "2026-03-02T10:00:00+00:00",
            "end_time": "2026-03-02T11:00:00+00:00",
        }
    )
    first = engine.workflow.create_request(host_row.id, args)
    second = engine.workflow.create_request(host_row.id, args)

    booking = engine.workflow.confirm_request(first.confirmation_token)
    with pytest.raises(ConflictError):
        engine.workflow.confirm_request(second.confirmation_token)

    stored = db_session.query(Booking).all()
    assert [b.id for b in stored] == [booking.id]
    assert normalize_datetime(stored[0].start_time) == utc(2026, 3, 2, 10)
    assert db_session.get(BookingRequest, first.id).status == "confirmed"
    assert db_session.get(BookingRequest, second.id).status == "cancelled"

    offered = engine.slot_generator.generate_slots(host_row.id, date(2026, 3, 2), 60)
    assert [slot.start.hour for slot in offered.slots] == [12, 13, 14, 15, 16]


def test_unsupported_horizon_falls_back_to_default(db_session, host_row):
    host_row.booking_horizon_days = 45
    db_session.commit()

    assert SqlAlchemyAccountDirectory(db_session).get_booking_horizon_days(host_row.id) == 30


def _reject_booking_flush(db_session, monkeypatch, constraint):
    real_flush = db_session.flush

    def flush(objects=None):
        if any(isinstance(obj, Booking) for obj in db_session.new):
            raise IntegrityError(
                "INSERT INTO bookings",
                {},
                Exception(f'conflicting key value violates exclusion constraint "{constraint}"'),
            )
        return real_flush(objects)

    monkeypatch.setattr(db_session, "flush", flush)


def test_overlap_constraint_violation_becomes_conflict(db_session, host_row, monkeypatch):
    _reject_booking_flush(db_session, monkeypatch, BOOKING_OVERLAP_CONSTRAINT)
    repository = SqlAlchemyBookingRepository(db_session)

    with pytest.raises(ConflictError):
        repository.insert_confirmed(_booking(host_row.id, utc(2026, 3, 2, 9), utc(2026, 3, 2, 10)))


def test_other_integrity_errors_propagate(db_session, host_row, monkeypatch):
    _reject_booking_flush(db_session, monkeypatch, "bookings_customer_email_check")
    repository = SqlAlchemyBookingRepository(db_session)

    with pytest.raises(IntegrityError):
        repository.insert_confirmed(_booking(host_row.id, utc(2026, 3, 2, 9), utc(2026, 3, 2, 10)))


def test_confirm_rejected_by_overlap_constraint_cancels_request(db_session, host_row, monkeypatch):
    db_session.add(
        AvailabilityRule(host_id=host_row.id, day_of_week=1, start_time=time(9), end_time=time(17))
    )
    db_session.commit()
    engine = assemble_engine(
        accounts=SqlAlchemyAccountDirectory(db_session),
        rule_set=SqlAlchemyAvailabilityRuleSet(db_session),
        bookings=SqlAlchemyBookingRepository(db_session),
        requests=SqlAlchemyBookingRequestRepository(db_session),
        clock=FakeClock(),
    )
    booking_request = engine.workflow.create_request(
        host_row.id,
        parse_create_request_args(
            {
                "customer_name": "Pat",
                "customer_email": "pat@example.com",
                "start_time": "2026-03-02T10:00:00+00:00",
                "end_time": "2026-03-02T11:00:00+00:00",
            }
        ),
    )
    # A concurrent writer committed an overlapping booking the re-check could not see.
    _reject_booking_flush(db_session, monkeypatch, BOOKING_OVERLAP_CONSTRAINT)

    with pytest.raises(ConflictError):
        engine.workflow.confirm_request(booking_request.confirmation_token)

    db_session.expire_all()
    assert db_session.query(Booking).count() == 0
    assert db_session.get(BookingRequest, booking_request.id).status == "cancelled"


def test_lock_host_runs_inside_an_atomic_unit(db_session, host_row):
    repository = SqlAlchemyBookingRepository(db_session)

    def locked_unit():
        repository.lock_host(host_row.id)
        return repository.insert_confirmed(
            _booking(host_row.id, utc(2026, 3, 2, 9), utc(2026, 3, 2, 10))
        )

    booking = repository.run_atomic(locked_unit)

    assert db_session.query(Booking).one().id == booking.id
