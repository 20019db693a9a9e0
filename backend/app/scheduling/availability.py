from __future__ import annotations

from datetime import time
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.orm import Session

from app.db.models import AvailabilityRule, Host
from app.scheduling.errors import NotFoundError, ValidationError


class AvailabilityRuleSet(Protocol):
    def rules_for(self, host_id: int, day_of_week: int) -> list[Any]: ...


class SqlAlchemyAvailabilityRuleSet:
    def __init__(self, db: Session) -> None:
        self.db = db

    def rules_for(self, host_id: int, day_of_week: int) -> list[AvailabilityRule]:
        rows = (
            self.db.query(AvailabilityRule)
            .filter(AvailabilityRule.host_id == host_id)
            .filter(AvailabilityRule.day_of_week == day_of_week)
            .all()
        )
        return sort_rules(rows)


def sort_rules(rules: list[Any]) -> list[Any]:
    return sorted(rules, key=lambda rule: (rule.start_time, rule.end_time))


class CreateAvailabilityRuleArgs(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    buffer_minutes: int = Field(default=0, ge=0)
    max_bookings_per_day: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_window(self) -> "CreateAvailabilityRuleArgs":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time.")
        return self


class UpdateAvailabilityRuleArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: time | None = None
    end_time: time | None = None
    buffer_minutes: int | None = Field(default=None, ge=0)
    max_bookings_per_day: int | None = Field(default=None, ge=1)


def parse_create_rule_args(raw_args: dict[str, Any]) -> CreateAvailabilityRuleArgs:
    return CreateAvailabilityRuleArgs.model_validate(raw_args)


def parse_update_rule_args(raw_args: dict[str, Any]) -> UpdateAvailabilityRuleArgs:
    return UpdateAvailabilityRuleArgs.model_validate(raw_args)


def list_availability_rules(db: Session, host_id: int) -> list[AvailabilityRule]:
    _require_host(db, host_id=host_id)
    rows = db.query(AvailabilityRule).filter(AvailabilityRule.host_id == host_id).all()
    return sorted(rows, key=lambda rule: (rule.day_of_week, rule.start_time))


def get_availability_rule(db: Session, host_id: int, rule_id: int) -> AvailabilityRule:
    rule = (
        db.query(AvailabilityRule)
        .filter(AvailabilityRule.host_id == host_id)
        .filter(AvailabilityRule.id == rule_id)
        .first()
    )
    if rule is None:
        raise NotFoundError("Availability rule not found.")
    return rule


def create_availability_rule(
    db: Session,
    host_id: int,
    args: CreateAvailabilityRuleArgs,
) -> AvailabilityRule:
    _require_host(db, host_id=host_id)
    rule = AvailabilityRule(
        host_id=host_id,
        day_of_week=args.day_of_week,
        start_time=args.start_time,
        end_time=args.end_time,
        buffer_minutes=args.buffer_minutes,
        max_bookings_per_day=args.max_bookings_per_day,
    )
    db.add(rule)
    db.commit()
    return rule


def update_availability_rule(
    db: Session,
    host_id: int,
    rule_id: int,
    args: UpdateAvailabilityRuleArgs,
) -> AvailabilityRule:
    rule = get_availability_rule(db, host_id=host_id, rule_id=rule_id)
    patch = args.model_dump(exclude_unset=True)

    # The window is validated against the merged result, not the patch alone.
    start_time = patch.get("start_time", rule.start_time)
    end_time = patch.get("end_time", rule.end_time)
    if start_time is None or end_time is None or start_time >= end_time:
        raise ValidationError("start_time must be before end_time.")
    for field in ("day_of_week", "buffer_minutes"):
        if field in patch and patch[field] is None:
            raise ValidationError(f"{field} cannot be null.")

    for field, value in patch.items():
        setattr(rule, field, value)
    db.commit()
    return rule


def delete_availability_rule(db: Session, host_id: int, rule_id: int) -> None:
    rule = get_availability_rule(db, host_id=host_id, rule_id=rule_id)
    db.delete(rule)
    db.commit()


def serialize_rule(rule: AvailabilityRule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "host_id": rule.host_id,
        "day_of_week": rule.day_of_week,
        "start_time": rule.start_time.strftime("%H:%M"),
        "end_time": rule.end_time.strftime("%H:%M"),
        "buffer_minutes": rule.buffer_minutes,
        "max_bookings_per_day": rule.max_bookings_per_day,
    }


def _require_host(db: Session, host_id: int) -> Host:
    host = db.get(Host, host_id)
    if host is None:
        raise NotFoundError("Host not found.")
    return host
