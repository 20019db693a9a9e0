from app.scheduling.engine import SchedulingEngine, assemble_engine, build_engine
from app.scheduling.errors import (
    ConflictError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    SchedulingError,
    UnavailableError,
    ValidationError,
)
from app.scheduling.intervals import Interval, Slot, any_overlap, overlaps
from app.scheduling.slots import SlotGenerator, SlotResult
from app.scheduling.workflow import BookingRequestWorkflow

__all__ = [
    "BookingRequestWorkflow",
    "ConflictError",
    "ExpiredError",
    "Interval",
    "InvalidStateError",
    "NotFoundError",
    "SchedulingEngine",
    "SchedulingError",
    "Slot",
    "SlotGenerator",
    "SlotResult",
    "UnavailableError",
    "ValidationError",
    "any_overlap",
    "assemble_engine",
    "build_engine",
    "overlaps",
]
