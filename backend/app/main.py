import json
import logging
import time
import uuid
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.db.session import SessionLocal
from app.scheduling.availability import (
    create_availability_rule,
    delete_availability_rule,
    get_availability_rule,
    list_availability_rules,
    parse_create_rule_args,
    parse_update_rule_args,
    serialize_rule,
    update_availability_rule,
)
from app.scheduling.bookings import (
    parse_create_booking_args,
    parse_list_bookings_args,
    serialize_booking,
)
from app.scheduling.engine import build_engine
from app.scheduling.errors import SchedulingError
from app.scheduling.slots import parse_generate_slots_args, resolve_requested_date
from app.scheduling.workflow import parse_create_request_args, serialize_booking_request
from app.security.dependencies import require_admin_api_key


def configure_logging() -> logging.Logger:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    return logging.getLogger("scheduler.backend")


logger = configure_logging()
app = FastAPI(title="Scheduler Backend")


def map_validation_error(error: ValidationError) -> dict[str, str]:
    return {
        "error_code": "INVALID_ARGS",
        "human_message": f"Invalid args: {error.errors()[0]['msg']}",
    }


def scheduling_error_response(error: SchedulingError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_response())


def system_down_response(human_message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error_code": "SYSTEM_DOWN",
            "human_message": human_message,
        },
    )


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    response.headers["x-request-id"] = request_id

    logger.info(
        json.dumps(
            {
                "event": "http_request",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
        )
    )
    return response


@app.get("/health")
async def health():
    return JSONResponse(content={"ok": True})


@app.get("/v1/hosts/{host_id}/availability-rules", dependencies=[Depends(require_admin_api_key)])
async def list_rules(host_id: int) -> JSONResponse:
    db = SessionLocal()
    try:
        rules = list_availability_rules(db=db, host_id=host_id)
        return JSONResponse(content={"ok": True, "data": {"rules": [serialize_rule(r) for r in rules]}})
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    finally:
        db.close()


@app.post("/v1/hosts/{host_id}/availability-rules", dependencies=[Depends(require_admin_api_key)])
async def create_rule(host_id: int, payload: dict[str, Any]) -> JSONResponse:
    try:
        args = parse_create_rule_args(payload)
    except ValidationError as exc:
        return JSONResponse(content={"ok": False, **map_validation_error(exc)}, status_code=400)

    db = SessionLocal()
    try:
        rule = create_availability_rule(db=db, host_id=host_id, args=args)
        return JSONResponse(
            status_code=201,
            content={"ok": True, "data": {"rule": serialize_rule(rule)}},
        )
    except SchedulingError as exc:
        db.rollback()
        return scheduling_error_response(exc)
    except Exception:
        db.rollback()
        logger.exception("Failed creating availability rule host_id=%s", host_id)
        return system_down_response("Temporary issue creating availability rule.")
    finally:
        db.close()


@app.get(
    "/v1/hosts/{host_id}/availability-rules/{rule_id}",
    dependencies=[Depends(require_admin_api_key)],
)
async def get_rule(host_id: int, rule_id: int) -> JSONResponse:
    db = SessionLocal()
    try:
        rule = get_availability_rule(db=db, host_id=host_id, rule_id=rule_id)
        return JSONResponse(content={"ok": True, "data": {"rule": serialize_rule(rule)}})
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    finally:
        db.close()


@app.patch(
    "/v1/hosts/{host_id}/availability-rules/{rule_id}",
    dependencies=[Depends(require_admin_api_key)],
)
async def update_rule(host_id: int, rule_id: int, payload: dict[str, Any]) -> JSONResponse:
    try:
        args = parse_update_rule_args(payload)
    except ValidationError as exc:
        return JSONResponse(content={"ok": False, **map_validation_error(exc)}, status_code=400)

    db = SessionLocal()
    try:
        rule = update_availability_rule(db=db, host_id=host_id, rule_id=rule_id, args=args)
        return JSONResponse(content={"ok": True, "data": {"rule": serialize_rule(rule)}})
    except SchedulingError as exc:
        db.rollback()
        return scheduling_error_response(exc)
    except Exception:
        db.rollback()
        logger.exception("Failed updating availability rule rule_id=%s", rule_id)
        return system_down_response("Temporary issue updating availability rule.")
    finally:
        db.close()


@app.delete(
    "/v1/hosts/{host_id}/availability-rules/{rule_id}",
    dependencies=[Depends(require_admin_api_key)],
)
async def delete_rule(host_id: int, rule_id: int) -> JSONResponse:
    db = SessionLocal()
    try:
        delete_availability_rule(db=db, host_id=host_id, rule_id=rule_id)
        return JSONResponse(content={"ok": True, "data": {"rule_id": rule_id}})
    except SchedulingError as exc:
        db.rollback()
        return scheduling_error_response(exc)
    finally:
        db.close()


@app.get("/v1/hosts/{host_id}/slots")
async def get_slots(host_id: int, request: Request) -> JSONResponse:
    try:
        args = parse_generate_slots_args(dict(request.query_params))
    except ValidationError as exc:
        return JSONResponse(content={"ok": False, **map_validation_error(exc)}, status_code=400)

    db = SessionLocal()
    try:
        engine = build_engine(db)
        tz_name = engine.accounts.get_host_timezone(host_id)
        day = resolve_requested_date(args.date, tz_name, now_dt=engine.clock())
        result = engine.slot_generator.generate_slots(
            host_id=host_id,
            day=day,
            duration_minutes=args.duration_minutes,
        )
        return JSONResponse(
            content={
                "ok": True,
                "data": {
                    "date": day.isoformat(),
                    "duration_minutes": args.duration_minutes,
                    **result.to_json(),
                },
            }
        )
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    except Exception:
        logger.exception("Failed generating slots host_id=%s", host_id)
        return system_down_response("Temporary issue loading available time slots.")
    finally:
        db.close()


@app.post("/v1/hosts/{host_id}/booking-requests")
async def create_booking_request(host_id: int, payload: dict[str, Any]) -> JSONResponse:
    try:
        args = parse_create_request_args(payload)
    except ValidationError as exc:
        return JSONResponse(content={"ok": False, **map_validation_error(exc)}, status_code=400)

    db = SessionLocal()
    try:
        engine = build_engine(db)
        booking_request = engine.workflow.create_request(host_id=host_id, args=args)
        data = serialize_booking_request(booking_request, now=engine.clock())
        data["confirmation_token"] = booking_request.confirmation_token
        return JSONResponse(status_code=201, content={"ok": True, "data": {"booking_request": data}})
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    except Exception:
        logger.exception("Failed creating booking request host_id=%s", host_id)
        return system_down_response("Temporary issue requesting this time slot.")
    finally:
        db.close()


@app.get("/v1/booking-requests/{request_id}")
async def get_booking_request(request_id: str) -> JSONResponse:
    db = SessionLocal()
    try:
        engine = build_engine(db)
        booking_request = engine.workflow.get_request(request_id)
        return JSONResponse(
            content={
                "ok": True,
                "data": {
                    "booking_request": serialize_booking_request(booking_request, now=engine.clock())
                },
            }
        )
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    finally:
        db.close()


@app.post("/v1/booking-requests/confirm/{token}")
async def confirm_booking_request(token: str) -> JSONResponse:
    db = SessionLocal()
    try:
        engine = build_engine(db, session_factory=SessionLocal)
        booking = engine.workflow.confirm_request(token)
        return JSONResponse(content={"ok": True, "data": {"booking": serialize_booking(booking)}})
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    except Exception:
        logger.exception("Failed confirming booking request")
        return system_down_response("Temporary issue confirming booking.")
    finally:
        db.close()


@app.post("/v1/booking-requests/{request_id}/cancel")
async def cancel_booking_request(request_id: str) -> JSONResponse:
    db = SessionLocal()
    try:
        engine = build_engine(db)
        booking_request = engine.workflow.cancel_request(request_id)
        return JSONResponse(
            content={
                "ok": True,
                "data": {
                    "booking_request": serialize_booking_request(booking_request, now=engine.clock())
                },
            }
        )
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    except Exception:
        logger.exception("Failed cancelling booking request request_id=%s", request_id)
        return system_down_response("Temporary issue cancelling booking request.")
    finally:
        db.close()


@app.get("/v1/hosts/{host_id}/bookings", dependencies=[Depends(require_admin_api_key)])
async def list_bookings(host_id: int, request: Request) -> JSONResponse:
    try:
        args = parse_list_bookings_args(dict(request.query_params))
    except ValidationError as exc:
        return JSONResponse(content={"ok": False, **map_validation_error(exc)}, status_code=400)

    db = SessionLocal()
    try:
        engine = build_engine(db)
        range_start, range_end = args.resolve_range(now=engine.clock())
        bookings = engine.host_bookings.list_bookings(host_id, range_start, range_end)
        return JSONResponse(
            content={"ok": True, "data": {"bookings": [serialize_booking(b) for b in bookings]}}
        )
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    finally:
        db.close()


@app.post("/v1/hosts/{host_id}/bookings", dependencies=[Depends(require_admin_api_key)])
async def create_host_booking(host_id: int, payload: dict[str, Any]) -> JSONResponse:
    try:
        args = parse_create_booking_args(payload)
    except ValidationError as exc:
        return JSONResponse(content={"ok": False, **map_validation_error(exc)}, status_code=400)

    db = SessionLocal()
    try:
        engine = build_engine(db, session_factory=SessionLocal)
        booking = engine.host_bookings.create_booking(host_id=host_id, args=args)
        return JSONResponse(status_code=201, content={"ok": True, "data": {"booking": serialize_booking(booking)}})
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    except Exception:
        logger.exception("Failed creating host booking host_id=%s", host_id)
        return system_down_response("Temporary issue creating booking.")
    finally:
        db.close()


@app.post(
    "/v1/hosts/{host_id}/bookings/{booking_id}/cancel",
    dependencies=[Depends(require_admin_api_key)],
)
async def cancel_host_booking(host_id: int, booking_id: int) -> JSONResponse:
    db = SessionLocal()
    try:
        engine = build_engine(db)
        booking = engine.host_bookings.cancel_booking(host_id=host_id, booking_id=booking_id)
        return JSONResponse(content={"ok": True, "data": {"booking": serialize_booking(booking)}})
    except SchedulingError as exc:
        return scheduling_error_response(exc)
    except Exception:
        logger.exception("Failed cancelling booking booking_id=%s", booking_id)
        return system_down_response("Temporary issue cancelling booking.")
    finally:
        db.close()
