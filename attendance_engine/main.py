import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from attendance_engine.db import engine
from attendance_engine.errors import ApiError, error_response
from attendance_engine.logging_utils import setup_json_logging
from attendance_engine.routers import absences, analytics, checkins, cron, leaves
from attendance_engine.services.scheduler import HourlyTick, run_attendance_tick
from attendance_engine.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from attendance_engine.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
logger = logging.getLogger("attendance_engine.request")
finalizer_logger = logging.getLogger("attendance_engine.finalizer_worker")


app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "absence_id": getattr(request.state, "absence_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
    }
    return error_response(
        request,
        status_code=exc.status_code,
        code=code_map.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(absences.router)
app.include_router(analytics.router)
app.include_router(leaves.router)
app.include_router(checkins.router)
app.include_router(cron.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


async def _attendance_finalizer_loop(stop_event: asyncio.Event, tick: HourlyTick) -> None:
    while not stop_event.is_set():
        now_utc = datetime.now(timezone.utc)
        fire_at = tick.next_fire_at(now_utc)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=tick.seconds_until_next(now_utc))
        except asyncio.TimeoutError:
            pass
        else:
            break

        # Sweeps see the scheduled instant, not the slightly later wake-up time.
        try:
            result = await asyncio.to_thread(run_attendance_tick, fire_at)
        except Exception:
            finalizer_logger.exception("attendance_tick_failed", extra={"fire_at": fire_at})
            continue

        if result.errors:
            finalizer_logger.error("attendance_tick_partial_failure", extra=result.to_dict())
        elif result.marked_absent:
            finalizer_logger.info("attendance_tick", extra=result.to_dict())


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        finalizer_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    finalizer_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_attendance_finalizer() -> None:
    if not settings.finalizer_enabled:
        return
    if getattr(app.state, "finalizer_task", None) is not None:
        return

    tick = HourlyTick(minute=settings.finalizer_tick_minute)
    stop_event = asyncio.Event()
    app.state.finalizer_stop_event = stop_event
    app.state.finalizer_task = asyncio.create_task(_attendance_finalizer_loop(stop_event, tick))
    finalizer_logger.info(
        "attendance_finalizer_started",
        extra={
            "tick_minute": tick.minute,
            "local_hour": settings.finalizer_local_hour,
            "next_fire_at": tick.next_fire_at(datetime.now(timezone.utc)),
        },
    )


@app.on_event("shutdown")
async def stop_attendance_finalizer() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "finalizer_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "finalizer_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.finalizer_stop_event = None
    app.state.finalizer_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "finalizer_running": getattr(app.state, "finalizer_task", None) is not None,
    }
