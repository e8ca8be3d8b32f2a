"""Reminders Module - FastAPI service with the background reminder scheduler."""

from __future__ import annotations

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query

from modules.reminders.errors import (
    InvalidOffset,
    InvalidTimeFormat,
    ProfileNotFound,
    StoreUnavailable,
)
from modules.reminders.service import ReminderService
from shared.auth import require_service_auth
from shared.config import get_settings
from shared.database import dispose_engine, get_session_factory
from shared.redis import close_redis, get_redis
from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    BroadcastRequest,
    BroadcastResult,
    DeliveryReport,
    HealthCheckResponse,
    ScheduleUpdate,
    ScheduleView,
)

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Reminders Module", version="1.0.0")

service: ReminderService | None = None


def _service() -> ReminderService:
    if service is None:
        raise HTTPException(status_code=503, detail="Reminders service not ready")
    return service


@app.on_event("startup")
async def startup():
    global service
    settings = get_settings()
    redis_client = await get_redis()
    service = ReminderService.from_settings(settings, get_session_factory(), redis=redis_client)
    service.start()
    logger.info("reminders_module_ready", tick_seconds=settings.reminder_tick_seconds)


@app.on_event("shutdown")
async def shutdown():
    if service is not None:
        await service.shutdown()
    await close_redis()
    await dispose_engine()
    logger.info("reminders_module_shutdown")


def _http_error(e: Exception, operation: str) -> HTTPException:
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, (InvalidTimeFormat, InvalidOffset)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, ProfileNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, StoreUnavailable):
        return HTTPException(status_code=503, detail=str(e))
    logger.error("reminders_endpoint_error", operation=operation, error=str(e), exc_info=True)
    return HTTPException(status_code=500, detail="Internal error")


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse()


@app.get("/health/check", response_model=HealthCheckResponse)
async def health_check(_=Depends(require_service_auth)):
    """Probe the user store and the messaging channel."""
    return await _service().health_report()


@app.get("/schedule/{recipient_id}", response_model=ScheduleView)
async def get_schedule(recipient_id: int, _=Depends(require_service_auth)):
    try:
        return await _service().get_user_schedule(recipient_id)
    except Exception as e:
        raise _http_error(e, "get_schedule")


@app.put("/schedule/{recipient_id}", response_model=ScheduleView)
async def put_schedule(
    recipient_id: int,
    body: ScheduleUpdate,
    _=Depends(require_service_auth),
):
    try:
        return await _service().update_user_schedule(
            recipient_id,
            enabled=body.enabled,
            local_time=body.local_time,
            utc_offset=body.utc_offset,
            first_name=body.first_name,
        )
    except Exception as e:
        raise _http_error(e, "put_schedule")


@app.post("/broadcast", response_model=BroadcastResult)
async def broadcast(body: BroadcastRequest, _=Depends(require_service_auth)):
    """Send one message to every user. Blocks until the run completes."""
    try:
        return await _service().broadcast(body.text)
    except Exception as e:
        raise _http_error(e, "broadcast")


@app.get("/report", response_model=DeliveryReport)
async def report(
    limit: int = Query(default=20, ge=1, le=200),
    _=Depends(require_service_auth),
):
    try:
        return await _service().delivery_report(limit=limit)
    except Exception as e:
        raise _http_error(e, "report")
