import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .. import metrics
from ..errors import ExpiredError, PersistenceFailure, ValidationError
from ..schemas import PendingRemove, ReminderRequest, RemoveResponse, SaveResponse, ScheduleResponse
from ..service import ReminderService
from ..subscribers import SubscriberRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_service(request: Request) -> ReminderService:
    return request.app.state.service


@router.post("/schedule-reminder", response_model=ScheduleResponse, response_model_exclude_none=True)
async def schedule_reminder(body: ReminderRequest, service: ReminderService = Depends(get_service)):
    logger.info("reminder request: [%s] to %s", body.time, body.email)
    try:
        job = await service.submit(body.email, body.msg, body.time)
    except ValidationError as exc:
        metrics.submissions_total.labels(status=exc.status).inc()
        content = {"success": False, "status": exc.status}
        if exc.status == "invalid_email":
            content["error"] = str(exc)
        return JSONResponse(status_code=400, content=content)
    except ExpiredError:
        metrics.submissions_total.labels(status="expired").inc()
        return ScheduleResponse(success=False, status="expired")
    except PersistenceFailure as exc:
        metrics.error_count.inc()
        raise HTTPException(status_code=500, detail=str(exc))
    metrics.submissions_total.labels(status="scheduled").inc()
    return ScheduleResponse(success=True, status="scheduled", pendingId=job.id)


@router.post("/pending-save", response_model=SaveResponse)
async def pending_save(body: ReminderRequest, service: ReminderService = Depends(get_service)):
    try:
        job = await service.save(body.email, body.msg, body.time)
    except PersistenceFailure as exc:
        metrics.error_count.inc()
        raise HTTPException(status_code=500, detail=str(exc))
    return SaveResponse(success=True, id=job.id)


@router.get("/pending-list")
async def pending_list(service: ReminderService = Depends(get_service)):
    jobs = await service.pending()
    return [job.to_record() for job in jobs]


@router.post("/pending-remove", response_model=RemoveResponse)
async def pending_remove(body: PendingRemove, service: ReminderService = Depends(get_service)):
    if body.id is None or body.id == "":
        return RemoveResponse(success=False)
    try:
        await service.cancel(str(body.id))
    except PersistenceFailure as exc:
        metrics.error_count.inc()
        raise HTTPException(status_code=500, detail=str(exc))
    return RemoveResponse(success=True)


async def event_stream(subscribers: SubscriberRegistry) -> AsyncIterator[str]:
    sub = subscribers.subscribe()
    try:
        yield ":\n\n"
        async for event in sub.events():
            yield f"data: {event}\n\n"
    finally:
        subscribers.unsubscribe(sub)


@router.get("/pending-events")
async def pending_events(service: ReminderService = Depends(get_service)):
    return StreamingResponse(
        event_stream(service.subscribers),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
