from fastapi import APIRouter, Depends, HTTPException

from ..notifier import SmtpNotifier
from ..service import ReminderService
from .pending import get_service

router = APIRouter(prefix="/api")


def get_smtp(service: ReminderService = Depends(get_service)) -> SmtpNotifier:
    if not isinstance(service.notifier, SmtpNotifier):
        raise HTTPException(status_code=404, detail="smtp transport not in use")
    return service.notifier


@router.get("/smtp-info")
async def smtp_info(smtp: SmtpNotifier = Depends(get_smtp)):
    return smtp.info()


@router.get("/smtp-verify")
async def smtp_verify(smtp: SmtpNotifier = Depends(get_smtp)):
    return await smtp.verify()
