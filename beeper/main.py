import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api import mail as mail_api
from .api import pending as pending_api
from .config import Settings, load_settings
from .metrics import metrics_response, request_latency_seconds
from .notifier import Notifier, SmtpNotifier
from .service import ReminderService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    notifier: Optional[Notifier] = None,
    service: Optional[ReminderService] = None,
) -> FastAPI:
    if service is None:
        service = ReminderService(settings or load_settings(), notifier=notifier)

    async def verify_smtp(smtp: SmtpNotifier) -> None:
        check = await smtp.verify()
        if check["success"]:
            logger.info("smtp connection ok (%s:%s)", smtp.settings.smtp_host, smtp.settings.smtp_port)
        else:
            logger.warning("smtp verification failed: %s", check.get("message"))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        check = None
        if isinstance(service.notifier, SmtpNotifier):
            check = asyncio.create_task(verify_smtp(service.notifier))
        try:
            yield
        finally:
            if check is not None:
                check.cancel()
            await service.stop()

    app = FastAPI(title="Beeper", version=__version__, lifespan=lifespan)
    app.state.service = service

    app.include_router(pending_api.router)
    app.include_router(mail_api.router)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start = time.time()
        try:
            response = await call_next(request)
            return response
        finally:
            request_latency_seconds.observe(time.time() - start)

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz():
        if not service.ready:
            return JSONResponse(status_code=503, content={"ready": False})
        return {"ready": True}

    @app.get("/metrics")
    async def metrics():
        return metrics_response()

    return app
