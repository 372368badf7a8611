import logging
from datetime import datetime
from typing import Callable, List, Optional

from . import metrics
from .config import Settings
from .dispatcher import Dispatcher
from .errors import ExpiredError, ParseError, ValidationError
from .notifier import Notifier, SmtpNotifier
from .policy import DeliveryPolicy, policy_from_settings
from .reconciler import ReconcileReport, Reconciler
from .schemas import Job, new_job_id
from .store import JobStore
from .subscribers import SubscriberRegistry
from .timefmt import format_local, now_local, parse_local, to_minute

logger = logging.getLogger(__name__)


def stored_time(raw: Optional[str]) -> str:
    """Target time in stored form; unparseable input is kept, trimmed, as given."""
    try:
        return format_local(to_minute(parse_local(raw)))
    except ParseError:
        return str(raw or "").replace("T", " ", 1)[:16]


class ReminderService:
    """Process-scoped state: the store, its subscribers and the dispatcher.

    Built once per app, started by the lifespan (reconciliation runs before
    the service reports ready) and stopped on shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        notifier: Optional[Notifier] = None,
        policy: Optional[DeliveryPolicy] = None,
        clock: Callable[[], datetime] = now_local,
    ):
        self.settings = settings
        self.clock = clock
        self.notifier = notifier if notifier is not None else SmtpNotifier(settings)
        self.subscribers = SubscriberRegistry()
        self.store = JobStore(settings.pending_file, subscribers=self.subscribers)
        self.dispatcher = Dispatcher(
            self.store,
            self.notifier,
            policy=policy or policy_from_settings(settings.delivery_max_retries, settings.delivery_retry_delay),
            clock=clock,
        )
        self.ready = False

    async def start(self) -> ReconcileReport:
        report = await Reconciler(self.store, self.dispatcher, clock=self.clock).run()
        self.ready = True
        return report

    async def stop(self) -> None:
        self.ready = False
        await self.dispatcher.shutdown()
        self.subscribers.close_all()

    def _new_job(self, email: Optional[str], msg: Optional[str], time: Optional[str]) -> Job:
        return Job(
            id=new_job_id(),
            email=email or "",
            msg=msg or "",
            scheduledAt=stored_time(time),
            createdAt=format_local(to_minute(self.clock())),
        )

    async def submit(self, email: Optional[str], msg: Optional[str], time: Optional[str]) -> Job:
        """Validate, persist and arm a reminder.

        Raises ValidationError for a bad recipient or unparseable time and
        ExpiredError when the time is not in the future. Nothing is stored in
        either case.
        """
        if not email or "@" not in email:
            raise ValidationError("invalid email address", status="invalid_email")
        try:
            target = parse_local(time)
        except ParseError as exc:
            raise ValidationError(str(exc), status="invalid_time") from exc
        if to_minute(target) <= self.clock():
            raise ExpiredError(f"{time} is not in the future")

        job = self._new_job(email, msg, time)
        await self.store.add(job)
        await self.dispatcher.schedule(job)
        return job

    async def save(self, email: Optional[str], msg: Optional[str], time: Optional[str]) -> Job:
        """Persist a job as given, then arm it like a submission would."""
        job = self._new_job(email, msg, time)
        await self.store.add(job)
        metrics.jobs_saved_total.inc()
        await self.dispatcher.schedule(job)
        return job

    async def cancel(self, job_id: str) -> bool:
        self.dispatcher.cancel(job_id)
        return await self.store.remove(job_id)

    async def pending(self) -> List[Job]:
        return await self.store.list()
