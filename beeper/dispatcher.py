"""Per-job delivery timers.

Each armed job gets one asyncio task that sleeps until the job's wall-clock
instant, then hands the message to the notifier. Sleeps are chunked so the
wall clock is re-read periodically instead of trusting one long monotonic
sleep.

Every timer carries a cancellation token. ``cancel`` flips it, and a fired
timer checks it right before calling the notifier, so a job removed while its
timer was pending is never delivered. A delivery already handed to the
notifier is allowed to finish.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from . import metrics
from .errors import ParseError, PersistenceFailure
from .notifier import ON_TIME_DELIVERY, Notifier
from .policy import DeliveryPolicy, NoRetryPolicy
from .schemas import Job
from .store import JobStore
from .timefmt import now_local, parse_local

logger = logging.getLogger(__name__)

MAX_SLEEP_SECONDS = 60.0


@dataclass
class _Timer:
    job: Job
    due: datetime
    task: Optional["asyncio.Task[None]"] = None
    cancelled: bool = False
    delivering: bool = False
    attempts: int = 0


class Dispatcher:
    def __init__(
        self,
        store: JobStore,
        notifier: Notifier,
        policy: Optional[DeliveryPolicy] = None,
        clock: Callable[[], datetime] = now_local,
        max_sleep: float = MAX_SLEEP_SECONDS,
    ):
        self.store = store
        self.notifier = notifier
        self.policy = policy or NoRetryPolicy()
        self.clock = clock
        self.max_sleep = max_sleep
        self._timers: Dict[str, _Timer] = {}

    def is_armed(self, job_id: str) -> bool:
        return job_id in self._timers

    def armed(self):
        return sorted(self._timers)

    async def schedule(self, job: Job) -> bool:
        """Arm a timer for ``job``; returns whether one is armed afterwards.

        Unparseable jobs are removed from the store. Jobs whose instant has
        already passed are left alone.
        """
        try:
            due = parse_local(job.scheduled_at)
        except ParseError as exc:
            logger.warning("job %s has no usable time (%s), removing", job.id, exc)
            metrics.jobs_dropped_total.labels(reason="invalid_time").inc()
            await self.store.remove(job.id)
            return False
        if job.id in self._timers:
            logger.debug("job %s already armed", job.id)
            return True
        if due <= self.clock():
            logger.info("job %s is due in the past (%s), not arming", job.id, job.scheduled_at)
            return False
        timer = _Timer(job=job, due=due)
        self._timers[job.id] = timer
        timer.task = asyncio.create_task(self._run(timer), name=f"deliver-{job.id}")
        timer.task.add_done_callback(lambda _task: self._forget(timer))
        metrics.armed_timers.set(len(self._timers))
        logger.info("armed job %s for %s", job.id, job.scheduled_at)
        return True

    def cancel(self, job_id: str) -> bool:
        timer = self._timers.get(job_id)
        if timer is None:
            return False
        timer.cancelled = True
        if not timer.delivering and timer.task is not None:
            timer.task.cancel()
        logger.info("cancelled timer for job %s", job_id)
        return True

    async def shutdown(self) -> None:
        timers = list(self._timers.values())
        for timer in timers:
            timer.cancelled = True
            if timer.task is not None:
                timer.task.cancel()
        await asyncio.gather(*(t.task for t in timers if t.task is not None), return_exceptions=True)
        self._timers.clear()
        metrics.armed_timers.set(0)

    async def _sleep_until(self, due: datetime) -> None:
        while True:
            remaining = (due - self.clock()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, self.max_sleep))

    async def _run(self, timer: _Timer) -> None:
        job = timer.job
        try:
            await self._sleep_until(timer.due)
            while not timer.cancelled:
                delay = await self._attempt(timer)
                if delay is None:
                    break
                logger.info("retrying job %s in %.0fs", job.id, delay)
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("timer for job %s stopped", job.id)

    def _forget(self, timer: _Timer) -> None:
        if self._timers.get(timer.job.id) is timer:
            del self._timers[timer.job.id]
        metrics.armed_timers.set(len(self._timers))

    async def _attempt(self, timer: _Timer) -> Optional[float]:
        """Deliver once; returns a retry delay or None when the timer is done."""
        job = timer.job
        timer.delivering = True
        timer.attempts += 1
        start = time.time()
        try:
            ok = await self.notifier.send(job.email, job.msg, ON_TIME_DELIVERY)
        except Exception:
            logger.exception("notifier raised for job %s", job.id)
            ok = False
        finally:
            timer.delivering = False
            metrics.delivery_latency_seconds.observe(time.time() - start)

        if not ok:
            metrics.deliveries_total.labels(outcome="failed").inc()
            delay = self.policy.retry_delay(job, timer.attempts)
            if delay is None:
                logger.warning("delivery of job %s failed, leaving it pending", job.id)
            return delay

        metrics.deliveries_total.labels(outcome="delivered").inc()
        logger.info("delivered job %s to %s", job.id, job.email)
        try:
            await self.store.remove(job.id)
        except PersistenceFailure:
            metrics.error_count.inc()
            logger.exception("delivered job %s but could not remove it", job.id)
        return None
