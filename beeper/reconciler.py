"""Startup pass over the pending file.

Older versions of the service stored the target time as ``localTime`` (already
local) or ``time`` (an ISO string, usually UTC). ``normalize_record`` folds
those into ``scheduledAt`` and rewrites zone-marked timestamps into the naive
local minute form. The reconciler then drops what cannot be delivered, writes
the corrected list back once, and re-arms timers for the rest.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as ModelValidationError

from . import metrics
from .dispatcher import Dispatcher
from .errors import ParseError
from .schemas import Job
from .store import JobStore
from .timefmt import canonical, now_local, parse_local

logger = logging.getLogger(__name__)

LEGACY_TIME_FIELDS = ("localTime", "time")


def _canonical_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    try:
        return canonical(value)
    except ParseError:
        return None


def normalize_record(raw: Any) -> Optional[Job]:
    """Turn a stored record of any known shape into a canonical Job.

    Returns None when the record has no id or no parseable target time.
    """
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    record: Dict[str, Any] = dict(raw)

    scheduled = record.get("scheduledAt")
    local_time = record.pop("localTime", None)
    legacy_time = record.pop("time", None)
    if not scheduled:
        scheduled = local_time or legacy_time
    scheduled = _canonical_or_none(scheduled)
    if scheduled is None:
        return None

    created = record.get("createdAt")
    created = _canonical_or_none(created) or (str(created) if created else "")

    try:
        return Job(
            id=str(record["id"]),
            email=str(record.get("email") or ""),
            msg=str(record.get("msg") or ""),
            scheduledAt=scheduled,
            createdAt=created,
        )
    except ModelValidationError:
        return None


@dataclass
class ReconcileReport:
    loaded: int = 0
    armed: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    invalid: List[Any] = field(default_factory=list)
    rewritten: bool = False


class Reconciler:
    def __init__(self, store: JobStore, dispatcher: Dispatcher, clock: Callable[[], datetime] = now_local):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    async def run(self) -> ReconcileReport:
        records = await self.store.load_records()
        report = ReconcileReport(loaded=len(records))
        now = self.clock()

        future: List[Job] = []
        seen = set()
        for raw in records:
            job = normalize_record(raw)
            if job is None:
                report.invalid.append(raw.get("id") if isinstance(raw, dict) else None)
                continue
            if job.id in seen:
                logger.warning("dropping duplicate stored job %s", job.id)
                continue
            seen.add(job.id)
            if parse_local(job.scheduled_at) <= now:
                report.expired.append(job.id)
                continue
            future.append(job)

        if [job.to_record() for job in future] != records:
            await self.store.replace(future)
            report.rewritten = True

        for job in future:
            if await self.dispatcher.schedule(job):
                report.armed.append(job.id)

        metrics.jobs_dropped_total.labels(reason="invalid_time").inc(len(report.invalid))
        metrics.jobs_dropped_total.labels(reason="expired").inc(len(report.expired))
        logger.info(
            "reconciled %d stored jobs: %d armed, %d expired, %d invalid%s",
            report.loaded,
            len(report.armed),
            len(report.expired),
            len(report.invalid),
            ", rewrote pending file" if report.rewritten else "",
        )
        return report
