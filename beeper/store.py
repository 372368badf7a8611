"""File-backed store of pending jobs.

The whole list lives in one JSON array. Every mutation is read-modify-write
over that file, so all of them go through one ``asyncio.Lock``; readers never
take the lock because writes land through an atomic rename.
"""
import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as ModelValidationError

from .errors import PersistenceFailure, ValidationError
from .schemas import Job
from .subscribers import SubscriberRegistry

logger = logging.getLogger(__name__)


def read_records(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    try:
        with path.open("r", encoding="utf-8") as f:
            content = f.read().strip()
    except OSError:
        return []
    if not content:
        return []
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning("pending file %s is malformed, treating as empty", path)
        return []
    if not isinstance(data, list):
        logger.warning("pending file %s does not hold a list, treating as empty", path)
        return []
    return data


def write_records(path: Path, records: List[Dict[str, Any]]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
    except OSError as exc:
        raise PersistenceFailure(f"could not write {path}: {exc}") from exc


def to_jobs(records: Iterable[Any]) -> List[Job]:
    jobs = []
    for record in records:
        try:
            jobs.append(Job.model_validate(record))
        except ModelValidationError:
            logger.debug("skipping unreadable record %r", record)
    return jobs


class JobStore:
    def __init__(self, path: Path, subscribers: Optional[SubscriberRegistry] = None):
        self.path = Path(path)
        self.subscribers = subscribers
        self._lock = asyncio.Lock()

    async def load_records(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(read_records, self.path)

    async def load(self) -> List[Job]:
        return to_jobs(await self.load_records())

    async def list(self) -> List[Job]:
        return await self.load()

    async def add(self, job: Job) -> None:
        async with self._lock:
            records = await self.load_records()
            if any(isinstance(r, dict) and r.get("id") == job.id for r in records):
                raise ValidationError(f"duplicate job id {job.id}", status="duplicate_id")
            records.append(job.to_record())
            await asyncio.to_thread(write_records, self.path, records)
        logger.debug("stored job %s for %s", job.id, job.scheduled_at)
        self._changed()

    async def remove(self, job_id: str) -> bool:
        """Drop ``job_id``; returns whether it was present. Absent ids are a no-op."""
        async with self._lock:
            records = await self.load_records()
            kept = [r for r in records if not (isinstance(r, dict) and r.get("id") == job_id)]
            await asyncio.to_thread(write_records, self.path, kept)
        found = len(kept) != len(records)
        if found:
            logger.info("removed job %s", job_id)
        self._changed()
        return found

    async def replace(self, jobs: Iterable[Job]) -> None:
        records = [job.to_record() for job in jobs]
        async with self._lock:
            await asyncio.to_thread(write_records, self.path, records)
        self._changed()

    def _changed(self) -> None:
        if self.subscribers is not None:
            self.subscribers.broadcast()
