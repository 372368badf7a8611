import random
import string
import time
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_job_id() -> str:
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(6))
    return f"{int(time.time() * 1000)}-{suffix}"


class Job(BaseModel):
    """One deferred notification as persisted in the pending file."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    email: str = ""
    msg: str = ""
    scheduled_at: str = Field(alias="scheduledAt")
    created_at: str = Field(default="", alias="createdAt")

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ReminderRequest(BaseModel):
    msg: Optional[str] = None
    time: Optional[str] = None
    email: Optional[str] = None


class PendingRemove(BaseModel):
    id: Optional[Union[str, int]] = None


class ScheduleResponse(BaseModel):
    success: bool
    status: str
    pendingId: Optional[str] = None
    error: Optional[str] = None


class SaveResponse(BaseModel):
    success: bool
    id: str


class RemoveResponse(BaseModel):
    success: bool
