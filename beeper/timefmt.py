"""Naive local wall-clock timestamps at minute precision.

Stored form is ``YYYY-MM-DD HH:MM``. Input may use a ``T`` separator, carry
seconds, or carry a UTC/offset marker; marked values are converted into the
server's local frame before the marker is dropped.
"""
from datetime import datetime
from typing import Optional

from .errors import ParseError

LOCAL_FORMAT = "%Y-%m-%d %H:%M"


def now_local() -> datetime:
    return datetime.now()


def parse_local(value: Optional[str]) -> datetime:
    if value is None:
        raise ParseError("timestamp is missing")
    text = str(value).strip()
    if not text:
        raise ParseError("timestamp is empty")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    except ValueError as exc:
        raise ParseError(f"unparseable timestamp: {value!r}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def to_minute(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


def format_local(moment: datetime) -> str:
    return moment.strftime(LOCAL_FORMAT)


def canonical(value: Optional[str]) -> str:
    """Parse ``value`` and render it in the stored minute-precision form."""
    return format_local(to_minute(parse_local(value)))

