"""Event window gate for lecture check-in."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union


class WindowStatus(str, Enum):
    NOT_STARTED = "not_started"
    OPEN = "open"
    ENDED = "ended"


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted)."""
    if isinstance(value, datetime):
        return value
    text = (value or "").strip()
    if not text:
        raise ValueError("Empty timestamp")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _comparable(now: datetime, reference: datetime) -> datetime:
    if reference.tzinfo is not None and now.tzinfo is None:
        return now.astimezone()
    if reference.tzinfo is None and now.tzinfo is not None:
        return now.astimezone().replace(tzinfo=None)
    return now


@dataclass(frozen=True)
class EventWindow:
    """[start, start + duration] during which check-in is permitted."""

    start: datetime
    duration_minutes: float

    @classmethod
    def from_schedule(cls, scheduled_time: Union[str, datetime], duration_minutes) -> "EventWindow":
        duration = float(duration_minutes)
        if duration < 0:
            raise ValueError("Duration must not be negative")
        return cls(start=parse_timestamp(scheduled_time), duration_minutes=duration)

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def status_at(self, now: Optional[datetime] = None) -> WindowStatus:
        # Both boundaries are inclusive.
        if now is None:
            now = datetime.now(tz=self.start.tzinfo)
        now = _comparable(now, self.start)
        if now < self.start:
            return WindowStatus.NOT_STARTED
        if now > self.end:
            return WindowStatus.ENDED
        return WindowStatus.OPEN

    def is_open(self, now: Optional[datetime] = None) -> bool:
        return self.status_at(now) is WindowStatus.OPEN

    def seconds_remaining(self, now: Optional[datetime] = None) -> float:
        if now is None:
            now = datetime.now(tz=self.start.tzinfo)
        now = _comparable(now, self.start)
        return max(0.0, (self.end - now).total_seconds())


_LECTURE_STATUS = {
    WindowStatus.NOT_STARTED: "upcoming",
    WindowStatus.OPEN: "ongoing",
    WindowStatus.ENDED: "completed",
}


def lecture_status(window: EventWindow, now: Optional[datetime] = None) -> str:
    """Dashboard label for a lecture: upcoming, ongoing or completed."""
    return _LECTURE_STATUS[window.status_at(now)]
