"""Data-platform collaborators the attendance flow depends on."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from .window import EventWindow


class DuplicateAttendanceError(RuntimeError):
    """An attendance record already exists for this (identity, event) pair."""

    def __init__(self, identity_id: str, event_id: Any):
        super().__init__(f"Attendance already marked for {identity_id} in lecture {event_id}")
        self.identity_id = identity_id
        self.event_id = event_id


class EnrollmentLimitError(RuntimeError):
    """The identity already holds the required number of reference images."""


class IdentityStore(Protocol):
    """Registered reference images of an identity."""

    def get_reference_images(self, identity_id: str) -> List[str]:
        ...

    def append_reference_image(self, identity_id: str, image_url: str, *, limit: int) -> List[str]:
        ...


class AttendanceLedger(Protocol):
    """One attendance record per (identity, event)."""

    def record_attendance(
        self,
        identity_id: str,
        event_id: Any,
        *,
        confidence: Optional[float] = None,
        image_url: Optional[str] = None,
        method: str = 'face_recognition',
    ) -> Dict[str, Any]:
        ...


class EventDirectory(Protocol):
    """Scheduled start time and duration of lectures."""

    def get_event_window(self, event_id: Any) -> Optional[EventWindow]:
        ...
