"""Typed verification outcomes returned to the UI layer."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from core.inference.matcher import MatchResult


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    MODEL_UNAVAILABLE = "model_unavailable"
    NO_FACE_DETECTED = "no_face_detected"
    NO_REFERENCE_IMAGES = "no_reference_images"
    ENROLLMENT_INCOMPLETE = "enrollment_incomplete"
    LOW_CONFIDENCE = "low_confidence"
    EVENT_NOT_FOUND = "event_not_found"
    EVENT_NOT_STARTED = "event_not_started"
    EVENT_ENDED = "event_ended"
    DUPLICATE_ATTENDANCE = "duplicate_attendance"
    CAMERA_UNAVAILABLE = "camera_unavailable"
    RECORD_FAILED = "record_failed"

    @property
    def is_terminal(self) -> bool:
        """No further attempt is possible in the same session."""
        return self in _TERMINAL_KINDS

    @property
    def is_retryable(self) -> bool:
        return not self.is_terminal


_TERMINAL_KINDS = frozenset({
    OutcomeKind.SUCCESS,
    OutcomeKind.MODEL_UNAVAILABLE,
    OutcomeKind.EVENT_NOT_FOUND,
    OutcomeKind.EVENT_ENDED,
    OutcomeKind.DUPLICATE_ATTENDANCE,
})

DEFAULT_MESSAGES = {
    OutcomeKind.SUCCESS: "Attendance marked successfully.",
    OutcomeKind.MODEL_UNAVAILABLE: "Face recognition models failed to load. Please reload and try again.",
    OutcomeKind.NO_FACE_DETECTED: "No face detected. Please position your face in front of the camera.",
    OutcomeKind.NO_REFERENCE_IMAGES: "No registered face images found. Please complete face registration first.",
    OutcomeKind.ENROLLMENT_INCOMPLETE: "Face registration is incomplete. Please capture all required images first.",
    OutcomeKind.LOW_CONFIDENCE: "Face recognition failed. Please ensure good lighting and look directly at the camera.",
    OutcomeKind.EVENT_NOT_FOUND: "Lecture not found.",
    OutcomeKind.EVENT_NOT_STARTED: "Lecture has not started yet. Please wait until the scheduled time.",
    OutcomeKind.EVENT_ENDED: "Lecture has ended. Attendance can no longer be marked.",
    OutcomeKind.DUPLICATE_ATTENDANCE: "Attendance already marked for this lecture.",
    OutcomeKind.CAMERA_UNAVAILABLE: "Camera is not ready. Please wait a moment and try again.",
    OutcomeKind.RECORD_FAILED: "Failed to mark attendance. Please try again.",
}


@dataclass
class VerificationOutcome:
    kind: OutcomeKind
    message: str = ""
    match: Optional[MatchResult] = None
    record: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = DEFAULT_MESSAGES.get(self.kind, self.kind.value)

    @property
    def success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def confidence(self) -> float:
        return self.match.confidence if self.match else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'outcome': self.kind.value,
            'message': self.message,
            'terminal': self.kind.is_terminal,
            'match': self.match.to_dict() if self.match else None,
            'record': self.record,
        }


class ConfidenceBand(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def classify_confidence(confidence: float, high: float, medium: float) -> ConfidenceBand:
    if confidence >= high:
        return ConfidenceBand.HIGH
    if confidence >= medium:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


@dataclass
class LivePreview:
    """Advisory feedback from one preview tick; ``confidence`` is None without a face."""

    confidence: Optional[float]
    band: Optional[ConfidenceBand]

    @property
    def face_detected(self) -> bool:
        return self.confidence is not None

    @property
    def ready(self) -> bool:
        return self.band is ConfidenceBand.HIGH

    def to_dict(self) -> Dict[str, Any]:
        return {
            'face_detected': self.face_detected,
            'confidence': round(self.confidence, 4) if self.confidence is not None else None,
            'band': self.band.value if self.band else None,
            'ready': self.ready,
        }
