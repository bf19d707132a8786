"""
Attendance Tracker - Quản lý logic điểm danh
Verify-and-record and live preview on top of the face matcher
"""
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from core.attendance.collaborators import (
    AttendanceLedger,
    DuplicateAttendanceError,
    EventDirectory,
    IdentityStore,
)
from core.attendance.outcomes import (
    LivePreview,
    OutcomeKind,
    VerificationOutcome,
    classify_confidence,
)
from core.attendance.window import EventWindow, WindowStatus
from core.inference.engine import ModelUnavailableError, NoReferenceImagesError
from core.inference.matcher import FaceMatcher, ReferenceEmbedding
from core.vision.frame_source import FrameSource
from core.vision.poller import PollerFactory
from core.vision.session import VerificationSession
from logging_config import face_recognition_logger


class AttendanceTracker:
    """Service quản lý logic điểm danh bằng khuôn mặt"""

    def __init__(
        self,
        *,
        identity_store: IdentityStore,
        ledger: AttendanceLedger,
        events: EventDirectory,
        matcher: FaceMatcher,
        verify_threshold: float = 0.69,
        preview_threshold: float = 0.80,
        preview_medium_threshold: float = 0.60,
        required_references: int = 10,
        image_store=None,
        broadcaster=None,
        clock: Optional[Callable[[], Optional[datetime]]] = None,
        logger=None,
    ):
        self.identity_store = identity_store
        self.ledger = ledger
        self.events = events
        self.matcher = matcher
        self.verify_threshold = verify_threshold
        self.preview_threshold = preview_threshold
        self.preview_medium_threshold = preview_medium_threshold
        self.required_references = required_references
        self.image_store = image_store
        self.broadcaster = broadcaster
        self.clock = clock or (lambda: None)
        self.logger = logger

    def _log(self, level, message, *args, **kwargs):
        if self.logger:
            getattr(self.logger, level)(message, *args, **kwargs)

    # ------------------------------------------------------------------
    # Gates
    def check_event_window(self, event_id, now: Optional[datetime] = None) -> Optional[VerificationOutcome]:
        """Kiểm tra thời gian buổi học; None nghĩa là được phép điểm danh"""
        window = self.events.get_event_window(event_id)
        if window is None:
            return VerificationOutcome(OutcomeKind.EVENT_NOT_FOUND)
        status = window.status_at(now if now is not None else self.clock())
        if status is WindowStatus.NOT_STARTED:
            return VerificationOutcome(OutcomeKind.EVENT_NOT_STARTED)
        if status is WindowStatus.ENDED:
            return VerificationOutcome(OutcomeKind.EVENT_ENDED)
        return None

    def check_enrollment(self, identity_id: str) -> Tuple[List[str], Optional[VerificationOutcome]]:
        """Kiểm tra đủ ảnh tham chiếu; trả về (references, outcome chặn nếu có)"""
        references = self.identity_store.get_reference_images(identity_id)
        if not references:
            return references, VerificationOutcome(OutcomeKind.NO_REFERENCE_IMAGES)
        if len(references) < self.required_references:
            return references, VerificationOutcome(
                OutcomeKind.ENROLLMENT_INCOMPLETE,
                message=(
                    f"Face registration is incomplete ({len(references)}/{self.required_references} images). "
                    "Please complete face registration first."
                ),
            )
        return references, None

    # ------------------------------------------------------------------
    # Verify and record
    def verify_and_record(
        self,
        identity_id: str,
        event_id: Any,
        captured_image: np.ndarray,
        now: Optional[datetime] = None,
    ) -> VerificationOutcome:
        """
        Xác minh khuôn mặt và lưu điểm danh.
        Luôn trả về VerificationOutcome; không ném lỗi ra ngoài cho các trường hợp đã biết.
        """
        blocked = self.check_event_window(event_id, now)
        if blocked is None:
            references, blocked = self.check_enrollment(identity_id)
        if blocked is not None:
            face_recognition_logger.log_rejected(identity_id, event_id, blocked.kind.value)
            return blocked

        try:
            match = self.matcher.match(captured_image, references, self.verify_threshold)
        except ModelUnavailableError as exc:
            face_recognition_logger.log_recognition_error(str(exc))
            return VerificationOutcome(OutcomeKind.MODEL_UNAVAILABLE)
        except NoReferenceImagesError:
            return VerificationOutcome(OutcomeKind.NO_REFERENCE_IMAGES)

        if not match.face_detected:
            return VerificationOutcome(OutcomeKind.NO_FACE_DETECTED, match=match)

        face_recognition_logger.log_match(identity_id, match.confidence, self.verify_threshold, match.verified)
        if not match.verified:
            return VerificationOutcome(
                OutcomeKind.LOW_CONFIDENCE,
                message=(
                    f"Face recognition failed. Confidence: {match.confidence * 100:.1f}% "
                    f"(Required: {self.verify_threshold * 100:.0f}%+). "
                    "Please ensure good lighting and look directly at the camera."
                ),
                match=match,
            )

        image_url = self._store_capture(event_id, identity_id, captured_image)
        try:
            record = self.ledger.record_attendance(
                identity_id,
                event_id,
                confidence=match.confidence,
                image_url=image_url,
            )
        except DuplicateAttendanceError:
            self._discard_capture(image_url)
            self._log('info', "[AttendanceTracker] Duplicate attendance for %s in lecture %s", identity_id, event_id)
            return VerificationOutcome(OutcomeKind.DUPLICATE_ATTENDANCE, match=match)
        except Exception as exc:
            self._discard_capture(image_url)
            self._log('error', "[AttendanceTracker] Could not record attendance: %s", exc, exc_info=True)
            return VerificationOutcome(OutcomeKind.RECORD_FAILED, match=match)

        face_recognition_logger.log_attendance_marked(identity_id, event_id, match.confidence)
        if self.broadcaster is not None:
            self.broadcaster.broadcast_attendance_marked(record)
        self._log('info', "[AttendanceTracker] ✅ Marked attendance: %s (lecture %s)", identity_id, event_id)
        return VerificationOutcome(OutcomeKind.SUCCESS, match=match, record=record)

    def _store_capture(self, event_id, identity_id, captured_image) -> Optional[str]:
        # Attendance is still recorded when the capture cannot be stored.
        if self.image_store is None:
            return None
        try:
            return self.image_store.save_capture(event_id, identity_id, captured_image)
        except Exception as exc:
            self._log('warning', "[AttendanceTracker] ⚠️ Could not store capture: %s", exc)
            return None

    def _discard_capture(self, image_url: Optional[str]):
        # Only recorded attempts keep their capture
        if image_url and self.image_store is not None:
            self.image_store.delete(image_url)

    # ------------------------------------------------------------------
    # Live preview
    def load_preview_references(self, identity_id: str) -> List[ReferenceEmbedding]:
        """Embeddings of every usable reference image; fewer than required is fine"""
        handles = self.identity_store.get_reference_images(identity_id)
        references, failed = self.matcher.load_reference_embeddings(handles)
        self._log(
            'debug',
            "[AttendanceTracker] Preview references for %s: %d usable, %d failed",
            identity_id,
            len(references),
            failed,
        )
        return references

    def preview_frame(self, frame: np.ndarray, references: List[ReferenceEmbedding]) -> LivePreview:
        confidence = self.matcher.live_confidence(frame, references)
        if confidence is None:
            return LivePreview(confidence=None, band=None)
        band = classify_confidence(confidence, self.preview_threshold, self.preview_medium_threshold)
        return LivePreview(confidence=confidence, band=band)

    def make_preview_fn(self, identity_id: str) -> Callable[[np.ndarray], LivePreview]:
        """Preview callable with reference embeddings loaded on the first tick"""
        cache: dict = {}

        def preview(frame: np.ndarray) -> LivePreview:
            if 'references' not in cache:
                cache['references'] = self.load_preview_references(identity_id)
            return self.preview_frame(frame, cache['references'])

        return preview

    # ------------------------------------------------------------------
    # Sessions
    def create_session(
        self,
        identity_id: str,
        event_id: Any,
        frame_source: FrameSource,
        *,
        window: Optional[EventWindow] = None,
        poller_factory: Optional[PollerFactory] = None,
        preview_interval: float = 0.5,
        window_check_interval: float = 1.0,
        on_outcome=None,
    ) -> VerificationSession:
        """Tạo phiên xác minh cho một sinh viên và một buổi học"""
        if window is None:
            window = self.events.get_event_window(event_id)

        def verify(frame: np.ndarray) -> VerificationOutcome:
            return self.verify_and_record(identity_id, event_id, frame)

        return VerificationSession(
            identity_id=identity_id,
            event_id=event_id,
            frame_source=frame_source,
            verify_fn=verify,
            preview_fn=self.make_preview_fn(identity_id),
            window=window,
            clock=self.clock,
            poller_factory=poller_factory,
            preview_interval=preview_interval,
            window_check_interval=window_check_interval,
            on_outcome=on_outcome,
            logger=self.logger,
        )
