"""Verification session state machine.

idle -> camera_active -> (live preview ticks) -> capturing -> verifying
     -> success (terminal) | retryable failure -> camera_active
     | terminal failure (window ended, duplicate, model unavailable)

Preview ticks and capture-and-verify are serialized: a tick that finds a
verification in flight is skipped. Results that arrive after the session was
torn down are discarded. The frame source is released on every exit path.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from core.attendance.outcomes import LivePreview, OutcomeKind, VerificationOutcome
from core.attendance.window import EventWindow, WindowStatus
from core.inference.engine import ModelUnavailableError

from .frame_source import CameraError, FrameSource
from .poller import Poller, PollerFactory

VerifyFn = Callable[[np.ndarray], VerificationOutcome]
PreviewFn = Callable[[np.ndarray], LivePreview]
Clock = Callable[[], Optional[datetime]]


class SessionState(str, Enum):
    IDLE = "idle"
    CAMERA_ACTIVE = "camera_active"
    CAPTURING = "capturing"
    VERIFYING = "verifying"
    SUCCESS = "success"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def is_final(self) -> bool:
        return self in (SessionState.SUCCESS, SessionState.FAILED, SessionState.CLOSED)


class SessionStateError(RuntimeError):
    """Operation not allowed in the current session state."""


class VerificationSession:
    """One student's check-in attempt for one lecture."""

    def __init__(
        self,
        *,
        identity_id: str,
        event_id: Any,
        frame_source: FrameSource,
        verify_fn: VerifyFn,
        preview_fn: Optional[PreviewFn] = None,
        window: Optional[EventWindow] = None,
        clock: Optional[Clock] = None,
        poller_factory: Optional[PollerFactory] = None,
        preview_interval: float = 0.5,
        window_check_interval: float = 1.0,
        on_outcome: Optional[Callable[["VerificationSession", VerificationOutcome], None]] = None,
        session_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.identity_id = identity_id
        self.event_id = event_id
        self.frame_source = frame_source
        self.window = window
        self._verify = verify_fn
        self._preview = preview_fn
        self._clock = clock or (lambda: None)
        self._poller_factory = poller_factory
        self._preview_interval = preview_interval
        self._window_check_interval = window_check_interval
        self._on_outcome = on_outcome
        self._logger = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._busy = threading.Lock()
        self._pollers: List[Poller] = []
        self._generation = 0

        self.state = SessionState.IDLE
        self.attempts = 0
        self.last_preview: Optional[LivePreview] = None
        self.last_outcome: Optional[VerificationOutcome] = None
        self.created_at = time.monotonic()
        self.updated_at = self.created_at

    # ------------------------------------------------------------------
    # Helpers
    def touch(self) -> None:
        self.updated_at = time.monotonic()

    def idle_seconds(self) -> float:
        return time.monotonic() - self.updated_at

    def window_status(self) -> WindowStatus:
        if self.window is None:
            return WindowStatus.OPEN
        return self.window.status_at(self._clock())

    def _window_outcome(self, status: WindowStatus) -> Optional[VerificationOutcome]:
        if status is WindowStatus.NOT_STARTED:
            return VerificationOutcome(OutcomeKind.EVENT_NOT_STARTED)
        if status is WindowStatus.ENDED:
            return VerificationOutcome(OutcomeKind.EVENT_ENDED)
        return None

    def _finish_locked(self, state: SessionState, outcome: Optional[VerificationOutcome]) -> List[Poller]:
        self.state = state
        if outcome is not None:
            self.last_outcome = outcome
        self._generation += 1
        pollers, self._pollers = self._pollers, []
        return pollers

    def _teardown(self, pollers: List[Poller]) -> None:
        for poller in pollers:
            poller.cancel()
        try:
            self.frame_source.close()
        except Exception as exc:
            self._logger.debug("[Session] %s: không thể giải phóng camera: %s", self.session_id, exc)

    def _notify(self, outcome: VerificationOutcome) -> None:
        if self._on_outcome is not None:
            self._on_outcome(self, outcome)

    # ------------------------------------------------------------------
    # Lifecycle
    def start(self) -> Optional[VerificationOutcome]:
        """Acquire the camera and begin polling.

        Returns None on success, or the outcome that prevented the start.
        """
        with self._lock:
            if self.state is not SessionState.IDLE:
                raise SessionStateError(f"Cannot start session in state {self.state.value}")
            self.touch()

            pollers: List[Poller] = []
            blocked = self._window_outcome(self.window_status())
            if blocked is not None:
                if blocked.kind.is_terminal:
                    pollers = self._finish_locked(SessionState.FAILED, blocked)
                else:
                    self.last_outcome = blocked
            else:
                try:
                    self.frame_source.open()
                except CameraError as exc:
                    self._logger.warning("[Session] %s: camera unavailable: %s", self.session_id, exc)
                    blocked = VerificationOutcome(
                        OutcomeKind.CAMERA_UNAVAILABLE, message=f"Unable to access camera: {exc}"
                    )
                    self.last_outcome = blocked
                else:
                    self.state = SessionState.CAMERA_ACTIVE
                    self._start_pollers_locked()

        if blocked is not None:
            self._teardown(pollers)
            return blocked

        self._logger.info(
            "[Session] %s started for %s (lecture %s)", self.session_id, self.identity_id, self.event_id
        )
        return None

    def _start_pollers_locked(self) -> None:
        if self._poller_factory is None:
            return
        if self.window is not None:
            self._pollers.append(
                self._poller_factory(f"{self.session_id}-window", self._window_check_interval, self.check_window)
            )
        if self._preview is not None:
            self._pollers.append(
                self._poller_factory(f"{self.session_id}-preview", self._preview_interval, self.preview_tick)
            )
        for poller in self._pollers:
            poller.start()

    def close(self) -> None:
        """Tear the session down; idempotent."""
        with self._lock:
            if self.state is SessionState.CLOSED:
                return
            if self.state.is_final:
                pollers = self._finish_locked(self.state, None)
            else:
                pollers = self._finish_locked(SessionState.CLOSED, None)
        self._teardown(pollers)
        self._logger.debug("[Session] %s closed (%s)", self.session_id, self.state.value)

    def __enter__(self) -> "VerificationSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Polled checks
    def check_window(self) -> WindowStatus:
        """Re-check the event window; an ended window closes the session."""
        status = self.window_status()
        if status is not WindowStatus.ENDED:
            return status
        with self._lock:
            if self.state.is_final:
                return status
            outcome = VerificationOutcome(OutcomeKind.EVENT_ENDED)
            pollers = self._finish_locked(SessionState.FAILED, outcome)
        self._logger.info("[Session] %s: lecture ended, closing session", self.session_id)
        self._teardown(pollers)
        self._notify(outcome)
        return status

    def preview_tick(self, frame: Optional[np.ndarray] = None) -> Optional[LivePreview]:
        """One live-preview evaluation; None when skipped."""
        if self._preview is None:
            return None
        if not self._busy.acquire(blocking=False):
            return None
        try:
            with self._lock:
                if self.state is not SessionState.CAMERA_ACTIVE:
                    return None
                generation = self._generation
            if self.check_window() is not WindowStatus.OPEN:
                return None
            if frame is None:
                try:
                    frame = self.frame_source.read()
                except CameraError as exc:
                    self._logger.debug("[Session] %s: preview frame unavailable: %s", self.session_id, exc)
                    return None
            try:
                preview = self._preview(frame)
            except ModelUnavailableError as exc:
                self._fail_model_unavailable(exc)
                return None
            with self._lock:
                if generation != self._generation or self.state is not SessionState.CAMERA_ACTIVE:
                    return None
                self.last_preview = preview
                self.touch()
            return preview
        finally:
            self._busy.release()

    def _fail_model_unavailable(self, exc: Exception) -> None:
        outcome = VerificationOutcome(OutcomeKind.MODEL_UNAVAILABLE)
        with self._lock:
            if self.state.is_final:
                return
            pollers = self._finish_locked(SessionState.FAILED, outcome)
        self._logger.error("[Session] %s: recognition unavailable: %s", self.session_id, exc)
        self._teardown(pollers)
        self._notify(outcome)

    # ------------------------------------------------------------------
    # Capture and verify
    def capture_and_verify(self, frame: Optional[np.ndarray] = None) -> VerificationOutcome:
        with self._busy:
            with self._lock:
                if self.state in (SessionState.SUCCESS, SessionState.FAILED) and self.last_outcome:
                    return self.last_outcome
                if self.state is not SessionState.CAMERA_ACTIVE:
                    raise SessionStateError(f"Cannot verify in state {self.state.value}")
                self.state = SessionState.CAPTURING
                self._generation += 1
                generation = self._generation
                self.touch()

            outcome = self._window_outcome(self.window_status())
            if outcome is None:
                outcome = self._capture_then_verify(frame, generation)
            return self._settle(outcome, generation)

    def _capture_then_verify(self, frame: Optional[np.ndarray], generation: int) -> VerificationOutcome:
        if frame is None:
            try:
                frame = self.frame_source.read()
            except CameraError as exc:
                return VerificationOutcome(OutcomeKind.CAMERA_UNAVAILABLE, message=str(exc))

        with self._lock:
            if generation == self._generation:
                self.state = SessionState.VERIFYING
        try:
            return self._verify(frame)
        except BaseException:
            with self._lock:
                if generation == self._generation and not self.state.is_final:
                    self.state = SessionState.CAMERA_ACTIVE
            raise

    def _settle(self, outcome: VerificationOutcome, generation: int) -> VerificationOutcome:
        pollers = None
        with self._lock:
            if generation != self._generation or self.state.is_final:
                # Session was torn down while verifying; drop the result.
                self._logger.info(
                    "[Session] %s: discarding stale %s result", self.session_id, outcome.kind.value
                )
                return outcome
            self.attempts += 1
            self.last_outcome = outcome
            self.last_preview = None
            if outcome.success:
                pollers = self._finish_locked(SessionState.SUCCESS, outcome)
            elif outcome.kind.is_terminal:
                pollers = self._finish_locked(SessionState.FAILED, outcome)
            else:
                self.state = SessionState.CAMERA_ACTIVE
            self.touch()

        if pollers is not None:
            self._teardown(pollers)
        self._notify(outcome)
        return outcome

    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            window = self.window
            return {
                'session_id': self.session_id,
                'identity_id': self.identity_id,
                'event_id': self.event_id,
                'state': self.state.value,
                'attempts': self.attempts,
                'window': {
                    'start': window.start.isoformat(),
                    'end': window.end.isoformat(),
                    'status': self.window_status().value,
                    'seconds_remaining': window.seconds_remaining(self._clock()),
                } if window else None,
                'preview': self.last_preview.to_dict() if self.last_preview else None,
                'outcome': self.last_outcome.to_dict() if self.last_outcome else None,
            }
