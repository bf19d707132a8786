"""Frame sources for verification sessions.

A frame source is a scoped resource: ``open()`` acquires the device when a
session starts and ``close()`` releases it on every exit path.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraError(RuntimeError):
    """Raised when camera operations fail."""


class FrameSource(Protocol):
    """Supplies RGB frames between ``open()`` and ``close()``."""

    def open(self) -> None:
        ...

    def read(self) -> np.ndarray:
        ...

    def close(self) -> None:
        ...

    def is_open(self) -> bool:
        ...


class CaptureProvider(Protocol):
    """Abstraction for objects that can supply cv2.VideoCapture."""

    def open(self, index: int) -> cv2.VideoCapture:
        ...


class DefaultCaptureProvider:
    def open(self, index: int) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(index)
        if not capture or not capture.isOpened():
            raise CameraError(f"Cannot open camera index {index}")
        return capture


@dataclass
class CameraConfig:
    index: int = 0
    width: Optional[int] = 640
    height: Optional[int] = 480
    warmup_frames: int = 3
    buffer_size: Optional[int] = 2


class CameraFrameSource:
    """Server-attached camera (classroom kiosk) read through OpenCV."""

    def __init__(
        self,
        config: Optional[CameraConfig] = None,
        provider: Optional[CaptureProvider] = None,
    ) -> None:
        self.config = config or CameraConfig()
        self.provider = provider or DefaultCaptureProvider()
        self._capture: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()

    def open(self) -> None:
        with self._lock:
            if self._capture is not None and self._capture.isOpened():
                return
            capture = self.provider.open(self.config.index)
            self._configure(capture)
            self._capture = capture

    def _configure(self, capture: cv2.VideoCapture) -> None:
        try:
            if self.config.width:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
            if self.config.height:
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
            if self.config.buffer_size is not None and hasattr(cv2, "CAP_PROP_BUFFERSIZE"):
                capture.set(cv2.CAP_PROP_BUFFERSIZE, self.config.buffer_size)

            logger.info(
                "Camera %s ready: %sx%s",
                self.config.index,
                int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            )
            for _ in range(max(0, self.config.warmup_frames)):
                capture.read()
                time.sleep(0.05)
        except Exception as exc:
            logger.warning("Unable to configure camera: %s", exc)

    def read(self) -> np.ndarray:
        with self._lock:
            capture = self._capture
            if capture is None:
                raise CameraError("Camera is not open")
            ret, frame = capture.read()
        if not ret or frame is None:
            raise CameraError("Unable to read frame from camera")
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self) -> None:
        with self._lock:
            capture = self._capture
            self._capture = None
        if capture is not None:
            capture.release()
            logger.debug("Camera %s released", self.config.index)

    def is_open(self) -> bool:
        return self._capture is not None


class PushedFrameSource:
    """Frames pushed by a remote client (browser camera) over HTTP.

    Holds only the most recent frame; ``read()`` fails until one arrives.
    """

    def __init__(self) -> None:
        self._frame: Optional[np.ndarray] = None
        self._open = False
        self._lock = threading.Lock()

    def open(self) -> None:
        with self._lock:
            self._open = True

    def push(self, frame: np.ndarray) -> None:
        with self._lock:
            if not self._open:
                raise CameraError("Frame source is closed")
            self._frame = frame

    def read(self) -> np.ndarray:
        with self._lock:
            if not self._open:
                raise CameraError("Frame source is closed")
            if self._frame is None:
                raise CameraError("No frame received yet")
            return self._frame

    def close(self) -> None:
        with self._lock:
            self._open = False
            self._frame = None

    def is_open(self) -> bool:
        return self._open
