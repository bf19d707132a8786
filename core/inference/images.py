"""Resolve image handles (URLs, data URLs, paths, bytes) into RGB arrays."""
from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Optional

import cv2
import numpy as np
import requests

from .engine import ImageLoadError

logger = logging.getLogger(__name__)


def decode_image_bytes(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (JPEG/PNG/WEBP) into an RGB array."""
    if not data:
        raise ImageLoadError("Empty image payload")
    buffer = np.frombuffer(data, dtype=np.uint8)
    bgr = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if bgr is None:
        raise ImageLoadError("Unable to decode image data")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def decode_base64_image(payload: str) -> np.ndarray:
    """Decode a base64 string, with or without a ``data:image/...`` prefix."""
    if not payload:
        raise ImageLoadError("Empty base64 payload")
    if payload.startswith('data:'):
        _, _, payload = payload.partition(',')
    try:
        raw = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ImageLoadError(f"Invalid base64 image: {exc}") from exc
    return decode_image_bytes(raw)


class ImageLoader:
    """Loads reference images the way the browser loaded them: by URL.

    Remote images are fetched with ``requests`` (a shared session, so
    connections to the storage bucket are reused). Arrays are passed through
    untouched and are expected to be RGB already.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()

    def load(self, handle: Any) -> np.ndarray:
        if isinstance(handle, np.ndarray):
            return handle
        if isinstance(handle, (bytes, bytearray)):
            return decode_image_bytes(bytes(handle))
        if isinstance(handle, Path):
            return self._load_file(handle)
        if not isinstance(handle, str) or not handle.strip():
            raise ImageLoadError(f"Unsupported image handle: {handle!r}")

        handle = handle.strip()
        if handle.startswith('data:'):
            return decode_base64_image(handle)
        if handle.startswith(('http://', 'https://')):
            return self._load_url(handle)
        return self._load_file(Path(handle))

    def _load_url(self, url: str) -> np.ndarray:
        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ImageLoadError(f"Failed to fetch {url}: {exc}") from exc
        logger.debug("[Images] Fetched %s (%d bytes)", url, len(response.content))
        return decode_image_bytes(response.content)

    def _load_file(self, path: Path) -> np.ndarray:
        if not path.is_file():
            raise ImageLoadError(f"Image file not found: {path}")
        return decode_image_bytes(path.read_bytes())

    def close(self) -> None:
        self._session.close()
