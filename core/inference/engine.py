"""Face embedding backend and reference embedding cache.

The embedding models are loaded once per process and reused. Loading is
explicit (``ensure_loaded()``) and idempotent so every component that needs
embeddings receives the backend as a dependency instead of checking an
ambient "models loaded" flag.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Hashable, Iterable, Optional

import numpy as np

EMBEDDING_SIZE = 128


class InferenceError(RuntimeError):
    """Raised when a recognition step cannot complete."""


class ModelUnavailableError(InferenceError):
    """The embedding backend failed to initialize."""


class NoFaceDetectedError(InferenceError):
    """The captured frame contains no detectable face."""


class NoReferenceImagesError(InferenceError):
    """An empty reference set was supplied for comparison."""


class ImageLoadError(InferenceError):
    """A reference image could not be fetched or decoded."""


class FaceEmbeddingBackend:
    """Lazily initialized holder for the face_recognition (dlib) models.

    ``ensure_loaded()`` imports the library, which loads the HOG/CNN detector,
    the 68-point landmark predictor and the ResNet face encoder. A failed load
    is remembered so every later call raises ``ModelUnavailableError`` until
    ``reset()`` is called.
    """

    name = "face_recognition"

    def __init__(
        self,
        *,
        detection_model: str = "hog",
        num_jitters: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.detection_model = detection_model
        self.num_jitters = max(1, int(num_jitters))
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._module: Any = None
        self._load_error: Optional[BaseException] = None
        self._loaded_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Model lifecycle
    def _load_models(self) -> Any:
        import face_recognition

        return face_recognition

    def ensure_loaded(self) -> Any:
        module = self._module
        if module is not None:
            return module
        with self._lock:
            if self._module is not None:
                return self._module
            if self._load_error is not None:
                raise ModelUnavailableError(
                    f"Embedding models failed to load: {self._load_error}"
                )
            try:
                module = self._load_models()
            except Exception as exc:
                self._load_error = exc
                self._logger.error("[Inference] ❌ Không thể tải mô hình nhận diện: %s", exc)
                raise ModelUnavailableError(f"Embedding models failed to load: {exc}") from exc
            self._module = module
            self._loaded_at = datetime.now()
            self._logger.info("[Inference] ✅ Face models loaded (%s)", self.name)
            return module

    def is_loaded(self) -> bool:
        return self._module is not None

    def reset(self) -> None:
        """Forget a previous load failure so the next call retries."""
        with self._lock:
            self._module = None
            self._load_error = None
            self._loaded_at = None

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "loaded": self.is_loaded(),
            "failed": self._load_error is not None,
            "loaded_at": self._loaded_at.isoformat() if self._loaded_at else None,
            "detection_model": self.detection_model,
        }

    # ------------------------------------------------------------------
    # Embeddings
    def _embed(self, module: Any, image: np.ndarray) -> Optional[np.ndarray]:
        locations = module.face_locations(image, model=self.detection_model)
        if not locations:
            return None
        # The primary face is the largest detected box (top, right, bottom, left).
        primary = max(locations, key=lambda box: (box[2] - box[0]) * (box[1] - box[3]))
        encodings = module.face_encodings(
            image,
            known_face_locations=[primary],
            num_jitters=self.num_jitters,
        )
        if not encodings:
            return None
        return np.asarray(encodings[0], dtype=np.float64)

    def compute_embedding(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Return the 128-d embedding of the primary face, or None if no face.

        Raises ModelUnavailableError when the models cannot be loaded.
        """
        module = self.ensure_loaded()
        embedding = self._embed(module, image)
        if embedding is None:
            return None
        embedding = np.asarray(embedding, dtype=np.float64).reshape(-1)
        if embedding.shape[0] != EMBEDDING_SIZE:
            raise InferenceError(
                f"Unexpected embedding size {embedding.shape[0]} (expected {EMBEDDING_SIZE})"
            )
        return embedding


_MISSING = object()


class ReferenceEmbeddingStore:
    """Thread-safe memo of reference embeddings keyed by image handle.

    A cached ``None`` means the image was decoded but holds no face; fetch or
    decode failures are never cached so a later call retries them. At most
    ``max_entries`` handles are kept; the least recently used one is evicted
    first.
    """

    def __init__(self, max_entries: int = 4096) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[Hashable, Optional[np.ndarray]]" = OrderedDict()
        self._lock = threading.RLock()
        self._version = 0
        self._evicted = 0

    def lookup(self, handle: Hashable) -> Any:
        """Return the cached value, or ``ReferenceEmbeddingStore.MISSING``."""
        with self._lock:
            if handle not in self._entries:
                return _MISSING
            self._entries.move_to_end(handle)
            return self._entries[handle]

    def put(self, handle: Hashable, embedding: Optional[np.ndarray]) -> None:
        with self._lock:
            self._entries[handle] = embedding
            self._entries.move_to_end(handle)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._evicted += 1
            self._version += 1

    def invalidate(self, handles: Optional[Iterable[Hashable]] = None) -> int:
        with self._lock:
            if handles is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                removed = 0
                for handle in handles:
                    if self._entries.pop(handle, _MISSING) is not _MISSING:
                        removed += 1
            if removed:
                self._version += 1
            return removed

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "count": len(self._entries),
                "with_face": sum(1 for value in self._entries.values() if value is not None),
                "version": self._version,
                "max_entries": self.max_entries,
                "evicted": self._evicted,
            }


ReferenceEmbeddingStore.MISSING = _MISSING
