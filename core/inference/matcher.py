"""Face match decision procedure.

A captured frame is compared against every reference image of the claimed
identity. Each comparison turns the Euclidean distance between two 128-d
embeddings into a similarity ``1 - min(distance, 1)``; the reported
confidence is the best similarity found, never an average.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from .engine import (
    FaceEmbeddingBackend,
    ModelUnavailableError,
    NoReferenceImagesError,
    ReferenceEmbeddingStore,
)
from .images import ImageLoader

ReferenceEmbedding = Tuple[Hashable, np.ndarray]


def euclidean_distance(first: np.ndarray, second: np.ndarray) -> float:
    a = np.asarray(first, dtype=np.float64).reshape(-1)
    b = np.asarray(second, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise ValueError(f"Embedding shapes differ: {a.shape} vs {b.shape}")
    return float(np.linalg.norm(a - b))


def similarity(first: np.ndarray, second: np.ndarray) -> float:
    """Similarity in [0, 1]; distances of 1 or more score 0."""
    distance = euclidean_distance(first, second)
    return 1.0 - min(distance, 1.0)


def best_similarity(
    embedding: np.ndarray,
    references: Sequence[ReferenceEmbedding],
) -> Tuple[float, Optional[Hashable]]:
    best = 0.0
    best_handle = None
    for handle, reference in references:
        score = similarity(embedding, reference)
        if score > best:
            best = score
            best_handle = handle
    return best, best_handle


@dataclass
class MatchResult:
    verified: bool
    confidence: float
    matched_reference: Optional[Hashable] = None
    face_detected: bool = True
    threshold: float = 0.0
    references_compared: int = 0
    references_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'verified': self.verified,
            'confidence': round(self.confidence, 4),
            'matched_reference': self.matched_reference if isinstance(self.matched_reference, str) else None,
            'face_detected': self.face_detected,
            'threshold': self.threshold,
            'references_compared': self.references_compared,
            'references_failed': self.references_failed,
        }


class FaceMatcher:
    """Compares a captured face with an identity's reference images."""

    def __init__(
        self,
        backend: FaceEmbeddingBackend,
        loader: ImageLoader,
        store: Optional[ReferenceEmbeddingStore] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.backend = backend
        self.loader = loader
        self.store = store if store is not None else ReferenceEmbeddingStore()
        self._logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Reference embeddings
    def reference_embedding(self, handle: Hashable) -> Optional[np.ndarray]:
        """Embedding of one reference image, memoized per handle.

        Load/decode failures propagate (and are not cached).
        """
        cached = self.store.lookup(handle)
        if cached is not ReferenceEmbeddingStore.MISSING:
            return cached
        image = self.loader.load(handle)
        embedding = self.backend.compute_embedding(image)
        self.store.put(handle, embedding)
        if embedding is None:
            self._logger.info("[Matcher] No face found in reference %s", handle)
        return embedding

    def load_reference_embeddings(
        self, handles: Sequence[Hashable]
    ) -> Tuple[List[ReferenceEmbedding], int]:
        """Embed every usable reference; returns (embeddings, failed_count)."""
        usable: List[ReferenceEmbedding] = []
        failed = 0
        for handle in handles:
            try:
                embedding = self.reference_embedding(handle)
            except ModelUnavailableError:
                raise
            except Exception as exc:
                failed += 1
                self._logger.warning("[Matcher] ⚠️ Skipping reference %s: %s", handle, exc)
                continue
            if embedding is not None:
                usable.append((handle, embedding))
        return usable, failed

    # ------------------------------------------------------------------
    # Decisions
    def match(
        self,
        captured_image: np.ndarray,
        reference_handles: Sequence[Hashable],
        threshold: float,
    ) -> MatchResult:
        """Decide whether ``captured_image`` matches one of the references.

        Raises:
            NoReferenceImagesError: ``reference_handles`` is empty.
            ModelUnavailableError: the embedding backend cannot be loaded.
        """
        handles = list(reference_handles or [])
        if not handles:
            raise NoReferenceImagesError("No reference images supplied for comparison")

        captured = self.backend.compute_embedding(captured_image)
        if captured is None:
            return MatchResult(
                verified=False,
                confidence=0.0,
                face_detected=False,
                threshold=threshold,
            )

        references, failed = self.load_reference_embeddings(handles)
        confidence, matched = best_similarity(captured, references)
        verified = bool(references) and confidence >= threshold

        self._logger.debug(
            "[Matcher] confidence=%.3f threshold=%.2f usable=%d failed=%d",
            confidence,
            threshold,
            len(references),
            failed,
        )
        return MatchResult(
            verified=verified,
            confidence=confidence,
            matched_reference=matched,
            face_detected=True,
            threshold=threshold,
            references_compared=len(references),
            references_failed=failed,
        )

    def live_confidence(
        self,
        frame: np.ndarray,
        references: Sequence[ReferenceEmbedding],
    ) -> Optional[float]:
        """Best similarity of ``frame`` against preloaded embeddings.

        Returns None when the frame holds no face.
        """
        captured = self.backend.compute_embedding(frame)
        if captured is None:
            return None
        confidence, _ = best_similarity(captured, references)
        return confidence
