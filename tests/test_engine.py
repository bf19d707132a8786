import numpy as np
import pytest

from core.inference.engine import (
    FaceEmbeddingBackend,
    InferenceError,
    ModelUnavailableError,
    ReferenceEmbeddingStore,
)

from .conftest import FakeBackend, make_image


class StubFaceModule:
    """Mimics the face_recognition module API."""

    def __init__(self, locations, encoding_size=128):
        self.locations = locations
        self.encoding_size = encoding_size
        self.requested = None

    def face_locations(self, image, model='hog'):
        return list(self.locations)

    def face_encodings(self, image, known_face_locations=None, num_jitters=1):
        self.requested = known_face_locations
        return [np.full(self.encoding_size, 0.5)] if known_face_locations else []


class StubBackend(FaceEmbeddingBackend):
    def __init__(self, module):
        super().__init__()
        self.module = module

    def _load_models(self):
        return self.module


class TestModelLifecycle:
    def test_models_load_lazily_once(self):
        backend = FakeBackend()
        assert backend.is_loaded() is False

        backend.ensure_loaded()
        backend.ensure_loaded()
        backend.compute_embedding(make_image(1))

        assert backend.load_attempts == 1
        assert backend.is_loaded() is True

    def test_load_failure_is_remembered(self):
        backend = FakeBackend(fail_load=True)
        with pytest.raises(ModelUnavailableError):
            backend.ensure_loaded()
        with pytest.raises(ModelUnavailableError):
            backend.compute_embedding(make_image(1))

        assert backend.load_attempts == 1
        assert backend.describe()['failed'] is True

    def test_reset_allows_retry(self):
        backend = FakeBackend(fail_load=True)
        with pytest.raises(ModelUnavailableError):
            backend.ensure_loaded()

        backend.fail_load = False
        backend.reset()
        backend.ensure_loaded()

        assert backend.load_attempts == 2
        assert backend.describe()['loaded'] is True


class TestEmbedding:
    def test_largest_face_is_encoded(self):
        small = (10, 30, 30, 10)
        large = (0, 100, 100, 0)
        module = StubFaceModule([small, large])
        embedding = StubBackend(module).compute_embedding(make_image(1))

        assert module.requested == [large]
        assert embedding.shape == (128,)

    def test_no_face_returns_none(self):
        assert StubBackend(StubFaceModule([])).compute_embedding(make_image(1)) is None

    def test_unexpected_embedding_size_rejected(self):
        backend = StubBackend(StubFaceModule([(0, 10, 10, 0)], encoding_size=64))
        with pytest.raises(InferenceError):
            backend.compute_embedding(make_image(1))


class TestReferenceEmbeddingStore:
    def test_missing_sentinel_distinguishes_cached_none(self):
        store = ReferenceEmbeddingStore()
        assert store.lookup('a') is ReferenceEmbeddingStore.MISSING

        store.put('a', None)
        assert store.lookup('a') is None

    def test_invalidate_selected_handles(self):
        store = ReferenceEmbeddingStore()
        store.put('a', np.zeros(128))
        store.put('b', np.zeros(128))

        assert store.invalidate(['a', 'zzz']) == 1
        assert store.lookup('a') is ReferenceEmbeddingStore.MISSING
        assert store.count() == 1

    def test_invalidate_all(self):
        store = ReferenceEmbeddingStore()
        store.put('a', np.zeros(128))
        store.put('b', None)

        assert store.invalidate() == 2
        assert store.describe()['count'] == 0

    def test_least_recently_used_handle_is_evicted(self):
        store = ReferenceEmbeddingStore(max_entries=2)
        store.put('a', np.zeros(128))
        store.put('b', np.zeros(128))
        store.lookup('a')

        store.put('c', None)

        assert store.lookup('b') is ReferenceEmbeddingStore.MISSING
        assert store.lookup('a') is not ReferenceEmbeddingStore.MISSING
        assert store.count() == 2
        assert store.describe()['evicted'] == 1

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            ReferenceEmbeddingStore(max_entries=0)
