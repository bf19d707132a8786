import base64
import hashlib
import threading
from datetime import datetime, timedelta

import cv2
import numpy as np
import pytest

from core.inference.engine import FaceEmbeddingBackend, ImageLoadError, ModelUnavailableError


def make_image(seed, size=32):
    """Random-noise RGB image; distinct seeds give distinct images."""
    rng = np.random.RandomState(seed)
    return rng.randint(0, 256, size=(size, size, 3), dtype=np.uint8)


def encode_png(rgb):
    ok, buffer = cv2.imencode('.png', cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
    assert ok
    return buffer.tobytes()


def image_b64(rgb):
    return 'data:image/png;base64,' + base64.b64encode(encode_png(rgb)).decode('ascii')


def unit_vector(seed):
    rng = np.random.RandomState(seed)
    vector = rng.normal(size=128)
    return vector / np.linalg.norm(vector)


def at_distance(reference, distance, seed=999):
    """Vector exactly ``distance`` away from ``reference``."""
    direction = unit_vector(seed)
    return np.asarray(reference, dtype=np.float64) + distance * direction


def image_key(image):
    return hashlib.sha1(np.ascontiguousarray(image).tobytes()).hexdigest()


class FakeBackend(FaceEmbeddingBackend):
    """Embedding backend without dlib: embeddings are registered per image."""

    name = 'fake'

    def __init__(self, fail_load=False):
        super().__init__()
        self.fail_load = fail_load
        self.load_attempts = 0
        self.embed_calls = 0
        self.embed_started = threading.Event()
        self.embed_gate = None
        self._embeddings = {}

    def register(self, image, embedding):
        self._embeddings[image_key(image)] = np.asarray(embedding, dtype=np.float64)
        return image

    def _load_models(self):
        self.load_attempts += 1
        if self.fail_load:
            raise RuntimeError('model files missing')
        return object()

    def _embed(self, module, image):
        self.embed_calls += 1
        self.embed_started.set()
        if self.embed_gate is not None:
            self.embed_gate.wait(timeout=5)
        return self._embeddings.get(image_key(image))


class FakeLoader:
    """Resolves string handles to registered arrays."""

    def __init__(self):
        self.images = {}
        self.loads = []

    def add(self, handle, image):
        self.images[handle] = image
        return handle

    def load(self, handle):
        self.loads.append(handle)
        if isinstance(handle, np.ndarray):
            return handle
        if handle not in self.images:
            raise ImageLoadError(f'Image file not found: {handle}')
        return self.images[handle]

    def close(self):
        pass


class FailingBackend(FakeBackend):
    def _embed(self, module, image):
        raise ModelUnavailableError('backend lost')


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def enrolled(backend, loader):
    """Ten reference handles for 'alice' plus her base embedding."""
    base = unit_vector(1)
    handles = []
    for index in range(10):
        image = make_image(100 + index)
        # References spread 0.05..0.5 away from the base identity
        backend.register(image, at_distance(base, 0.05 * (index + 1), seed=200 + index))
        handles.append(loader.add(f'ref://alice/{index}', image))
    return base, handles


@pytest.fixture
def database(tmp_path):
    from database import DatabaseManager

    return DatabaseManager(tmp_path / 'test.db')


@pytest.fixture
def open_lecture(database):
    start = datetime.now() - timedelta(minutes=5)
    return database.create_lecture('Machine Learning', start, 60)


@pytest.fixture
def app(tmp_path, backend, loader):
    from app import create_app

    application = create_app(
        {
            'TESTING': True,
            'DATABASE_PATH': str(tmp_path / 'app.db'),
            'DATA_DIR': str(tmp_path / 'data'),
            'LOG_DIR': str(tmp_path / 'logs'),
            'LOG_LEVEL': 'DEBUG',
            'BACKGROUND_POLLING': False,
        },
        backend=backend,
        loader=loader,
    )
    yield application
    from app import globals as app_globals

    app_globals.session_registry.close_all()


@pytest.fixture
def client(app):
    return app.test_client()
