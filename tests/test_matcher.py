import numpy as np
import pytest

from core.inference.engine import ModelUnavailableError, NoReferenceImagesError
from core.inference.matcher import FaceMatcher, best_similarity, similarity

from .conftest import FailingBackend, FakeBackend, FakeLoader, make_image


def basis(index, scale=1.0):
    vector = np.zeros(128)
    vector[index] = scale
    return vector


def build(backend, loader, embeddings, prefix='ref'):
    handles = []
    for index, embedding in enumerate(embeddings):
        image = make_image(500 + index)
        if embedding is not None:
            backend.register(image, embedding)
        handles.append(loader.add(f'{prefix}://{index}', image))
    return handles


@pytest.fixture
def matcher(backend, loader):
    return FaceMatcher(backend, loader)


class TestSimilarity:
    def test_identical_embeddings_score_one(self):
        vector = basis(3, 0.4)
        assert similarity(vector, vector) == pytest.approx(1.0)

    def test_is_symmetric(self):
        a = basis(0, 0.3)
        b = basis(1, 0.2)
        assert similarity(a, b) == pytest.approx(similarity(b, a))

    def test_distance_beyond_one_is_clamped_to_zero(self):
        assert similarity(basis(0, 0.0), basis(0, 1.7)) == 0.0
        assert similarity(basis(0, 0.0), basis(0, 1.0)) == 0.0

    def test_within_unit_interval(self):
        rng = np.random.RandomState(3)
        for _ in range(20):
            score = similarity(rng.normal(size=128) * 0.1, rng.normal(size=128) * 0.1)
            assert 0.0 <= score <= 1.0

    def test_mismatched_shapes_rejected(self):
        with pytest.raises(ValueError):
            similarity(np.zeros(128), np.zeros(64))

    def test_best_similarity_of_empty_set_is_zero(self):
        assert best_similarity(basis(0), []) == (0.0, None)


class TestMatch:
    def test_confidence_is_maximum_not_average(self, matcher, backend, loader):
        handles = build(backend, loader, [np.zeros(128), basis(0, 0.3)])
        captured = backend.register(make_image(1), basis(0, 0.1))

        result = matcher.match(captured, handles, threshold=0.69)

        assert result.confidence == pytest.approx(0.9)
        assert result.matched_reference == handles[0]
        assert result.verified is True
        assert result.references_compared == 2

    def test_no_reference_images_raises(self, matcher):
        with pytest.raises(NoReferenceImagesError):
            matcher.match(make_image(1), [], threshold=0.69)

    def test_no_face_in_capture(self, matcher, backend, loader):
        handles = build(backend, loader, [np.zeros(128)])
        result = matcher.match(make_image(42), handles, threshold=0.69)

        assert result.face_detected is False
        assert result.verified is False
        assert result.confidence == 0.0

    def test_failed_references_are_skipped(self, matcher, backend, loader):
        handles = build(backend, loader, [None, basis(0, 0.2)])
        handles.insert(0, 'ref://missing')
        captured = backend.register(make_image(1), np.zeros(128))

        result = matcher.match(captured, handles, threshold=0.69)

        assert result.confidence == pytest.approx(0.8)
        assert result.matched_reference == handles[2]
        assert result.references_failed == 1
        assert result.references_compared == 1

    def test_all_references_unusable_is_not_verified(self, matcher, backend, loader):
        handles = build(backend, loader, [None, None])
        captured = backend.register(make_image(1), np.zeros(128))

        result = matcher.match(captured, handles, threshold=0.0)

        assert result.face_detected is True
        assert result.verified is False
        assert result.confidence == 0.0

    def test_threshold_is_inclusive(self, matcher, backend, loader):
        handles = build(backend, loader, [np.zeros(128)])
        captured = backend.register(make_image(1), basis(5, 0.25))

        assert matcher.match(captured, handles, threshold=0.75).verified is True
        assert matcher.match(captured, handles, threshold=0.76).verified is False

    def test_verification_is_monotonic_in_threshold(self, matcher, backend, loader):
        handles = build(backend, loader, [np.zeros(128), basis(1, 0.5)])
        captured = backend.register(make_image(1), basis(2, 0.35))

        outcomes = [matcher.match(captured, handles, t / 20).verified for t in range(21)]
        # Once rejected, every higher threshold also rejects
        first_reject = outcomes.index(False)
        assert all(outcomes[:first_reject])
        assert not any(outcomes[first_reject:])

    def test_reference_embeddings_are_memoized(self, matcher, backend, loader):
        handles = build(backend, loader, [np.zeros(128), basis(1, 0.2)])
        captured = backend.register(make_image(1), np.zeros(128))

        matcher.match(captured, handles, 0.69)
        matcher.match(captured, handles, 0.69)

        assert loader.loads.count(handles[0]) == 1
        assert loader.loads.count(handles[1]) == 1

    def test_failed_reference_is_retried_later(self, matcher, backend, loader):
        captured = backend.register(make_image(1), np.zeros(128))
        matcher.match(captured, ['ref://late'], 0.69)

        image = backend.register(make_image(77), np.zeros(128))
        loader.add('ref://late', image)
        result = matcher.match(captured, ['ref://late'], 0.69)

        assert result.verified is True

    def test_model_unavailable_propagates(self, loader):
        matcher = FaceMatcher(FakeBackend(fail_load=True), loader)
        with pytest.raises(ModelUnavailableError):
            matcher.match(make_image(1), ['ref://0'], 0.69)

    def test_model_failure_during_reference_embedding_propagates(self):
        loader = FakeLoader()
        loader.add('ref://0', make_image(2))
        matcher = FaceMatcher(FailingBackend(), loader)
        with pytest.raises(ModelUnavailableError):
            matcher.load_reference_embeddings(['ref://0'])


class TestLiveConfidence:
    def test_none_without_face(self, matcher):
        assert matcher.live_confidence(make_image(3), [('a', np.zeros(128))]) is None

    def test_best_against_preloaded(self, matcher, backend):
        frame = backend.register(make_image(3), basis(0, 0.1))
        references = [('a', np.zeros(128)), ('b', basis(0, 0.6))]
        assert matcher.live_confidence(frame, references) == pytest.approx(0.9)

    def test_zero_without_references(self, matcher, backend):
        frame = backend.register(make_image(3), basis(0, 0.1))
        assert matcher.live_confidence(frame, []) == 0.0


def test_single_strong_reference_wins_among_weak_ones(matcher, backend, loader):
    embeddings = [basis(k, 0.6) for k in range(1, 5)] + [basis(5, 0.05)] + [basis(k, 0.7) for k in range(6, 10)]
    handles = build(backend, loader, embeddings, prefix='mixed')
    captured = backend.register(make_image(1), np.zeros(128))

    result = matcher.match(captured, handles, threshold=0.69)

    assert result.confidence == pytest.approx(0.95)
    assert result.matched_reference == handles[4]
    assert result.references_compared == 10
