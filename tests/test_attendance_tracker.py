import os
import threading
from datetime import datetime, timedelta

import pytest

from app.models import AttendanceTracker, EventBroadcaster
from app.utils import ImageStore
from core.attendance.outcomes import ConfidenceBand, OutcomeKind
from core.inference.matcher import FaceMatcher

from .conftest import FakeBackend, at_distance, make_image, unit_vector


def build_tracker(database, backend, loader, **kwargs):
    return AttendanceTracker(
        identity_store=database,
        ledger=database,
        events=database,
        matcher=FaceMatcher(backend, loader),
        **kwargs,
    )


@pytest.fixture
def tracker(database, backend, loader):
    return build_tracker(database, backend, loader)


@pytest.fixture
def alice(database, backend, enrolled):
    base, handles = enrolled
    database.set_reference_images('alice', handles)
    return base, handles


def capture_of_reference(backend, loader, handle, seed=1):
    """A frame whose embedding equals that of the given reference."""
    reference = backend.compute_embedding(loader.images[handle])
    return backend.register(make_image(seed), reference)


class TestVerifyAndRecord:
    def test_success_records_attendance(self, tracker, database, backend, loader, alice, open_lecture):
        _, handles = alice
        frame = capture_of_reference(backend, loader, handles[3])

        result = tracker.verify_and_record('alice', open_lecture, frame)

        assert result.kind is OutcomeKind.SUCCESS
        assert result.confidence == pytest.approx(1.0)
        assert result.match.matched_reference == handles[3]
        assert database.has_attendance('alice', open_lecture)
        assert result.record['method'] == 'face_recognition'
        assert result.record['confidence_score'] == pytest.approx(1.0)

    def test_second_attempt_is_duplicate(self, tracker, database, backend, loader, alice, open_lecture):
        _, handles = alice
        frame = capture_of_reference(backend, loader, handles[0])

        assert tracker.verify_and_record('alice', open_lecture, frame).success
        second = tracker.verify_and_record('alice', open_lecture, frame)

        assert second.kind is OutcomeKind.DUPLICATE_ATTENDANCE
        assert second.kind.is_terminal
        assert database.count_lecture_attendance(open_lecture) == 1

    def test_concurrent_attempts_record_once(self, tracker, database, backend, loader, alice, open_lecture):
        _, handles = alice
        frame = capture_of_reference(backend, loader, handles[0])
        tracker.matcher.load_reference_embeddings(handles)
        results = []

        def attempt():
            results.append(tracker.verify_and_record('alice', open_lecture, frame).kind)

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert results.count(OutcomeKind.SUCCESS) == 1
        assert results.count(OutcomeKind.DUPLICATE_ATTENDANCE) == 3
        assert database.count_lecture_attendance(open_lecture) == 1

    def test_incomplete_enrollment_skips_recognition(self, tracker, database, backend, enrolled, open_lecture):
        _, handles = enrolled
        database.set_reference_images('bob', handles[:9])

        result = tracker.verify_and_record('bob', open_lecture, make_image(1))

        assert result.kind is OutcomeKind.ENROLLMENT_INCOMPLETE
        assert '9/10' in result.message
        assert backend.embed_calls == 0

    def test_no_reference_images(self, tracker, backend, open_lecture):
        result = tracker.verify_and_record('nobody', open_lecture, make_image(1))

        assert result.kind is OutcomeKind.NO_REFERENCE_IMAGES
        assert backend.embed_calls == 0

    def test_lecture_not_started(self, tracker, database, backend, alice):
        lecture = database.create_lecture('Later', datetime.now() + timedelta(hours=1), 60)

        result = tracker.verify_and_record('alice', lecture, make_image(1))

        assert result.kind is OutcomeKind.EVENT_NOT_STARTED
        assert result.kind.is_retryable
        assert backend.embed_calls == 0

    def test_lecture_ended(self, tracker, database, alice):
        lecture = database.create_lecture('Earlier', datetime.now() - timedelta(hours=2), 60)

        result = tracker.verify_and_record('alice', lecture, make_image(1))

        assert result.kind is OutcomeKind.EVENT_ENDED
        assert not database.has_attendance('alice', lecture)

    def test_explicit_now_is_used_for_the_gate(self, tracker, database, backend, loader, alice):
        start = datetime(2024, 3, 4, 9, 0)
        lecture = database.create_lecture('Fixed', start, 30)
        frame = capture_of_reference(backend, loader, alice[1][0])

        assert tracker.verify_and_record('alice', lecture, frame, now=start + timedelta(minutes=30)).success

    def test_unknown_lecture(self, tracker, alice):
        assert tracker.verify_and_record('alice', 9999, make_image(1)).kind is OutcomeKind.EVENT_NOT_FOUND

    def test_no_face_detected(self, tracker, alice, open_lecture):
        result = tracker.verify_and_record('alice', open_lecture, make_image(4242))

        assert result.kind is OutcomeKind.NO_FACE_DETECTED
        assert result.match.face_detected is False

    def test_low_confidence(self, tracker, database, backend, alice, open_lecture):
        stranger = backend.register(make_image(5), unit_vector(77))

        result = tracker.verify_and_record('alice', open_lecture, stranger)

        assert result.kind is OutcomeKind.LOW_CONFIDENCE
        assert 'Required: 69%+' in result.message
        assert not database.has_attendance('alice', open_lecture)

    def test_custom_threshold(self, database, backend, loader, alice, open_lecture):
        base, handles = alice
        reference = backend.compute_embedding(loader.images[handles[0]])
        frame = backend.register(make_image(6), at_distance(reference, 0.25))
        strict = build_tracker(database, backend, loader, verify_threshold=0.95)

        result = strict.verify_and_record('alice', open_lecture, frame)

        assert result.kind is OutcomeKind.LOW_CONFIDENCE

    def test_model_unavailable(self, database, loader, alice, open_lecture):
        tracker = build_tracker(database, FakeBackend(fail_load=True), loader)

        result = tracker.verify_and_record('alice', open_lecture, make_image(1))

        assert result.kind is OutcomeKind.MODEL_UNAVAILABLE
        assert result.kind.is_terminal

    def test_ledger_failure_is_record_failed(self, database, backend, loader, alice, open_lecture):
        class BrokenLedger:
            def record_attendance(self, *args, **kwargs):
                raise RuntimeError('disk full')

        tracker = AttendanceTracker(
            identity_store=database,
            ledger=BrokenLedger(),
            events=database,
            matcher=FaceMatcher(backend, loader),
        )
        frame = capture_of_reference(backend, loader, alice[1][0])

        result = tracker.verify_and_record('alice', open_lecture, frame)

        assert result.kind is OutcomeKind.RECORD_FAILED
        assert result.kind.is_retryable


class TestSideEffects:
    def test_capture_is_stored_and_broadcast(self, database, backend, loader, alice, open_lecture, tmp_path):
        broadcaster = EventBroadcaster()
        client = broadcaster.add_client()
        tracker = build_tracker(
            database, backend, loader,
            image_store=ImageStore(tmp_path / 'storage'),
            broadcaster=broadcaster,
        )
        frame = capture_of_reference(backend, loader, alice[1][0])

        result = tracker.verify_and_record('alice', open_lecture, frame)

        assert os.path.isfile(result.record['image_url'])
        message = client.get_nowait()
        assert message.startswith('event: attendance_marked')
        assert '"student_id": "alice"' in message

    def test_duplicate_attempt_keeps_no_capture(self, database, backend, loader, alice, open_lecture, tmp_path):
        storage = tmp_path / 'storage'
        tracker = build_tracker(database, backend, loader, image_store=ImageStore(storage))
        frame = capture_of_reference(backend, loader, alice[1][0])

        first = tracker.verify_and_record('alice', open_lecture, frame)
        second = tracker.verify_and_record('alice', open_lecture, frame)

        assert second.kind is OutcomeKind.DUPLICATE_ATTENDANCE
        assert [str(path) for path in storage.rglob('*.jpg')] == [first.record['image_url']]

    def test_failed_record_keeps_no_capture(self, database, backend, loader, alice, open_lecture, tmp_path):
        class BrokenLedger:
            def record_attendance(self, *args, **kwargs):
                raise RuntimeError('disk full')

        storage = tmp_path / 'storage'
        tracker = AttendanceTracker(
            identity_store=database,
            ledger=BrokenLedger(),
            events=database,
            matcher=FaceMatcher(backend, loader),
            image_store=ImageStore(storage),
        )
        frame = capture_of_reference(backend, loader, alice[1][0])

        result = tracker.verify_and_record('alice', open_lecture, frame)

        assert result.kind is OutcomeKind.RECORD_FAILED
        assert list(storage.rglob('*.jpg')) == []

    def test_storage_failure_does_not_block_attendance(self, database, backend, loader, alice, open_lecture):
        class BrokenStore:
            def save_capture(self, *args):
                raise OSError('read-only')

        tracker = build_tracker(database, backend, loader, image_store=BrokenStore())
        frame = capture_of_reference(backend, loader, alice[1][0])

        result = tracker.verify_and_record('alice', open_lecture, frame)

        assert result.success
        assert result.record['image_url'] is None


class TestPreview:
    def test_preview_bands(self, tracker, backend, loader, alice):
        _, handles = alice
        reference = backend.compute_embedding(loader.images[handles[0]])
        references = [(handles[0], reference)]

        high = backend.register(make_image(11), reference)
        medium = backend.register(make_image(12), at_distance(reference, 0.3))
        low = backend.register(make_image(13), at_distance(reference, 0.6))

        assert tracker.preview_frame(high, references).band is ConfidenceBand.HIGH
        assert tracker.preview_frame(medium, references).band is ConfidenceBand.MEDIUM
        assert tracker.preview_frame(low, references).band is ConfidenceBand.LOW
        assert tracker.preview_frame(make_image(14), references).face_detected is False

    def test_preview_tolerates_partial_enrollment(self, tracker, database, backend, loader, enrolled):
        _, handles = enrolled
        database.set_reference_images('carol', handles[:3] + ['ref://gone'])
        preview = tracker.make_preview_fn('carol')
        frame = capture_of_reference(backend, loader, handles[2])

        result = preview(frame)

        assert result.ready is True
        preview(frame)
        assert loader.loads.count(handles[2]) == 1

    def test_create_session_uses_lecture_window(self, tracker, alice, open_lecture):
        from core.vision.frame_source import PushedFrameSource

        session = tracker.create_session('alice', open_lecture, PushedFrameSource())

        assert session.window is not None
        assert session.start() is None
        session.close()
