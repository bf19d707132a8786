from datetime import datetime

import pytest

from core.attendance.collaborators import DuplicateAttendanceError, EnrollmentLimitError
from core.attendance.window import WindowStatus


def test_reference_images_roundtrip(database):
    database.set_reference_images('alice', ['a.jpg', '', 'b.jpg'])

    assert database.get_reference_images('alice') == ['a.jpg', 'b.jpg']
    assert database.get_reference_images('unknown') == []


def test_append_respects_limit(database):
    for index in range(3):
        database.append_reference_image('alice', f'{index}.jpg', limit=3)

    with pytest.raises(EnrollmentLimitError):
        database.append_reference_image('alice', 'extra.jpg', limit=3)
    assert len(database.get_reference_images('alice')) == 3


def test_remove_reference_image(database):
    database.set_reference_images('alice', ['a.jpg', 'b.jpg'])

    assert database.remove_reference_image('alice', 'a.jpg') == ['b.jpg']
    assert database.remove_reference_image('alice', 'zzz.jpg') is None


def test_profile_upsert_keeps_reference_images(database):
    database.set_reference_images('alice', ['a.jpg'])
    profile = database.upsert_profile('alice', full_name='Alice Nguyen')

    assert profile['full_name'] == 'Alice Nguyen'
    assert profile['face_image_urls'] == ['a.jpg']


def test_event_window_from_lecture(database):
    lecture = database.create_lecture('Algebra', datetime(2024, 3, 4, 9, 0), 45)

    window = database.get_event_window(lecture)

    assert window.end == datetime(2024, 3, 4, 9, 45)
    assert window.status_at(datetime(2024, 3, 4, 9, 45)) is WindowStatus.OPEN
    assert database.get_event_window(12345) is None


def test_lecture_with_professor(database):
    database.upsert_profile('prof-1', full_name='Dr. Tran', role='professor')
    lecture = database.create_lecture('Physics', datetime(2024, 3, 4, 9, 0), 60, professor_id='prof-1')

    assert [row['id'] for row in database.list_lectures(professor_id='prof-1')] == [lecture]
    assert database.list_lectures(professor_id='prof-2') == []


def test_attendance_is_unique_per_student_and_lecture(database):
    lecture = database.create_lecture('Algebra', datetime(2024, 3, 4, 9, 0), 45)

    record = database.record_attendance('alice', lecture, confidence=0.91, image_url='cap.jpg')
    with pytest.raises(DuplicateAttendanceError):
        database.record_attendance('alice', lecture, confidence=0.95)

    assert record['confidence_score'] == 0.91
    assert record['method'] == 'face_recognition'
    assert database.count_lecture_attendance(lecture) == 1
    database.record_attendance('bob', lecture, confidence=0.8)
    assert database.count_lecture_attendance(lecture) == 2


def test_lecture_attendance_includes_student_name(database):
    database.upsert_profile('alice', full_name='Alice Nguyen')
    lecture = database.create_lecture('Algebra', datetime(2024, 3, 4, 9, 0), 45)
    database.record_attendance('alice', lecture, confidence=0.9)

    rows = database.get_lecture_attendance(lecture)

    assert rows[0]['student_name'] == 'Alice Nguyen'
    assert rows[0]['student_id'] == 'alice'
