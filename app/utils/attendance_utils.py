"""
Attendance utilities
Các hàm tiện ích cho điểm danh: mã HTTP và payload JSON của kết quả xác minh
"""
from datetime import datetime

from flask import jsonify

from core.attendance.outcomes import OutcomeKind, VerificationOutcome
from core.attendance.window import lecture_status

_STATUS_CODES = {
    OutcomeKind.SUCCESS: 200,
    OutcomeKind.NO_FACE_DETECTED: 422,
    OutcomeKind.NO_REFERENCE_IMAGES: 422,
    OutcomeKind.ENROLLMENT_INCOMPLETE: 422,
    OutcomeKind.LOW_CONFIDENCE: 422,
    OutcomeKind.EVENT_NOT_FOUND: 404,
    OutcomeKind.EVENT_NOT_STARTED: 409,
    OutcomeKind.EVENT_ENDED: 409,
    OutcomeKind.DUPLICATE_ATTENDANCE: 409,
    OutcomeKind.MODEL_UNAVAILABLE: 503,
    OutcomeKind.CAMERA_UNAVAILABLE: 503,
    OutcomeKind.RECORD_FAILED: 500,
}


def outcome_status_code(outcome: VerificationOutcome) -> int:
    return _STATUS_CODES.get(outcome.kind, 500)


def outcome_response(outcome: VerificationOutcome, **extra):
    """Trả về (response, status) cho một VerificationOutcome"""
    payload = outcome.to_dict()
    payload.update(extra)
    return jsonify(payload), outcome_status_code(outcome)


def serialize_lecture(lecture, window, attendance_count=None, now=None):
    """Chuẩn hóa buổi học cho API (kèm trạng thái upcoming/ongoing/completed)"""
    now = now or datetime.now(tz=window.start.tzinfo)
    payload = {
        'id': lecture['id'],
        'title': lecture.get('title'),
        'professor_id': lecture.get('professor_id'),
        'scheduled_time': window.start.isoformat(),
        'end_time': window.end.isoformat(),
        'duration': lecture.get('duration'),
        'status': lecture_status(window, now),
        'seconds_remaining': window.seconds_remaining(now),
    }
    if attendance_count is not None:
        payload['attendance_count'] = attendance_count
    return payload
