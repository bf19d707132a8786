"""
API routes for attendance
Các API endpoint cho điểm danh bằng khuôn mặt
"""
from flask import Blueprint, current_app, jsonify

from app import config
from app import globals as app_globals
from app.utils import get_request_data, read_request_image
from app.utils.attendance_utils import outcome_response
from core.attendance.outcomes import OutcomeKind, VerificationOutcome
from core.vision.frame_source import CameraConfig, CameraError, CameraFrameSource, PushedFrameSource
from core.vision.session import SessionStateError
from logging_config import api_logger

attendance_api_bp = Blueprint('attendance_api', __name__, url_prefix='/api/attendance')


def _require_fields(data, *names):
    missing = [name for name in names if not str(data.get(name) or '').strip()]
    if missing:
        return jsonify({'success': False, 'message': f"Thiếu thông tin: {', '.join(missing)}"}), 400
    return None


def _build_frame_source(source):
    if source == 'camera':
        return CameraFrameSource(CameraConfig(
            index=config.CAMERA_INDEX,
            width=config.CAMERA_WIDTH,
            height=config.CAMERA_HEIGHT,
            warmup_frames=config.CAMERA_WARMUP_FRAMES,
            buffer_size=config.CAMERA_BUFFER_SIZE,
        ))
    return PushedFrameSource()


def _session_not_found():
    return jsonify({'success': False, 'message': 'Không tìm thấy phiên điểm danh'}), 404


@attendance_api_bp.route('/verify', methods=['POST'])
def api_verify_attendance():
    """Xác minh khuôn mặt một lần và ghi điểm danh (không cần phiên)."""
    data = get_request_data()
    error = _require_fields(data, 'student_id', 'lecture_id')
    if error:
        return error
    try:
        image = read_request_image(data)
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400

    outcome = app_globals.attendance_tracker.verify_and_record(
        str(data['student_id']).strip(), data['lecture_id'], image
    )
    return outcome_response(outcome)


@attendance_api_bp.route('/sessions', methods=['POST'])
def api_start_session():
    """Mở phiên xác minh: kiểm tra buổi học, mở camera, bắt đầu preview."""
    data = get_request_data()
    error = _require_fields(data, 'student_id', 'lecture_id')
    if error:
        return error

    source = str(data.get('source') or 'upload').lower()
    if source not in ('upload', 'camera'):
        return jsonify({'success': False, 'message': 'Nguồn ảnh không hợp lệ'}), 400

    identity_id = str(data['student_id']).strip()
    lecture_id = data['lecture_id']
    tracker = app_globals.attendance_tracker
    window = app_globals.database.get_event_window(lecture_id)
    if window is None:
        return outcome_response(VerificationOutcome(OutcomeKind.EVENT_NOT_FOUND))

    registry = app_globals.session_registry
    registry.expire_idle()

    session = tracker.create_session(
        identity_id,
        lecture_id,
        _build_frame_source(source),
        window=window,
        poller_factory=app_globals.poller_factory,
        preview_interval=current_app.config['PREVIEW_INTERVAL_SECONDS'],
        window_check_interval=current_app.config['WINDOW_CHECK_INTERVAL_SECONDS'],
    )
    blocked = session.start()
    if blocked is not None:
        session.close()
        return outcome_response(blocked)

    registry.add(session)
    return jsonify({'success': True, 'session': session.snapshot()}), 201


@attendance_api_bp.route('/sessions/<session_id>', methods=['GET'])
def api_get_session(session_id):
    """Trạng thái phiên, preview gần nhất và kết quả gần nhất."""
    session = app_globals.session_registry.get(session_id)
    if session is None:
        return _session_not_found()
    session.check_window()
    return jsonify({'success': True, 'session': session.snapshot()})


@attendance_api_bp.route('/sessions/<session_id>', methods=['DELETE'])
def api_close_session(session_id):
    """Đóng phiên và giải phóng camera."""
    if not app_globals.session_registry.remove(session_id):
        return _session_not_found()
    return jsonify({'success': True, 'message': 'Đã đóng phiên điểm danh'})


def _push_frame(session, data):
    """Nhận frame từ trình duyệt nếu phiên dùng camera phía client"""
    if not isinstance(session.frame_source, PushedFrameSource):
        return None
    frame = read_request_image(data)
    session.frame_source.push(frame)
    return frame


@attendance_api_bp.route('/sessions/<session_id>/preview', methods=['POST'])
def api_session_preview(session_id):
    """Một lần đánh giá độ tin cậy trực tiếp (preview)."""
    session = app_globals.session_registry.get(session_id)
    if session is None:
        return _session_not_found()

    data = get_request_data()
    try:
        frame = _push_frame(session, data)
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400
    except CameraError as e:
        return jsonify({'success': False, 'message': str(e), 'session': session.snapshot()}), 409

    preview = session.preview_tick(frame)
    return jsonify({
        'success': True,
        'skipped': preview is None,
        'preview': preview.to_dict() if preview else None,
        'session': session.snapshot(),
    })


@attendance_api_bp.route('/sessions/<session_id>/verify', methods=['POST'])
def api_session_verify(session_id):
    """Chụp ảnh và xác minh trong phiên."""
    session = app_globals.session_registry.get(session_id)
    if session is None:
        return _session_not_found()

    data = get_request_data()
    try:
        frame = _push_frame(session, data)
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400
    except CameraError as e:
        return jsonify({'success': False, 'message': str(e), 'session': session.snapshot()}), 409

    try:
        outcome = session.capture_and_verify(frame)
    except SessionStateError as e:
        return jsonify({'success': False, 'message': str(e), 'session': session.snapshot()}), 409
    except Exception as e:
        api_logger.log_error(f'/api/attendance/sessions/{session_id}/verify', str(e))
        current_app.logger.error(f"[Attendance] ❌ Verification error: {e}", exc_info=True)
        return jsonify({'success': False, 'message': str(e)}), 500

    return outcome_response(outcome, session=session.snapshot())


@attendance_api_bp.route('/lectures/<int:lecture_id>', methods=['GET'])
def api_lecture_attendance(lecture_id):
    """Danh sách điểm danh của một buổi học."""
    database = app_globals.database
    if database.get_lecture(lecture_id) is None:
        return jsonify({'success': False, 'message': 'Không tìm thấy buổi học'}), 404
    records = database.get_lecture_attendance(lecture_id)
    return jsonify({'success': True, 'data': records, 'count': len(records)})
