"""
API routes for lectures
Các API endpoint cho trạng thái buổi học
"""
from flask import Blueprint, current_app, jsonify, request

from app import globals as app_globals
from app.utils import get_request_data
from app.utils.attendance_utils import serialize_lecture
from core.attendance.window import EventWindow

lectures_api_bp = Blueprint('lectures_api', __name__, url_prefix='/api/lectures')


@lectures_api_bp.route('', methods=['GET'])
def api_list_lectures():
    """Danh sách buổi học kèm trạng thái (upcoming / ongoing / completed)."""
    database = app_globals.database
    professor_id = request.args.get('professor_id')
    status_filter = request.args.get('status')

    result = []
    for lecture in database.list_lectures(professor_id=professor_id):
        window = EventWindow.from_schedule(lecture['scheduled_time'], lecture['duration'])
        payload = serialize_lecture(lecture, window, database.count_lecture_attendance(lecture['id']))
        if status_filter and payload['status'] != status_filter:
            continue
        result.append(payload)

    return jsonify({
        'success': True,
        'data': result,
        'refresh_interval': current_app.config['DASHBOARD_REFRESH_SECONDS'],
    })


@lectures_api_bp.route('', methods=['POST'])
def api_create_lecture():
    """Tạo buổi học (scheduled_time ISO-8601, duration phút)."""
    data = get_request_data()
    title = (data.get('title') or '').strip()
    scheduled_time = data.get('scheduled_time')
    duration = data.get('duration')
    if not title or not scheduled_time or duration in (None, ''):
        return jsonify({'success': False, 'message': 'Thiếu thông tin bắt buộc'}), 400

    try:
        window = EventWindow.from_schedule(scheduled_time, duration)
    except (TypeError, ValueError) as e:
        return jsonify({'success': False, 'message': f'Dữ liệu không hợp lệ: {e}'}), 400
    if not window.duration_minutes.is_integer():
        return jsonify({'success': False, 'message': 'Thời lượng phải là số phút nguyên'}), 400

    database = app_globals.database
    professor_id = data.get('professor_id') or None
    if professor_id and database.get_profile(professor_id) is None:
        database.upsert_profile(professor_id, role='professor')

    lecture_id = database.create_lecture(title, window.start, int(window.duration_minutes), professor_id=professor_id)
    lecture = database.get_lecture(lecture_id)
    return jsonify({'success': True, 'lecture': serialize_lecture(lecture, window, 0)}), 201


@lectures_api_bp.route('/<int:lecture_id>', methods=['GET'])
def api_lecture_status(lecture_id):
    """Trạng thái một buổi học và số sinh viên đã điểm danh."""
    database = app_globals.database
    lecture = database.get_lecture(lecture_id)
    if lecture is None:
        return jsonify({'success': False, 'message': 'Không tìm thấy buổi học'}), 404
    window = EventWindow.from_schedule(lecture['scheduled_time'], lecture['duration'])
    return jsonify({
        'success': True,
        'lecture': serialize_lecture(lecture, window, database.count_lecture_attendance(lecture_id)),
        'refresh_interval': current_app.config['DASHBOARD_REFRESH_SECONDS'],
    })
