"""
API routes for face enrollment
Các API endpoint cho đăng ký ảnh khuôn mặt tham chiếu
"""
from flask import Blueprint, current_app, jsonify, request

from app import globals as app_globals
from app.utils import get_request_data, read_request_image
from core.attendance.collaborators import EnrollmentLimitError
from core.inference.engine import ImageLoadError, ModelUnavailableError, NoFaceDetectedError
from logging_config import api_logger

enrollment_api_bp = Blueprint('enrollment_api', __name__, url_prefix='/api/enrollment')


def _recognition_error(e):
    if isinstance(e, ModelUnavailableError):
        return jsonify({'success': False, 'outcome': 'model_unavailable', 'message': str(e)}), 503
    if isinstance(e, NoFaceDetectedError):
        return jsonify({'success': False, 'outcome': 'no_face_detected', 'message': str(e)}), 422
    if isinstance(e, EnrollmentLimitError):
        return jsonify({'success': False, 'message': str(e)}), 409
    if isinstance(e, ImageLoadError):
        return jsonify({'success': False, 'message': str(e)}), 400
    return None


@enrollment_api_bp.route('/<identity_id>/images', methods=['GET'])
def api_enrollment_status(identity_id):
    """Tiến độ đăng ký khuôn mặt."""
    return jsonify({'success': True, 'enrollment': app_globals.enrollment_manager.get_status(identity_id)})


@enrollment_api_bp.route('/<identity_id>/images', methods=['POST'])
def api_add_reference_image(identity_id):
    """Thêm một ảnh tham chiếu (upload, base64 hoặc image_url)."""
    manager = app_globals.enrollment_manager
    data = get_request_data()
    try:
        if data.get('image_url') and 'image' not in request.files:
            status = manager.add_reference_url(identity_id, data['image_url'])
        else:
            status = manager.add_reference_image(identity_id, read_request_image(data))
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400
    except Exception as e:
        handled = _recognition_error(e)
        if handled:
            return handled
        api_logger.log_error(f'/api/enrollment/{identity_id}/images', str(e))
        current_app.logger.error(f"[Enrollment] ❌ Could not add image: {e}", exc_info=True)
        return jsonify({'success': False, 'message': str(e)}), 500

    return jsonify({
        'success': True,
        'message': f"Đã lưu ảnh {status['count']}/{status['required']}",
        'enrollment': status,
    }), 201


@enrollment_api_bp.route('/<identity_id>/images', methods=['DELETE'])
def api_remove_reference_image(identity_id):
    """Xóa một ảnh tham chiếu để chụp lại."""
    data = get_request_data()
    image_url = data.get('image_url') or request.args.get('image_url')
    if not image_url:
        return jsonify({'success': False, 'message': 'Thiếu image_url'}), 400

    status = app_globals.enrollment_manager.remove_reference_image(identity_id, image_url)
    if status is None:
        return jsonify({'success': False, 'message': 'Không tìm thấy ảnh'}), 404
    return jsonify({'success': True, 'message': 'Đã xóa ảnh', 'enrollment': status})


@enrollment_api_bp.route('/<identity_id>/images', methods=['PUT'])
def api_replace_reference_images(identity_id):
    """Đăng ký lại toàn bộ ảnh (JSON: {"images": [base64, ...]})."""
    data = get_request_data()
    payloads = data.get('images')
    if not isinstance(payloads, list) or not payloads:
        return jsonify({'success': False, 'message': 'Thiếu danh sách ảnh'}), 400

    try:
        images = [read_request_image({'image': payload}) for payload in payloads]
        status = app_globals.enrollment_manager.replace_reference_images(identity_id, images)
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400
    except Exception as e:
        handled = _recognition_error(e)
        if handled:
            return handled
        api_logger.log_error(f'/api/enrollment/{identity_id}/images', str(e))
        current_app.logger.error(f"[Enrollment] ❌ Could not replace images: {e}", exc_info=True)
        return jsonify({'success': False, 'message': str(e)}), 500

    return jsonify({'success': True, 'message': 'Đã đăng ký lại khuôn mặt', 'enrollment': status})
