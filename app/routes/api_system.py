"""
API routes for system status
Các API cho trạng thái hệ thống và mô hình nhận diện
"""
from flask import Blueprint, current_app, jsonify

from app import globals as app_globals
from core.inference.engine import ModelUnavailableError

system_api_bp = Blueprint('system_api', __name__, url_prefix='/api/system')


@system_api_bp.route('/status')
def api_system_status():
    """API trạng thái hệ thống"""
    matcher = app_globals.face_matcher
    return jsonify({
        'success': True,
        'models': matcher.backend.describe(),
        'reference_cache': matcher.store.describe(),
        'active_sessions': app_globals.session_registry.count(),
        'sse_clients': app_globals.event_broadcaster.get_client_count(),
        'thresholds': {
            'verify': current_app.config['VERIFY_THRESHOLD'],
            'preview': current_app.config['PREVIEW_THRESHOLD'],
            'preview_medium': current_app.config['PREVIEW_MEDIUM_THRESHOLD'],
        },
        'required_reference_images': current_app.config['REQUIRED_REFERENCE_IMAGES'],
    })


@system_api_bp.route('/models/reload', methods=['POST'])
def api_reload_models():
    """Tải lại mô hình nhận diện sau khi lỗi"""
    backend = app_globals.embedding_backend
    backend.reset()
    try:
        backend.ensure_loaded()
    except ModelUnavailableError as e:
        return jsonify({'success': False, 'outcome': 'model_unavailable', 'message': str(e)}), 503
    return jsonify({'success': True, 'message': 'Đã tải mô hình nhận diện', 'models': backend.describe()})
