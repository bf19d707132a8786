"""
App package initialization
Khởi tạo Flask application và các service điểm danh
"""
import os
from pathlib import Path

from flask import Flask, request

from app import config
from app import globals as app_globals
from app.models import (
    AttendanceTracker,
    EnrollmentManager,
    EventBroadcaster,
    SessionRegistry,
)
from app.utils import ImageStore
from core.inference.engine import FaceEmbeddingBackend, ReferenceEmbeddingStore
from core.inference.images import ImageLoader
from core.inference.matcher import FaceMatcher
from core.vision.poller import interval_poller_factory
from database import DatabaseManager
from logging_config import log_request_info, setup_logging


def _default_settings():
    return {
        'SECRET_KEY': config.SECRET_KEY,
        'MAX_CONTENT_LENGTH': config.MAX_CONTENT_LENGTH,
        'DATABASE_PATH': config.DATABASE_PATH,
        'DATA_DIR': str(config.DATA_DIR),
        'LOG_DIR': config.LOG_DIR,
        'LOG_LEVEL': config.LOG_LEVEL,
        'REQUIRED_REFERENCE_IMAGES': config.REQUIRED_REFERENCE_IMAGES,
        'VERIFY_THRESHOLD': config.VERIFY_THRESHOLD,
        'PREVIEW_THRESHOLD': config.PREVIEW_THRESHOLD,
        'PREVIEW_MEDIUM_THRESHOLD': config.PREVIEW_MEDIUM_THRESHOLD,
        'REFERENCE_CACHE_SIZE': config.REFERENCE_CACHE_SIZE,
        'PREVIEW_INTERVAL_SECONDS': config.PREVIEW_INTERVAL_SECONDS,
        'WINDOW_CHECK_INTERVAL_SECONDS': config.WINDOW_CHECK_INTERVAL_SECONDS,
        'DASHBOARD_REFRESH_SECONDS': config.DASHBOARD_REFRESH_SECONDS,
        'SESSION_IDLE_TIMEOUT': config.SESSION_IDLE_TIMEOUT,
        'BACKGROUND_POLLING': True,
        'PRELOAD_MODELS': False,
    }


def _init_recognition(app, backend=None, loader=None):
    """Khởi tạo backend nhận diện và bộ so khớp khuôn mặt"""
    if backend is None:
        backend = FaceEmbeddingBackend(
            detection_model=config.FACE_DETECTION_MODEL,
            num_jitters=config.FACE_NUM_JITTERS,
            logger=app.logger,
        )
    if loader is None:
        loader = ImageLoader(timeout=config.REFERENCE_FETCH_TIMEOUT)

    store = ReferenceEmbeddingStore(max_entries=app.config['REFERENCE_CACHE_SIZE'])
    matcher = FaceMatcher(backend, loader, store, logger=app.logger)

    if app.config['PRELOAD_MODELS']:
        try:
            backend.ensure_loaded()
        except Exception as e:
            # Lỗi được ghi nhớ; các yêu cầu sau trả về model_unavailable
            app.logger.warning(f"[STARTUP] ⚠️ Could not preload face models: {e}")

    app_globals.embedding_backend = backend
    app_globals.face_matcher = matcher
    app.logger.info(f"[STARTUP] ✅ Face matcher initialized ({backend.name})")
    return matcher


def create_app(test_config=None, backend=None, loader=None):
    """Factory function để tạo Flask application"""
    app = Flask(__name__)
    app.config.update(_default_settings())
    if test_config:
        app.config.update(test_config)

    # Thiết lập logging
    setup_logging(app, log_level=app.config['LOG_LEVEL'], log_dir=app.config['LOG_DIR'])

    app.logger.info(f"[STARTUP] Working directory: {os.getcwd()}")
    app.logger.info(f"[STARTUP] Database path: {os.path.abspath(app.config['DATABASE_PATH'])}")

    # =============================================================================
    # INITIALIZE SERVICES
    # =============================================================================

    # 1. Database (hồ sơ, buổi học, điểm danh)
    database = DatabaseManager(app.config['DATABASE_PATH'])
    app_globals.database = database

    # 2. Face matcher
    matcher = _init_recognition(app, backend=backend, loader=loader)

    # 3. Image storage
    image_store = ImageStore(Path(app.config['DATA_DIR']) / 'storage')
    app_globals.image_store = image_store

    # 4. EventBroadcaster
    broadcaster = EventBroadcaster(logger=app.logger)
    app_globals.event_broadcaster = broadcaster

    # 5. AttendanceTracker
    app_globals.attendance_tracker = AttendanceTracker(
        identity_store=database,
        ledger=database,
        events=database,
        matcher=matcher,
        verify_threshold=app.config['VERIFY_THRESHOLD'],
        preview_threshold=app.config['PREVIEW_THRESHOLD'],
        preview_medium_threshold=app.config['PREVIEW_MEDIUM_THRESHOLD'],
        required_references=app.config['REQUIRED_REFERENCE_IMAGES'],
        image_store=image_store,
        broadcaster=broadcaster,
        logger=app.logger,
    )
    app.logger.info("[STARTUP] ✅ AttendanceTracker initialized")

    # 6. EnrollmentManager
    app_globals.enrollment_manager = EnrollmentManager(
        database=database,
        matcher=matcher,
        image_store=image_store,
        required_references=app.config['REQUIRED_REFERENCE_IMAGES'],
        logger=app.logger,
    )
    app.logger.info("[STARTUP] ✅ EnrollmentManager initialized")

    # 7. Verification sessions
    if app_globals.session_registry is not None:
        app_globals.session_registry.close_all()
    app_globals.session_registry = SessionRegistry(
        idle_timeout=app.config['SESSION_IDLE_TIMEOUT'],
        logger=app.logger,
    )
    app_globals.poller_factory = (
        interval_poller_factory(app.logger) if app.config['BACKGROUND_POLLING'] else None
    )
    app.logger.info("[STARTUP] ✅ All services initialized successfully")

    @app.before_request
    def _log_request():
        if request.endpoint and request.endpoint != 'static':
            log_request_info(request)

    # Đăng ký blueprints
    from app.routes import register_blueprints
    register_blueprints(app)

    return app
