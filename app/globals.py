"""
Global state module
Service instances dùng chung giữa các blueprints (khởi tạo trong app/__init__.py)
"""

# Singleton instances (sẽ được khởi tạo trong create_app)
database = None
embedding_backend = None
face_matcher = None
image_store = None
attendance_tracker = None
enrollment_manager = None
session_registry = None
event_broadcaster = None

# Factory tạo poller cho phiên xác minh; None = không chạy nền (client tự gọi preview)
poller_factory = None
