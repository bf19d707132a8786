"""
Configuration constants và settings
Tunables for face matching, attendance sessions and storage
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Flask app configuration
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB

# Storage
DATA_DIR = Path(os.getenv('DATA_DIR', 'data'))
DATABASE_PATH = os.getenv('DATABASE_PATH', 'atocrane.db')

# Logging
LOG_DIR = os.getenv('LOG_DIR', 'logs')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Enrollment
REQUIRED_REFERENCE_IMAGES = max(1, int(os.getenv('REQUIRED_REFERENCE_IMAGES', '10')))

# Face matching thresholds
# Verify-and-record and the live preview gate are tuned separately.
VERIFY_THRESHOLD = float(os.getenv('VERIFY_THRESHOLD', '0.69'))
PREVIEW_THRESHOLD = float(os.getenv('PREVIEW_THRESHOLD', '0.80'))
PREVIEW_MEDIUM_THRESHOLD = float(os.getenv('PREVIEW_MEDIUM_THRESHOLD', '0.60'))

# Reference embedding cache (least recently used handles are evicted)
REFERENCE_CACHE_SIZE = max(1, int(os.getenv('REFERENCE_CACHE_SIZE', '4096')))

# Embedding backend (face_recognition / dlib)
FACE_DETECTION_MODEL = os.getenv('FACE_DETECTION_MODEL', 'hog')
FACE_NUM_JITTERS = max(1, int(os.getenv('FACE_NUM_JITTERS', '1')))
REFERENCE_FETCH_TIMEOUT = float(os.getenv('REFERENCE_FETCH_TIMEOUT', '10'))

# Polling cadences (seconds)
PREVIEW_INTERVAL_SECONDS = float(os.getenv('PREVIEW_INTERVAL_SECONDS', '0.5'))
WINDOW_CHECK_INTERVAL_SECONDS = min(1.0, float(os.getenv('WINDOW_CHECK_INTERVAL_SECONDS', '1.0')))
DASHBOARD_REFRESH_SECONDS = int(os.getenv('DASHBOARD_REFRESH_SECONDS', '30'))

# Verification sessions
SESSION_IDLE_TIMEOUT = int(os.getenv('SESSION_IDLE_TIMEOUT', '600'))  # 10 phút

# Camera configuration (server-attached camera, kiosk mode)
CAMERA_INDEX = int(os.getenv('CAMERA_INDEX', '0'))
CAMERA_WIDTH = int(os.getenv('CAMERA_WIDTH', '640'))
CAMERA_HEIGHT = int(os.getenv('CAMERA_HEIGHT', '480'))
CAMERA_WARMUP_FRAMES = int(os.getenv('CAMERA_WARMUP_FRAMES', '3'))
CAMERA_BUFFER_SIZE = int(os.getenv('CAMERA_BUFFER_SIZE', '2'))

# Upload configuration
ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}
SUPPORTED_IMAGE_FORMATS = {'JPEG', 'PNG', 'WEBP'}
MIN_FILE_SIZE = int(os.getenv('MIN_FILE_SIZE', '1024'))  # 1 KB
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
