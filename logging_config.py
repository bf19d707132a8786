"""
Cấu hình logging cho hệ thống điểm danh Atocrane
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path


def setup_logging(app, log_level='INFO', log_dir='logs', max_log_size=10*1024*1024, backup_count=5):
    """
    Thiết lập logging cho ứng dụng Flask

    Args:
        app: Flask app instance
        log_level: Mức độ log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Thư mục chứa file log
        max_log_size: Kích thước tối đa của file log (bytes)
        backup_count: Số lượng file log backup
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, str(log_level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler với rotation
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'attendance_system.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    # Handler cho file lỗi
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'errors.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Xóa handlers cũ nếu có
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(error_handler)

    for name in ('face_recognition', 'database', 'api'):
        logging.getLogger(name).setLevel(log_level)

    app.logger.setLevel(log_level)

    app.logger.info("=" * 50)
    app.logger.info("ATOCRANE ATTENDANCE STARTUP")
    app.logger.info(f"Timestamp: {datetime.now().isoformat()}")
    app.logger.info(f"Log Level: {logging.getLevelName(log_level)}")
    app.logger.info(f"Log Directory: {log_dir.absolute()}")
    app.logger.info("=" * 50)


class FaceRecognitionLogger:
    """Logger chuyên dụng cho face recognition"""

    def __init__(self):
        self.logger = logging.getLogger('face_recognition')

    def log_match(self, identity_id, confidence, threshold, verified):
        """Log kết quả so khớp"""
        status = "VERIFIED" if verified else "REJECTED"
        self.logger.info(
            f"Face match {status} - Identity: {identity_id}, "
            f"Confidence: {confidence:.3f}, Threshold: {threshold:.2f}"
        )

    def log_attendance_marked(self, identity_id, lecture_id, confidence=None):
        """Log điểm danh"""
        confidence_info = f", Confidence: {confidence:.3f}" if confidence is not None else ""
        self.logger.info(f"Attendance marked - Identity: {identity_id}, Lecture: {lecture_id}{confidence_info}")

    def log_rejected(self, identity_id, lecture_id, reason):
        """Log lần điểm danh bị từ chối"""
        self.logger.info(f"Attendance rejected - Identity: {identity_id}, Lecture: {lecture_id}, Reason: {reason}")

    def log_recognition_error(self, error_message):
        """Log lỗi nhận diện"""
        self.logger.error(f"Recognition error - {error_message}")


class APILogger:
    """Logger chuyên dụng cho API calls"""

    def __init__(self):
        self.logger = logging.getLogger('api')

    def log_request(self, method, endpoint, user_id=None, ip_address=None):
        """Log yêu cầu API"""
        user_info = f", User: {user_id}" if user_id else ""
        ip_info = f", IP: {ip_address}" if ip_address else ""
        self.logger.info(f"API Request - {method} {endpoint}{user_info}{ip_info}")

    def log_error(self, endpoint, error_message, status_code=500):
        """Log lỗi API"""
        self.logger.error(f"API Error - {endpoint}, Status: {status_code}, Error: {error_message}")


# Các instance logger toàn cục
face_recognition_logger = FaceRecognitionLogger()
api_logger = APILogger()


def get_client_ip(request):
    """Lấy IP address của client"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    else:
        return request.remote_addr


def log_request_info(request, user_id=None):
    """Log thông tin request"""
    ip_address = get_client_ip(request)
    api_logger.log_request(
        request.method,
        request.endpoint,
        user_id=user_id,
        ip_address=ip_address
    )
    return ip_address
