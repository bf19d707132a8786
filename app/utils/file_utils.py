"""
File utilities
Lưu ảnh tham chiếu / ảnh điểm danh và xác thực dữ liệu ảnh tải lên
"""
import io
import logging
import os
from datetime import datetime
from pathlib import Path

import cv2
from PIL import Image
from werkzeug.utils import secure_filename

from app.config import MAX_FILE_SIZE, MIN_FILE_SIZE, SUPPORTED_IMAGE_FORMATS

logger = logging.getLogger(__name__)


def safe_delete_file(path):
    """Cố gắng xóa một file mà không báo lỗi nếu thất bại."""
    if not path:
        return
    try:
        os.remove(path)
    except OSError:
        logger.debug("Could not remove file %s", path)


def validate_image_bytes(data):
    """
    Xác thực dữ liệu ảnh.
    Returns: (success: bool, error_message: str)
    """
    size = len(data or b'')
    if size < MIN_FILE_SIZE:
        return False, f"File quá nhỏ (tối thiểu {MIN_FILE_SIZE} bytes)"
    if size > MAX_FILE_SIZE:
        return False, f"File quá lớn (tối đa {MAX_FILE_SIZE} bytes)"
    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except Exception as e:
        return False, f"Ảnh không hợp lệ: {str(e)}"
    if image_format not in SUPPORTED_IMAGE_FORMATS:
        return False, f"Định dạng ảnh không được hỗ trợ: {image_format}"
    return True, ""


def encode_jpeg(rgb, quality=90):
    """Mã hóa ảnh RGB thành JPEG bytes."""
    bgr = cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
    ok, buffer = cv2.imencode('.jpg', bgr, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError('Không thể mã hóa ảnh JPEG')
    return buffer.tobytes()


class ImageStore:
    """Local stand-in for the face-images storage bucket.

    Reference images:  <base>/student-profiles/<identity>/image_<n>_<ts>.jpg
    Attendance shots:  <base>/attendance/<lecture>/<identity>_<ts>.jpg
    """

    def __init__(self, base_dir):
        self.base_dir = Path(base_dir)

    def _write(self, relative_dir, filename, rgb):
        target_dir = self.base_dir / relative_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / filename
        path.write_bytes(encode_jpeg(rgb))
        return str(path)

    @staticmethod
    def _timestamp():
        return datetime.now().strftime('%Y%m%d%H%M%S%f')

    def save_reference(self, identity_id, rgb, index):
        folder = Path('student-profiles') / (secure_filename(str(identity_id)) or 'unknown')
        return self._write(folder, f"image_{index}_{self._timestamp()}.jpg", rgb)

    def save_capture(self, lecture_id, identity_id, rgb):
        folder = Path('attendance') / (secure_filename(str(lecture_id)) or 'unknown')
        filename = f"{secure_filename(str(identity_id)) or 'unknown'}_{self._timestamp()}.jpg"
        return self._write(folder, filename, rgb)

    def is_managed(self, path):
        try:
            Path(path).resolve().relative_to(self.base_dir.resolve())
        except (ValueError, OSError, TypeError):
            return False
        return True

    def delete(self, path):
        if self.is_managed(path):
            safe_delete_file(path)
