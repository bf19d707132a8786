"""
Data utilities
Helper functions cho request parsing
"""
import base64
import binascii

from flask import request

from app.config import ALLOWED_EXTENSIONS
from core.inference.engine import ImageLoadError
from core.inference.images import decode_image_bytes

from .file_utils import validate_image_bytes


def get_request_data():
    """Lấy request data từ JSON hoặc form."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def read_request_image(data=None, field='image'):
    """
    Đọc ảnh từ request: file upload (multipart) hoặc chuỗi base64 / data URL.
    Returns: mảng RGB. Raises ValueError nếu ảnh thiếu hoặc không hợp lệ.
    """
    upload = request.files.get(field)
    if upload is not None and upload.filename:
        ext = upload.filename.rsplit('.', 1)[-1].lower() if '.' in upload.filename else ''
        if ext not in ALLOWED_EXTENSIONS:
            raise ValueError(f"Định dạng file không hợp lệ. Chỉ cho phép: {', '.join(sorted(ALLOWED_EXTENSIONS))}")
        raw = upload.read()
    else:
        data = data if data is not None else get_request_data()
        payload = data.get(field)
        if not payload:
            raise ValueError('Thiếu dữ liệu ảnh')
        if not isinstance(payload, str):
            raise ValueError('Ảnh không hợp lệ: Dữ liệu ảnh phải là chuỗi base64')
        if ',' in payload:
            payload = payload.split(',', 1)[1]
        try:
            raw = base64.b64decode(payload)
        except (binascii.Error, ValueError) as exc:
            raise ValueError('Ảnh không hợp lệ: Không thể giải mã dữ liệu base64') from exc

    ok, error_msg = validate_image_bytes(raw)
    if not ok:
        raise ValueError(error_msg)
    try:
        return decode_image_bytes(raw)
    except ImageLoadError as exc:
        raise ValueError(f"Ảnh không hợp lệ: {exc}") from exc
