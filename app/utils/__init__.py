"""
Utils package
"""
from .file_utils import (
    safe_delete_file,
    validate_image_bytes,
    encode_jpeg,
    ImageStore,
)
from .data_utils import (
    get_request_data,
    read_request_image,
)

__all__ = [
    'safe_delete_file',
    'validate_image_bytes',
    'encode_jpeg',
    'ImageStore',
    'get_request_data',
    'read_request_image',
]
