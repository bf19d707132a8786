"""
Enrollment Manager - Quản lý ảnh khuôn mặt tham chiếu
Registers, removes and replaces the reference images of an identity
"""
from typing import Any, Dict, List, Optional

import numpy as np

from core.attendance.collaborators import EnrollmentLimitError
from core.inference.engine import NoFaceDetectedError
from core.inference.matcher import FaceMatcher


class EnrollmentManager:
    """Service quản lý đăng ký khuôn mặt (ảnh tham chiếu)"""

    def __init__(
        self,
        *,
        database,
        matcher: FaceMatcher,
        image_store=None,
        required_references: int = 10,
        logger=None,
    ):
        self.database = database
        self.matcher = matcher
        self.image_store = image_store
        self.required_references = required_references
        self.logger = logger

    def _log(self, level, message, *args, **kwargs):
        if self.logger:
            getattr(self.logger, level)(message, *args, **kwargs)

    def get_status(self, identity_id: str) -> Dict[str, Any]:
        """Tiến độ đăng ký khuôn mặt"""
        images = self.database.get_reference_images(identity_id)
        return {
            'identity_id': identity_id,
            'images': images,
            'count': len(images),
            'required': self.required_references,
            'complete': len(images) >= self.required_references,
        }

    def _require_face(self, rgb: np.ndarray) -> np.ndarray:
        embedding = self.matcher.backend.compute_embedding(rgb)
        if embedding is None:
            raise NoFaceDetectedError('Không phát hiện khuôn mặt trong ảnh')
        return embedding

    def add_reference_image(self, identity_id: str, rgb: np.ndarray) -> Dict[str, Any]:
        """
        Thêm một ảnh tham chiếu đã chụp.

        Raises:
            EnrollmentLimitError: đã đủ số ảnh cần thiết
            NoFaceDetectedError: ảnh không có khuôn mặt
            ModelUnavailableError: không tải được mô hình
        """
        current = self.database.get_reference_images(identity_id)
        if len(current) >= self.required_references:
            raise EnrollmentLimitError(
                f"{identity_id} already has {len(current)}/{self.required_references} reference images"
            )
        embedding = self._require_face(rgb)

        if self.image_store is None:
            raise RuntimeError('Image storage is not configured')
        path = self.image_store.save_reference(identity_id, rgb, len(current) + 1)
        try:
            images = self.database.append_reference_image(identity_id, path, limit=self.required_references)
        except Exception:
            # Another upload filled the last slot first.
            self.image_store.delete(path)
            raise

        self.matcher.store.put(path, embedding)
        self._log(
            'info',
            "[Enrollment] ✅ Added reference image %d/%d for %s",
            len(images),
            self.required_references,
            identity_id,
        )
        return self.get_status(identity_id)

    def add_reference_url(self, identity_id: str, image_url: str) -> Dict[str, Any]:
        """Đăng ký ảnh tham chiếu đã được lưu ở nơi khác (URL)"""
        embedding = self.matcher.reference_embedding(image_url)
        if embedding is None:
            self.matcher.store.invalidate([image_url])
            raise NoFaceDetectedError('Không phát hiện khuôn mặt trong ảnh')
        self.database.append_reference_image(identity_id, image_url, limit=self.required_references)
        self._log('info', "[Enrollment] Added reference URL for %s", identity_id)
        return self.get_status(identity_id)

    def remove_reference_image(self, identity_id: str, image_url: str) -> Optional[Dict[str, Any]]:
        """Xóa một ảnh tham chiếu; None nếu ảnh không thuộc hồ sơ này"""
        remaining = self.database.remove_reference_image(identity_id, image_url)
        if remaining is None:
            return None
        self.matcher.store.invalidate([image_url])
        if self.image_store is not None:
            self.image_store.delete(image_url)
        self._log('info', "[Enrollment] Removed reference image for %s (%d left)", identity_id, len(remaining))
        return self.get_status(identity_id)

    def replace_reference_images(self, identity_id: str, images: List[np.ndarray]) -> Dict[str, Any]:
        """Đăng ký lại toàn bộ ảnh tham chiếu"""
        if len(images) != self.required_references:
            raise ValueError(
                f"Cần đúng {self.required_references} ảnh, nhận được {len(images)}"
            )
        if self.image_store is None:
            raise RuntimeError('Image storage is not configured')

        embeddings = []
        for index, rgb in enumerate(images, start=1):
            embedding = self.matcher.backend.compute_embedding(rgb)
            if embedding is None:
                raise NoFaceDetectedError(f'Không phát hiện khuôn mặt trong ảnh {index}')
            embeddings.append(embedding)

        previous = self.database.get_reference_images(identity_id)
        paths = [
            self.image_store.save_reference(identity_id, rgb, index)
            for index, rgb in enumerate(images, start=1)
        ]
        self.database.set_reference_images(identity_id, paths)

        self.matcher.store.invalidate(previous)
        for path, embedding in zip(paths, embeddings):
            self.matcher.store.put(path, embedding)
        for old in previous:
            self.image_store.delete(old)

        self._log('info', "[Enrollment] 🔄 Replaced reference images for %s", identity_id)
        return self.get_status(identity_id)
