"""
State Manager - Quản lý các phiên xác minh đang hoạt động
Registry of live verification sessions, keyed by session id
"""
import threading
from typing import Dict, List, Optional

from core.vision.session import VerificationSession


class SessionRegistry:
    """Giữ các phiên điểm danh; mỗi (sinh viên, buổi học) chỉ có một phiên"""

    def __init__(self, idle_timeout: float = 600, logger=None):
        self.idle_timeout = idle_timeout
        self.logger = logger
        self._sessions: Dict[str, VerificationSession] = {}
        self._lock = threading.Lock()

    def add(self, session: VerificationSession) -> VerificationSession:
        """Đăng ký phiên mới, đóng phiên cũ của cùng sinh viên và buổi học"""
        with self._lock:
            replaced = [
                existing for existing in self._sessions.values()
                if existing.identity_id == session.identity_id
                and str(existing.event_id) == str(session.event_id)
            ]
            for existing in replaced:
                del self._sessions[existing.session_id]
            self._sessions[session.session_id] = session

        for existing in replaced:
            existing.close()
            if self.logger:
                self.logger.info(f"[Sessions] Replaced session {existing.session_id}")
        return session

    def get(self, session_id: str) -> Optional[VerificationSession]:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    def remove(self, session_id: str) -> bool:
        """Đóng và xóa phiên; False nếu không tồn tại"""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def expire_idle(self) -> List[str]:
        """Đóng các phiên không hoạt động quá idle_timeout"""
        with self._lock:
            stale = [
                session for session in self._sessions.values()
                if session.idle_seconds() >= self.idle_timeout
            ]
            for session in stale:
                del self._sessions[session.session_id]

        for session in stale:
            session.close()
        if stale and self.logger:
            self.logger.info(f"[Sessions] Expired {len(stale)} idle session(s)")
        return [session.session_id for session in stale]

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)
