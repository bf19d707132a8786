"""
Event Broadcaster - Quản lý Server-Sent Events (SSE)
Pushes attendance and lecture updates to connected dashboards
"""
import json
import queue
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional


class EventBroadcaster:
    """Service quản lý SSE events cho thông báo real-time"""

    def __init__(self, logger=None, max_queue_size: int = 50):
        self.clients: List[queue.Queue] = []
        self.clients_lock = threading.Lock()
        self.logger = logger
        self.max_queue_size = max_queue_size

    def add_client(self) -> queue.Queue:
        """Thêm client mới và trả về queue của client đó"""
        client_queue = queue.Queue(maxsize=self.max_queue_size)
        with self.clients_lock:
            self.clients.append(client_queue)
            total = len(self.clients)

        if self.logger:
            self.logger.info(f"[SSE] ✅ New client connected. Total: {total}")
        return client_queue

    def remove_client(self, client_queue: queue.Queue):
        """Xóa client khi disconnect"""
        with self.clients_lock:
            if client_queue not in self.clients:
                return
            self.clients.remove(client_queue)
            remaining = len(self.clients)

        if self.logger:
            self.logger.info(f"[SSE] Client disconnected. Remaining: {remaining}")

    def broadcast_event(self, event_data: Dict[str, Any]):
        """
        Broadcast event đến tất cả clients

        Args:
            event_data: Dictionary chứa event data
                - type: Loại event (vd: 'connected', 'attendance_marked')
                - data: Dữ liệu của event
                - timestamp: Thời gian (tự động thêm nếu không có)
        """
        if 'timestamp' not in event_data:
            event_data['timestamp'] = datetime.now().isoformat()

        message = self._format_sse_message(event_data)

        disconnected_clients = []
        with self.clients_lock:
            for client_queue in self.clients:
                try:
                    client_queue.put_nowait(message)
                except queue.Full:
                    # Client không đọc kịp
                    disconnected_clients.append(client_queue)
            client_count = len(self.clients)

        for client_queue in disconnected_clients:
            if self.logger:
                self.logger.warning("[SSE] Client queue full, removing client")
            self.remove_client(client_queue)

        if self.logger and client_count:
            self.logger.debug(f"[SSE] Broadcast {event_data.get('type', 'unknown')} to {client_count} clients")

    def _format_sse_message(self, event_data: Dict[str, Any]) -> str:
        """Format data thành SSE message: event: type\\ndata: json\\n\\n"""
        event_type = event_data.get('type', 'message')
        message_lines = [
            f"event: {event_type}",
            f"data: {json.dumps(event_data, default=str)}",
            "",
            "",
        ]
        return "\n".join(message_lines)

    def broadcast_attendance_marked(self, record: Optional[Dict[str, Any]]):
        """Thông báo có bản ghi điểm danh mới (dashboard giảng viên tự làm mới)"""
        if not record:
            return
        self.broadcast_event({
            'type': 'attendance_marked',
            'data': {
                'student_id': record.get('student_id'),
                'lecture_id': record.get('lecture_id'),
                'marked_at': record.get('marked_at'),
                'confidence': record.get('confidence_score'),
                'method': record.get('method'),
            },
        })

    def get_client_count(self) -> int:
        """Lấy số lượng clients đang kết nối"""
        with self.clients_lock:
            return len(self.clients)
