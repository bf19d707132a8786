"""
API routes for Server-Sent Events (SSE)
Các API endpoint cho real-time events
"""
import json
import queue

from flask import Blueprint, Response, stream_with_context

from app import globals as app_globals

events_api_bp = Blueprint('events_api', __name__, url_prefix='/api/events')

HEARTBEAT_SECONDS = 30


@events_api_bp.route('/stream')
def api_events_stream():
    """Server-Sent Events stream cho thông báo real-time"""
    broadcaster = app_globals.event_broadcaster
    client_queue = broadcaster.add_client()

    def event_stream():
        try:
            # Gửi event kết nối thành công
            yield f"data: {json.dumps({'type': 'connected'})}\n\n"

            while True:
                try:
                    yield client_queue.get(timeout=HEARTBEAT_SECONDS)
                except queue.Empty:
                    # Heartbeat để giữ kết nối
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
        finally:
            broadcaster.remove_client(client_queue)

    return Response(
        stream_with_context(event_stream()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
