"""
Models Package - Business logic models
Centralized business logic separated from Flask routes
"""

from .state_manager import SessionRegistry
from .attendance_tracker import AttendanceTracker
from .enrollment_manager import EnrollmentManager
from .event_broadcaster import EventBroadcaster

__all__ = [
    'SessionRegistry',
    'AttendanceTracker',
    'EnrollmentManager',
    'EventBroadcaster',
]
