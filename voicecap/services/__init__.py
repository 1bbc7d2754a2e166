"""Services layer for voicecap recording logic."""

from .recording_service import RecordingService
from .session_manager import SessionManager

__all__ = [
    "RecordingService",
    "SessionManager",
]
