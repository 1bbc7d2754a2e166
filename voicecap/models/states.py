"""Recording and transcription state enums."""

from enum import Enum


class RecordingState(Enum):
    """State of the audio recording state machine."""
    READY = "ready"
    INITIALIZING = "initializing"
    RECORDING = "recording"
    STOPPING = "stopping"


class TranscriptionState(Enum):
    """State of the downstream transcription step."""
    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    ERROR = "error"
