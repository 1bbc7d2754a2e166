"""Data models for voicecap."""

from .audio import (
    AudioDevice,
    ArtifactInfo,
    RecordingStats,
    default_device,
    error_device,
)
from .events import AudioChunkEvent, RecordingStateEvent
from .states import RecordingState, TranscriptionState

__all__ = [
    "AudioDevice",
    "ArtifactInfo",
    "RecordingStats",
    "default_device",
    "error_device",
    "AudioChunkEvent",
    "RecordingStateEvent",
    "RecordingState",
    "TranscriptionState",
]
