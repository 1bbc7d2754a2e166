"""Audio-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass
class AudioDevice:
    """An audio input device as reported by one enumeration call.

    Ids are platform-local indexes and are only meaningful within the
    enumeration response that produced them.
    """
    id: int
    name: str
    label: Optional[str] = None

    @property
    def is_error(self) -> bool:
        """True for the synthetic entry returned when enumeration failed."""
        return self.id < 0

    @property
    def is_fallback_default(self) -> bool:
        """True for the placeholder entry listed when no input device was found."""
        return self.id == 0 and self.name == DEFAULT_DEVICE_NAME


DEFAULT_DEVICE_NAME = "Default Device"
ERROR_DEVICE_NAME = "Error"


def default_device() -> AudioDevice:
    """Fallback entry used when enumeration found nothing."""
    return AudioDevice(id=0, name=DEFAULT_DEVICE_NAME, label=DEFAULT_DEVICE_NAME)


def error_device(detail: str) -> AudioDevice:
    """Fallback entry used when enumeration could not run."""
    return AudioDevice(id=-1, name=ERROR_DEVICE_NAME, label=detail)


@dataclass
class RecordingStats:
    """Live recording statistics."""
    is_recording: bool
    duration_ms: int
    device_id: Optional[int]
    bytes_captured: int


@dataclass
class ArtifactInfo:
    """A finalised WAV recording on disk."""
    path: Path
    size_bytes: int
    duration_seconds: float
    peak_level: float
    created_at: datetime = field(default_factory=datetime.now)
