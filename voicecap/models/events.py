"""Event models published over pub/sub."""

import time
from dataclasses import dataclass, field
from typing import Optional

from .states import RecordingState


@dataclass
class RecordingStateEvent:
    """Published on every recording state transition."""
    state: RecordingState
    previous_state: RecordingState
    reason: Optional[str] = None  # Set only for forced transitions
    timestamp: float = field(default_factory=time.time)

    @property
    def is_recording(self) -> bool:
        return self.state == RecordingState.RECORDING


@dataclass
class AudioChunkEvent:
    """A chunk of captured WAV bytes, in pipe delivery order."""
    data: bytes
    device_id: Optional[int] = None
    timestamp: float = field(default_factory=time.time)
