"""Error taxonomy for the capture subsystem.

Every subprocess or filesystem failure is converted into one of these kinds at
the component boundary, so the UI layer never sees a raw platform exception.
"""

from typing import List, Optional


class CaptureError(Exception):
    """Base class for all capture errors."""


class ToolNotFoundError(CaptureError):
    """Raised when the ffmpeg binary cannot be located or validated."""


class EnumerationError(CaptureError):
    """Raised when listing audio devices fails to spawn or parse."""


class SpawnError(CaptureError):
    """Raised when the capture process could not be started."""


class UnexpectedExitError(CaptureError):
    """Raised when the capture process dies outside of an explicit stop."""

    def __init__(self, message: str, returncode: Optional[int] = None,
                 stderr_tail: Optional[List[str]] = None):
        super().__init__(message)
        self.returncode = returncode
        self.stderr_tail = stderr_tail or []


class EmptyOrCorruptArtifactError(CaptureError):
    """Raised when a finished recording is too small or not a WAV file."""

    def __init__(self, message: str, path=None, size_bytes: int = 0):
        super().__init__(message)
        self.path = path
        self.size_bytes = size_bytes
