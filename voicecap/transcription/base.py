"""Abstract base class for the transcription stage that consumes recordings."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class AbstractTranscriber(ABC):
    """Turns a finished WAV recording into text.

    Provider clients (HTTP or SDK wrappers) live outside this package and
    implement this interface.
    """

    def __init__(self, language: Optional[str] = None):
        """Initialize transcriber with an optional language hint."""
        self.language = language
    
    @abstractmethod
    def transcribe_file(self, audio_file: Path) -> Optional[str]:
        """Transcribe a WAV file.
        
        Args:
            audio_file: Path to a validated 16-bit PCM WAV recording
            
        Returns:
            Transcribed text, or None if nothing was recognised
        """
        pass
    
    def is_available(self) -> bool:
        """Whether the provider is configured and ready."""
        return True
