"""Transcription collaborator interface for voicecap."""

from .base import AbstractTranscriber

__all__ = [
    "AbstractTranscriber",
]
