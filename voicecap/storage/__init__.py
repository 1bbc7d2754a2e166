"""Recording storage."""

from .audio_sink import AudioSink, recording_filename, WAV_HEADER_SIZE

__all__ = ["AudioSink", "recording_filename", "WAV_HEADER_SIZE"]
