"""voicecap - microphone capture through ffmpeg for speech-to-text."""

__version__ = "0.1.0"
