"""Audio capture module: ffmpeg discovery, device listing and capture sessions."""

from .locator import ToolLocator
from .devices import DeviceEnumerator, parse_device_list, find_device
from .session import RecordingSession
from .stream import PassThroughStream
from .audio_pub import AudioPublisher

__all__ = [
    'ToolLocator',
    'DeviceEnumerator',
    'parse_device_list',
    'find_device',
    'RecordingSession',
    'PassThroughStream',
    'AudioPublisher',
]
