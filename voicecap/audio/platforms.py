"""ffmpeg command-line dialects for the three supported capture backends.

macOS captures through avfoundation, Windows through dshow and everything
else through alsa. The device selector syntax differs per backend; the output
arguments are the same everywhere.
"""

import os
import sys
from pathlib import Path
from typing import List, Optional

MACOS = "darwin"
WINDOWS = "win32"
LINUX = "linux"

# Fixed capture target: 16-bit little-endian PCM, 44.1kHz mono WAV on stdout
SAMPLE_RATE = 44100
CHANNELS = 1
SAMPLE_WIDTH = 2
OUTPUT_ARGS = [
    "-acodec", "pcm_s16le",
    "-ar", str(SAMPLE_RATE),
    "-ac", str(CHANNELS),
    "-f", "wav",
    "pipe:1",
]

INSTALL_HINTS = {
    MACOS: "Install with: brew install ffmpeg",
    WINDOWS: "Download from: https://ffmpeg.org/download.html or install with: choco install ffmpeg",
    LINUX: "Install with: sudo apt install ffmpeg (Ubuntu/Debian) or sudo yum install ffmpeg (CentOS/RHEL)",
}


def normalize_platform(platform: Optional[str] = None) -> str:
    """Map a ``sys.platform`` value onto one of MACOS, WINDOWS or LINUX."""
    platform = platform or sys.platform
    if platform.startswith("darwin"):
        return MACOS
    if platform.startswith("win") or platform == "cygwin":
        return WINDOWS
    return LINUX


def tool_executable(platform: Optional[str] = None) -> str:
    return "ffmpeg.exe" if normalize_platform(platform) == WINDOWS else "ffmpeg"


def candidate_locations(platform: Optional[str] = None) -> List[Path]:
    """Well-known ffmpeg install locations, in search order."""
    platform = normalize_platform(platform)
    if platform == MACOS:
        return [
            Path("/opt/homebrew/bin/ffmpeg"),
            Path("/usr/local/bin/ffmpeg"),
            Path("/opt/local/bin/ffmpeg"),
        ]
    if platform == WINDOWS:
        return [
            Path("C:\\Program Files\\ffmpeg\\bin\\ffmpeg.exe"),
            Path("C:\\Program Files (x86)\\ffmpeg\\bin\\ffmpeg.exe"),
            Path(os.path.expanduser("~")) / "ffmpeg" / "bin" / "ffmpeg.exe",
        ]
    return [
        Path("/usr/bin/ffmpeg"),
        Path("/usr/local/bin/ffmpeg"),
        Path("/opt/bin/ffmpeg"),
    ]


def install_hint(platform: Optional[str] = None) -> str:
    return INSTALL_HINTS[normalize_platform(platform)]


def enumeration_args(platform: Optional[str] = None) -> List[str]:
    """Arguments that make the backend dump its device inventory to stderr.

    The empty/dummy input makes ffmpeg fail to open anything, so it prints
    the device list instead of capturing.
    """
    platform = normalize_platform(platform)
    if platform == MACOS:
        return ["-hide_banner", "-f", "avfoundation", "-list_devices", "true", "-i", ""]
    if platform == WINDOWS:
        return ["-hide_banner", "-f", "dshow", "-list_devices", "true", "-i", "dummy"]
    return ["-hide_banner", "-f", "alsa", "-list_devices", "true", "-i", "dummy"]


def input_args(platform: Optional[str] = None,
               device_id: Optional[int] = None,
               device_name: Optional[str] = None) -> List[str]:
    """Backend-specific input selector.

    ``device_id`` of None or a negative number selects the backend default.
    """
    platform = normalize_platform(platform)
    use_default = device_id is None or device_id < 0

    if platform == MACOS:
        # avfoundation: ":<audio index>", no video
        return ["-f", "avfoundation", "-i", f":{0 if use_default else device_id}"]
    if platform == WINDOWS:
        # dshow selects by name; the index is a last resort
        if device_name:
            return ["-f", "dshow", "-i", f"audio={device_name}"]
        return ["-f", "dshow", "-i", "audio=" if use_default else f"audio={device_id}"]
    return ["-f", "alsa", "-i", "default" if use_default else f"hw:{device_id}"]


def capture_args(platform: Optional[str] = None,
                 device_id: Optional[int] = None,
                 device_name: Optional[str] = None) -> List[str]:
    """Full argument list (without the binary) for one capture process."""
    return (
        ["-nostdin", "-hide_banner", "-nostats"]
        + input_args(platform, device_id, device_name)
        + OUTPUT_ARGS
    )
