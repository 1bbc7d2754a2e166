"""Audio device discovery through ffmpeg's device-listing mode.

ffmpeg prints the device inventory as free text on stderr, in a different
shape for every capture backend. All knowledge of those shapes lives in
``parse_device_list``.
"""

import logging
import re
import subprocess
from typing import List, Optional

from ..exceptions import EnumerationError
from ..models.audio import AudioDevice, default_device, error_device
from . import platforms
from .locator import ToolLocator

logger = logging.getLogger(__name__)

# "[AVFoundation indev @ 0x7f8] [0] MacBook Pro Microphone" or plain "[0] Mic"
INDEXED_DEVICE_PATTERN = re.compile(r"\[(\d+)\]\s+(.+)")
QUOTED_NAME_PATTERN = re.compile(r'"([^"]+)"')
# "[alsa @ 0x55d0c8]" style log prefix
LOG_PREFIX_PATTERN = re.compile(r"^\s*\[[^\]]*@\s*0x[0-9a-fA-F]+\]\s*")

AVFOUNDATION_AUDIO_HEADER = "AVFoundation audio devices"
AVFOUNDATION_VIDEO_HEADER = "AVFoundation video devices"
DSHOW_AUDIO_HEADER = "DirectShow audio devices"
DSHOW_VIDEO_HEADER = "DirectShow video devices"
# ffmpeg diagnostics that mention audio but are not device entries
ALSA_NOISE_PHRASES = ("cannot open", "error")


def _parse_avfoundation(lines: List[str]) -> List[AudioDevice]:
    devices: List[AudioDevice] = []
    in_audio_section = False

    for line in lines:
        if AVFOUNDATION_AUDIO_HEADER in line:
            in_audio_section = True
            continue
        if not in_audio_section:
            continue
        if AVFOUNDATION_VIDEO_HEADER in line:
            break

        match = INDEXED_DEVICE_PATTERN.search(line)
        if match:
            name = match.group(2).strip()
            devices.append(AudioDevice(id=int(match.group(1)), name=name, label=name))

    return devices


def _parse_dshow(lines: List[str]) -> List[AudioDevice]:
    devices: List[AudioDevice] = []
    has_sections = any(DSHOW_AUDIO_HEADER in line for line in lines)
    in_audio_section = False

    for line in lines:
        if has_sections:
            if DSHOW_AUDIO_HEADER in line:
                in_audio_section = True
                continue
            if not in_audio_section:
                continue
            if DSHOW_VIDEO_HEADER in line:
                break
        elif "(audio)" not in line:
            # Newer ffmpeg: no section headers, entries tagged with (audio)
            continue

        if "Alternative name" in line:
            continue

        match = QUOTED_NAME_PATTERN.search(line)
        if match:
            name = match.group(1).strip()
            devices.append(AudioDevice(id=len(devices), name=name, label=name))

    return devices


def _parse_alsa(lines: List[str]) -> List[AudioDevice]:
    devices: List[AudioDevice] = []

    for line in lines:
        if "audio" not in line or "devices" in line:
            continue
        if any(phrase in line.lower() for phrase in ALSA_NOISE_PHRASES):
            continue
        name = LOG_PREFIX_PATTERN.sub("", line).strip()
        if name:
            devices.append(AudioDevice(id=len(devices), name=name, label=name))

    return devices


def parse_device_list(platform: str, raw_text: str) -> List[AudioDevice]:
    """Parse ffmpeg's device-listing diagnostics for one platform.

    Args:
        platform: ``sys.platform`` style name
        raw_text: Everything ffmpeg wrote to stderr

    Returns:
        Parsed devices, possibly empty
    """
    lines = raw_text.splitlines()
    platform = platforms.normalize_platform(platform)

    if platform == platforms.MACOS:
        return _parse_avfoundation(lines)
    if platform == platforms.WINDOWS:
        return _parse_dshow(lines)
    return _parse_alsa(lines)


def find_device(devices: List[AudioDevice], device_id: Optional[int]) -> Optional[AudioDevice]:
    """Return the entry with ``device_id`` from one enumeration response."""
    if device_id is None:
        return None
    for device in devices:
        if device.id == device_id:
            return device
    return None


class DeviceEnumerator:
    """Lists audio input devices by running ffmpeg in listing mode."""

    def __init__(self, locator: ToolLocator, platform: Optional[str] = None,
                 timeout: float = 10.0):
        """Initialize enumerator.

        Args:
            locator: Source of the ffmpeg path
            platform: ``sys.platform`` style name (defaults to the locator's)
            timeout: Upper bound in seconds on one listing run
        """
        self.locator = locator
        self.platform = platforms.normalize_platform(platform or locator.platform)
        self.timeout = timeout

    def list_devices(self) -> List[AudioDevice]:
        """List available audio input devices.

        Never raises and never returns an empty list: a synthetic default
        device stands in when nothing was parsed, and an entry with id -1
        reports a failure to run ffmpeg at all.
        """
        ffmpeg = self.locator.resolve()
        if ffmpeg is None:
            logger.error("Cannot list audio devices, ffmpeg not available")
            return [error_device("FFmpeg not installed")]

        cmd = [str(ffmpeg)] + platforms.enumeration_args(self.platform)
        logger.info("Listing audio devices...")
        logger.debug(f"Running: {cmd}")

        try:
            output = self._run_listing(cmd)
        except EnumerationError as e:
            logger.error(f"Error listing audio devices: {e}")
            return [error_device(f"Failed to list devices: {e}")]

        devices = parse_device_list(self.platform, output)
        if not devices:
            logger.warning("No audio devices found or failed to parse ffmpeg output")
            return [default_device()]

        logger.info(f"Found {len(devices)} audio devices")
        return devices

    def _run_listing(self, cmd: List[str]) -> str:
        """Run one listing process and return its stderr text.

        Some backends never exit in listing mode, so the process is killed
        once the read is done or the timeout passes.
        """
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            raise EnumerationError(f"Failed to run ffmpeg: {e}") from e

        try:
            try:
                _, stderr = process.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"ffmpeg device listing did not exit within {self.timeout}s, closing it"
                )
                process.kill()
                _, stderr = process.communicate()
        except (OSError, subprocess.SubprocessError) as e:
            raise EnumerationError(f"Failed to read ffmpeg output: {e}") from e
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()

        return (stderr or b"").decode("utf-8", errors="replace")
