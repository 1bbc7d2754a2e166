"""Subprocess-backed audio capture session."""

import logging
import subprocess
import time
from collections import deque
from threading import Event, Lock, Thread, current_thread
from typing import Callable, Deque, Optional

from ..exceptions import CaptureError, SpawnError, ToolNotFoundError, UnexpectedExitError
from ..models.audio import RecordingStats
from ..models.events import AudioChunkEvent
from . import platforms
from .locator import ToolLocator
from .stream import PassThroughStream

logger = logging.getLogger(__name__)

# stderr phrases that point at the device rather than at ffmpeg itself
DEVICE_ERROR_HINTS = [
    ("Permission denied",
     "Microphone access denied or device busy. Please check permissions and try again."),
    ("Device or resource busy",
     "Microphone access denied or device busy. Please check permissions and try again."),
    ("No such file or directory",
     "Selected microphone device not found. Please select a different device."),
    ("does not exist",
     "Selected microphone device not found. Please select a different device."),
]

STDERR_TAIL_LINES = 20


class RecordingSession:
    """Owns one live ffmpeg capture process and its output stream.

    The process and the stream always share one lifetime: both are created
    by ``start`` and both are released by ``stop`` or by the process dying
    on its own.
    """

    def __init__(
        self,
        locator: ToolLocator,
        platform: Optional[str] = None,
        stop_timeout: float = 2.0,
        on_unexpected_stop: Optional[Callable[[UnexpectedExitError], None]] = None,
        chunk_callback: Optional[Callable[[AudioChunkEvent], None]] = None,
        read_size: int = 4096,
    ):
        """Initialize capture session.

        Args:
            locator: Source of the ffmpeg path
            platform: ``sys.platform`` style name (defaults to the locator's)
            stop_timeout: Seconds to wait after SIGTERM before killing ffmpeg
            on_unexpected_stop: Called from the reader thread when ffmpeg
                exits or the stream fails outside of ``stop``
            chunk_callback: Receives every captured chunk (non-blocking use only)
            read_size: Maximum bytes per pipe read
        """
        self.locator = locator
        self.platform = platforms.normalize_platform(platform or locator.platform)
        self.stop_timeout = stop_timeout
        self.on_unexpected_stop = on_unexpected_stop
        self.chunk_callback = chunk_callback
        self.read_size = read_size

        self._lock = Lock()
        self._process: Optional[subprocess.Popen] = None
        self._stream: Optional[PassThroughStream] = None
        self._reader: Optional[Thread] = None
        self._exit_observed: Optional[Event] = None
        self._start_time: Optional[float] = None
        self.device_id: Optional[int] = None
        self.last_error: Optional[CaptureError] = None

    @property
    def is_active(self) -> bool:
        return self._process is not None

    @property
    def stream(self) -> Optional[PassThroughStream]:
        return self._stream

    def start(self, device_id: Optional[int] = None,
              device_name: Optional[str] = None) -> Optional[PassThroughStream]:
        """Spawn ffmpeg and return the live audio stream.

        Returns None, leaving any existing session untouched, when a session
        is already active, the previous process has not been reaped yet,
        ffmpeg is missing or the spawn fails. ``last_error`` tells the
        last two apart.
        """
        with self._lock:
            self.last_error = None
            if self._process is not None:
                logger.warning("Recording already in progress")
                return None
            if self._exit_observed is not None and not self._exit_observed.is_set():
                logger.warning("Previous capture process has not exited yet")
                return None

            ffmpeg = self.locator.resolve()
            if ffmpeg is None:
                self.last_error = ToolNotFoundError("ffmpeg not available")
                logger.error("Cannot start recording, ffmpeg not available")
                return None

            cmd = [str(ffmpeg)] + platforms.capture_args(self.platform, device_id, device_name)
            logger.info(f"Starting ffmpeg: {' '.join(cmd)}")

            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    bufsize=0,
                )
            except (OSError, ValueError, subprocess.SubprocessError) as e:
                self.last_error = SpawnError(f"Failed to start ffmpeg: {e}")
                logger.error(f"Error starting recording: {e}")
                return None

            stream = PassThroughStream()
            exit_observed = Event()
            stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

            stderr_thread = Thread(
                target=self._read_diagnostics,
                args=(process, stderr_tail),
                daemon=True,
                name="CaptureDiagnosticsThread",
            )
            reader = Thread(
                target=self._read_output,
                args=(process, stream, exit_observed, stderr_thread, stderr_tail, device_id),
                daemon=True,
                name="CaptureReaderThread",
            )

            self._process = process
            self._stream = stream
            self._reader = reader
            self._exit_observed = exit_observed
            self._start_time = time.monotonic()
            self.device_id = device_id

            stderr_thread.start()
            reader.start()

        logger.info(f"Recording started on device {device_id if device_id is not None else 'default'}")
        return stream

    def stop(self) -> None:
        """Terminate ffmpeg and end the stream. No-op when nothing is running."""
        with self._lock:
            process = self._process
            if process is None:
                logger.debug("No recording in progress")
                return
            stream = self._stream
            reader = self._reader
            duration = self._duration_ms()

            self._process = None
            self._stream = None
            self._reader = None
            self._start_time = None

        logger.info(f"Stopping recording. Duration: {duration}ms")
        self._terminate(process)

        # Let the reader flush what is left in the pipe before ending the stream
        if reader is not None and reader is not current_thread():
            reader.join(timeout=self.stop_timeout)
            if reader.is_alive():
                logger.warning("Capture reader did not stop cleanly")
        stream.end()
        logger.info("Recording stopped.")

    def get_duration(self) -> int:
        """Milliseconds since start, or 0 when inactive."""
        with self._lock:
            return self._duration_ms()

    def get_stats(self) -> RecordingStats:
        with self._lock:
            stream = self._stream
            return RecordingStats(
                is_recording=self._process is not None,
                duration_ms=self._duration_ms(),
                device_id=self.device_id if self._process is not None else None,
                bytes_captured=stream.bytes_fed if stream is not None else 0,
            )

    def _duration_ms(self) -> int:
        if self._process is None or self._start_time is None:
            return 0
        return int((time.monotonic() - self._start_time) * 1000)

    def _terminate(self, process: subprocess.Popen) -> None:
        """SIGTERM, then SIGKILL if ffmpeg ignores it. ffmpeg has no stop handshake."""
        if process.poll() is not None:
            return
        try:
            process.terminate()
            process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg did not exit after SIGTERM, killing it")
            process.kill()
            try:
                process.wait(timeout=self.stop_timeout)
            except subprocess.TimeoutExpired:
                logger.error("ffmpeg did not exit after SIGKILL")
        except OSError as e:
            logger.error(f"Error terminating ffmpeg: {e}")

    def _read_output(self, process: subprocess.Popen, stream: PassThroughStream,
                     exit_observed: Event, stderr_thread: Thread,
                     stderr_tail: Deque[str], device_id: Optional[int]) -> None:
        """Reader thread: copy stdout into the stream, then reap the process."""
        read_error: Optional[BaseException] = None
        try:
            while True:
                chunk = process.stdout.read(self.read_size)
                if not chunk:
                    break
                stream.feed(chunk)
                self._publish_chunk(chunk, device_id)
        except (OSError, ValueError) as e:
            read_error = e
            logger.debug(f"Error reading ffmpeg output: {e}")
            self._terminate(process)

        returncode = process.wait()
        stderr_thread.join(timeout=1.0)
        exit_observed.set()
        self._on_process_exit(process, stream, returncode, read_error, list(stderr_tail))

    def _read_diagnostics(self, process: subprocess.Popen, stderr_tail: Deque[str]) -> None:
        """Diagnostics thread: ffmpeg's stderr only goes to the log."""
        try:
            for raw_line in iter(process.stderr.readline, b""):
                line = raw_line.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue
                stderr_tail.append(line)
                logger.debug(f"ffmpeg: {line}")
                if any(phrase in line for phrase, _ in DEVICE_ERROR_HINTS):
                    logger.error(f"Device access error: {line}")
        except (OSError, ValueError) as e:
            logger.debug(f"Stopped reading ffmpeg diagnostics: {e}")

    def _publish_chunk(self, chunk: bytes, device_id: Optional[int]) -> None:
        if self.chunk_callback is None:
            return
        try:
            self.chunk_callback(AudioChunkEvent(data=chunk, device_id=device_id))
        except Exception as e:
            logger.error(f"Error in audio chunk callback: {e}")

    def _on_process_exit(self, process: subprocess.Popen, stream: PassThroughStream,
                         returncode: int, read_error: Optional[BaseException],
                         stderr_tail: list) -> None:
        with self._lock:
            unexpected = process is self._process
            if unexpected:
                self._process = None
                self._stream = None
                self._reader = None
                self._start_time = None

        logger.info(f"ffmpeg exited with code {returncode}")
        if not unexpected:
            stream.end()
            return

        message = self._describe_failure(returncode, read_error, stderr_tail)
        error = UnexpectedExitError(message, returncode=returncode, stderr_tail=stderr_tail)
        if read_error is not None:
            stream.fail(read_error)
        else:
            stream.end()

        logger.warning(f"Capture process ended without stop: {message}")
        for line in stderr_tail:
            logger.warning(f"ffmpeg: {line}")

        if self.on_unexpected_stop is not None:
            self.on_unexpected_stop(error)

    @staticmethod
    def _describe_failure(returncode: int, read_error: Optional[BaseException],
                          stderr_tail: list) -> str:
        for line in reversed(stderr_tail):
            for phrase, hint in DEVICE_ERROR_HINTS:
                if phrase in line:
                    return hint
        if read_error is not None:
            return f"Audio stream error: {read_error}"
        if returncode == 1:
            return ("Recording failed: FFmpeg error. "
                    "Check microphone permissions and device availability.")
        return f"Recording stopped unexpectedly (ffmpeg exit code {returncode})."
