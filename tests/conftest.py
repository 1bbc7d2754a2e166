"""Pytest configuration and fixtures for voicecap tests."""

import os
import subprocess
import tempfile
import threading
import logging
from pathlib import Path
from unittest.mock import Mock

import numpy as np
import pytest
from pubsub import pub

from voicecap.audio import platforms
from voicecap.audio.locator import ToolLocator
from voicecap.ui.notifier import Notifier


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FakeProcess:
    """Popen stand-in whose stdout/stderr are real OS pipes.

    Tests push bytes with ``write_stdout``/``write_stderr`` and end the
    process with ``exit``. ``terminate``/``kill`` behave like ffmpeg: the
    process exits and its pipes close unless told to ignore them.
    """

    def __init__(self, returncode_on_terminate: int = 255, ignore_terminate: bool = False,
                 ignore_kill: bool = False):
        out_r, self._out_w = os.pipe()
        err_r, self._err_w = os.pipe()
        self.stdout = os.fdopen(out_r, "rb", buffering=0)
        self.stderr = os.fdopen(err_r, "rb", buffering=0)
        self.args = ["ffmpeg"]
        self.returncode = None
        self.terminated = False
        self.killed = False
        self.returncode_on_terminate = returncode_on_terminate
        self.ignore_terminate = ignore_terminate
        self.ignore_kill = ignore_kill
        self._exited = threading.Event()
        self._lock = threading.Lock()
        self._writers_open = True

    def write_stdout(self, data: bytes) -> None:
        os.write(self._out_w, data)

    def write_stderr(self, text: str) -> None:
        os.write(self._err_w, text.encode("utf-8"))

    def exit(self, returncode: int = 0) -> None:
        with self._lock:
            if self._writers_open:
                os.close(self._out_w)
                os.close(self._err_w)
                self._writers_open = False
            if self.returncode is None:
                self.returncode = returncode
        self._exited.set()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self.ignore_terminate:
            self.exit(self.returncode_on_terminate)

    def kill(self) -> None:
        self.killed = True
        if not self.ignore_kill:
            self.exit(-9)

    def close(self) -> None:
        self.exit(self.returncode if self.returncode is not None else 0)
        for stream in (self.stdout, self.stderr):
            try:
                stream.close()
            except OSError:
                pass


class RecordingNotifier(Notifier):
    """Collects notices so tests can assert on them."""

    def __init__(self):
        self.messages = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def of_level(self, level: str):
        return [message for kind, message in self.messages if kind == level]


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture(autouse=True)
def reset_pubsub():
    """Drop listeners left behind by a test."""
    yield
    pub.unsubAll()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fake_process():
    """A fake ffmpeg process; closed after the test."""
    processes = []

    def factory(**kwargs) -> FakeProcess:
        process = FakeProcess(**kwargs)
        processes.append(process)
        return process

    yield factory
    for process in processes:
        process.close()


@pytest.fixture
def mock_locator(notifier):
    """A locator that reports ffmpeg at a fixed path without running it."""
    locator = Mock(spec=ToolLocator)
    locator.platform = platforms.LINUX
    locator.notifier = notifier
    locator.resolve.return_value = Path("/usr/bin/ffmpeg")
    locator.available = True
    return locator


@pytest.fixture
def missing_locator(notifier):
    """A locator that never finds ffmpeg."""
    locator = Mock(spec=ToolLocator)
    locator.platform = platforms.LINUX
    locator.notifier = notifier
    locator.resolve.return_value = None
    locator.available = False
    return locator


@pytest.fixture
def audio_test_data():
    """Generate 16-bit mono PCM test data."""
    def generate_audio(pattern="sine", duration_seconds=0.1, amplitude=0.5):
        samples = int(duration_seconds * platforms.SAMPLE_RATE)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = amplitude * np.sin(2 * np.pi * 440 * t)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        return (wave_data * 32767).astype("<i2").tobytes()

    return generate_audio


def wav_header(data_size: int = 0xFFFFFFFF - 36, with_list_chunk: bool = False) -> bytes:
    """WAV header as ffmpeg writes it to a pipe (placeholder sizes)."""
    fmt = (
        b"fmt "
        + (16).to_bytes(4, "little")
        + (1).to_bytes(2, "little")
        + platforms.CHANNELS.to_bytes(2, "little")
        + platforms.SAMPLE_RATE.to_bytes(4, "little")
        + (platforms.SAMPLE_RATE * platforms.SAMPLE_WIDTH).to_bytes(4, "little")
        + platforms.SAMPLE_WIDTH.to_bytes(2, "little")
        + (16).to_bytes(2, "little")
    )
    extra = b""
    if with_list_chunk:
        info = b"INFOISFT" + (14).to_bytes(4, "little") + b"Lavf60.16.100\x00"
        extra = b"LIST" + len(info).to_bytes(4, "little") + info
    riff_size = min(4 + len(fmt) + len(extra) + 8 + data_size, 0xFFFFFFFF)
    return (
        b"RIFF" + riff_size.to_bytes(4, "little") + b"WAVE"
        + fmt + extra + b"data" + min(data_size, 0xFFFFFFFF).to_bytes(4, "little")
    )


@pytest.fixture
def wav_bytes(audio_test_data):
    """A complete streamed-style WAV file as bytes."""
    def build(pattern="sine", duration_seconds=0.1, with_list_chunk=True) -> bytes:
        return wav_header(with_list_chunk=with_list_chunk) + audio_test_data(pattern, duration_seconds)

    return build

