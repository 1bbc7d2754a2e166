"""Unit tests for SessionManager."""

import os
import threading
import time
from unittest.mock import Mock, patch

import pytest

from voicecap.audio.devices import DeviceEnumerator
from voicecap.audio.session import RecordingSession
from voicecap.config import VoiceCapConfig
from voicecap.models.audio import AudioDevice
from voicecap.models.states import RecordingState, TranscriptionState
from voicecap.services.recording_service import RecordingService
from voicecap.services.session_manager import SessionManager
from voicecap.storage.audio_sink import AudioSink
from voicecap.transcription.base import AbstractTranscriber

POPEN = "voicecap.audio.session.subprocess.Popen"


@pytest.fixture
def transcriber():
    transcriber = Mock(spec=AbstractTranscriber)
    transcriber.transcribe_file.return_value = "hello world"
    return transcriber


@pytest.fixture
def make_manager(mock_locator, notifier, temp_data_dir):
    managers = []

    def factory(transcriber=None, max_age_days=None):
        enumerator = Mock(spec=DeviceEnumerator)
        enumerator.list_devices.return_value = [AudioDevice(0, "Built-in Microphone")]
        session = RecordingSession(mock_locator, stop_timeout=0.5)
        service = RecordingService(session, enumerator, notifier=notifier)
        manager = SessionManager(service, AudioSink(temp_data_dir), transcriber=transcriber,
                                 max_age_days=max_age_days)
        managers.append(manager)
        return manager

    yield factory
    for manager in managers:
        manager.shutdown()


def _record(manager, process, data: bytes):
    with patch(POPEN, return_value=process):
        assert manager.start_recording()
    process.write_stdout(data)
    return manager.stop_recording()


@pytest.mark.unit
class TestSessionManager:

    def test_recording_is_saved_and_transcribed(self, make_manager, fake_process, wav_bytes, transcriber):
        manager = make_manager(transcriber)
        data = wav_bytes()

        path = _record(manager, fake_process(), data)

        assert path is not None
        assert path.read_bytes() == data
        transcriber.transcribe_file.assert_called_once_with(path)
        assert manager.history == ["hello world"]
        assert manager.last_transcription == "hello world"
        assert manager.service.transcription_state == TranscriptionState.COMPLETED
        assert manager.last_artifact.path == path
        assert not manager.is_recording

    def test_history_is_newest_first(self, make_manager, fake_process, wav_bytes, transcriber):
        manager = make_manager(transcriber)
        transcriber.transcribe_file.side_effect = ["first", "second"]

        _record(manager, fake_process(), wav_bytes())
        _record(manager, fake_process(), wav_bytes())

        assert manager.history == ["second", "first"]
        manager.clear_history()
        assert manager.history == []

    def test_without_transcriber(self, make_manager, fake_process, wav_bytes):
        manager = make_manager()

        path = _record(manager, fake_process(), wav_bytes())

        assert path.exists()
        assert manager.service.transcription_state == TranscriptionState.IDLE

    def test_empty_recording_is_not_transcribed(self, make_manager, fake_process, transcriber, notifier):
        manager = make_manager(transcriber)

        path = _record(manager, fake_process(), b"")

        assert path is None
        transcriber.transcribe_file.assert_not_called()
        errors = notifier.of_level("error")
        assert len(errors) == 1
        assert "empty or corrupt" in errors[0]
        assert manager.service.transcription_state == TranscriptionState.IDLE

    def test_no_speech_sets_error_state(self, make_manager, fake_process, wav_bytes, transcriber, notifier):
        manager = make_manager(transcriber)
        transcriber.transcribe_file.return_value = None

        path = _record(manager, fake_process(), wav_bytes())

        assert path is not None
        assert manager.history == []
        assert manager.service.transcription_state == TranscriptionState.ERROR
        assert "No speech detected in recording." in notifier.of_level("warning")

    def test_transcriber_failure_sets_error_state(self, make_manager, fake_process, wav_bytes,
                                                  transcriber, notifier):
        manager = make_manager(transcriber)
        transcriber.transcribe_file.side_effect = RuntimeError("service unavailable")

        path = _record(manager, fake_process(), wav_bytes())

        assert path is not None
        assert manager.service.transcription_state == TranscriptionState.ERROR
        assert notifier.of_level("error") == ["Transcription failed: service unavailable"]

    def test_stop_without_recording(self, make_manager):
        manager = make_manager()

        assert manager.stop_recording() is None

    def test_start_failure(self, make_manager):
        manager = make_manager()

        with patch(POPEN, side_effect=OSError("spawn failed")):
            assert not manager.start_recording()

        assert manager.stop_recording() is None

    def test_start_while_recording(self, make_manager, fake_process, notifier):
        manager = make_manager()

        with patch(POPEN, return_value=fake_process()):
            assert manager.start_recording()
            assert not manager.start_recording()

        assert "Recording is already active." in notifier.of_level("info")


@pytest.mark.unit
class TestInterruptedRecording:

    def _crash(self, manager, process, data):
        forced = threading.Event()
        manager.service.on_state_changed(
            lambda event: forced.set() if event.reason is not None else None
        )
        with patch(POPEN, return_value=process):
            assert manager.start_recording()
        process.write_stdout(data)
        process.exit(1)
        assert forced.wait(2.0)
        for thread in threading.enumerate():
            if thread.name == "CaptureReaderThread":
                thread.join(timeout=2.0)

    def test_partial_recording_is_kept_but_not_transcribed(self, make_manager, fake_process,
                                                           wav_bytes, transcriber):
        manager = make_manager(transcriber)
        data = wav_bytes()

        self._crash(manager, fake_process(), data)
        path = manager.stop_recording()

        assert manager.service.state == RecordingState.READY
        assert path is not None
        assert path.read_bytes() == data
        transcriber.transcribe_file.assert_not_called()

    def test_next_recording_collects_interrupted_one(self, make_manager, fake_process,
                                                     wav_bytes, transcriber):
        manager = make_manager(transcriber)
        self._crash(manager, fake_process(), wav_bytes())

        path = _record(manager, fake_process(), wav_bytes())

        assert len(manager.sink.list_recordings()) == 2
        transcriber.transcribe_file.assert_called_once_with(path)

    def test_capture_dead_at_spawn_is_not_transcribed(self, make_manager, fake_process,
                                                      wav_bytes, transcriber):
        manager = make_manager(transcriber)
        process = fake_process()
        process.write_stdout(wav_bytes())
        process.exit(1)
        forced = threading.Event()
        manager.service.on_state_changed(
            lambda event: forced.set() if event.reason is not None else None
        )
        start = manager.service.start

        def slow_start(device_id=None):
            stream = start(device_id)
            # The exit is reported before start_recording resumes
            assert forced.wait(2.0)
            time.sleep(0.3)
            return stream

        with patch(POPEN, return_value=process), \
                patch.object(manager.service, "start", side_effect=slow_start):
            assert manager.start_recording()
        path = manager.stop_recording()

        assert path is not None
        transcriber.transcribe_file.assert_not_called()

    def test_instant_exit_is_reported_once(self, make_manager, fake_process, notifier):
        manager = make_manager()

        self._crash(manager, fake_process(), b"")
        path = manager.stop_recording()

        assert path is None
        assert notifier.of_level("error") == []
        warnings = notifier.of_level("warning")
        assert len(warnings) == 1
        assert "FFmpeg error" in warnings[0]


@pytest.mark.unit
class TestRetryTranscription:

    def test_retry_last_recording(self, make_manager, fake_process, wav_bytes, transcriber):
        manager = make_manager(transcriber)
        transcriber.transcribe_file.side_effect = [None, "second try"]
        path = _record(manager, fake_process(), wav_bytes())
        assert manager.service.transcription_state == TranscriptionState.ERROR

        assert manager.retry_transcription() == "second try"

        assert transcriber.transcribe_file.call_args_list[-1].args == (path,)
        assert manager.history == ["second try"]
        assert manager.service.transcription_state == TranscriptionState.COMPLETED

    def test_retry_given_path(self, make_manager, fake_process, wav_bytes, transcriber):
        manager = make_manager(transcriber)
        path = _record(manager, fake_process(), wav_bytes())

        assert manager.retry_transcription(path) == "hello world"

        assert manager.history == ["hello world", "hello world"]

    def test_missing_file(self, make_manager, fake_process, wav_bytes, transcriber, notifier):
        manager = make_manager(transcriber)
        path = _record(manager, fake_process(), wav_bytes())
        path.unlink()

        assert manager.retry_transcription() is None

        assert transcriber.transcribe_file.call_count == 1
        assert "Audio file no longer exists" in notifier.of_level("error")

    def test_nothing_recorded_yet(self, make_manager, transcriber, notifier):
        manager = make_manager(transcriber)

        assert manager.retry_transcription() is None

        transcriber.transcribe_file.assert_not_called()
        assert notifier.of_level("error") == ["Audio file no longer exists"]

    def test_no_transcriber(self, make_manager, fake_process, wav_bytes, notifier):
        manager = make_manager()
        path = _record(manager, fake_process(), wav_bytes())

        assert manager.retry_transcription(path) is None

        assert notifier.of_level("error") == ["No transcription provider configured"]
        assert manager.service.transcription_state == TranscriptionState.IDLE


@pytest.mark.unit
class TestRecordingCleanup:

    def _old_recording(self, manager, days):
        manager.sink.recordings_dir.mkdir(parents=True, exist_ok=True)
        path = manager.sink.recordings_dir / "recording-2020-01-01T00-00-00-000Z.wav"
        path.write_bytes(b"RIFF")
        stamp = time.time() - days * 24 * 60 * 60
        os.utime(path, (stamp, stamp))
        return path

    def test_shutdown_removes_old_recordings(self, make_manager, fake_process, wav_bytes):
        manager = make_manager(max_age_days=30)
        old = self._old_recording(manager, days=45)
        recent = _record(manager, fake_process(), wav_bytes())

        manager.shutdown()

        assert not old.exists()
        assert recent.exists()

    def test_shutdown_keeps_everything_without_limit(self, make_manager):
        manager = make_manager()
        old = self._old_recording(manager, days=45)

        manager.shutdown()

        assert old.exists()

    def test_limit_from_config(self, temp_data_dir, notifier):
        config = VoiceCapConfig()
        config.set('storage.data_directory', temp_data_dir)
        assert SessionManager.from_config(config, notifier=notifier).max_age_days == 30

        config.set('storage.max_age_days', None)
        assert SessionManager.from_config(config, notifier=notifier).max_age_days is None
