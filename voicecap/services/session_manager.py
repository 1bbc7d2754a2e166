"""Session manager tying recording, on-disk artifacts and transcription together."""

import logging
from pathlib import Path
from threading import Thread
from typing import Any, Callable, Dict, List, Optional

from ..audio.stream import PassThroughStream
from ..config import VoiceCapConfig
from ..exceptions import EmptyOrCorruptArtifactError
from ..models.audio import ArtifactInfo
from ..models.events import AudioChunkEvent, RecordingStateEvent
from ..models.states import RecordingState, TranscriptionState
from ..storage.audio_sink import AudioSink
from ..transcription.base import AbstractTranscriber
from ..ui.notifier import LoggingNotifier, Notifier
from .recording_service import RecordingService

logger = logging.getLogger(__name__)


class SessionManager:
    """Handles start/stop commands for one recording at a time.

    Each recording is drained to disk on its own thread while it runs. On
    stop the finished file is validated and, when a transcriber is
    configured, handed off for transcription.
    """

    def __init__(
        self,
        service: RecordingService,
        sink: AudioSink,
        transcriber: Optional[AbstractTranscriber] = None,
        notifier: Optional[Notifier] = None,
        max_age_days: Optional[int] = None,
    ):
        """Initialize session manager.

        Args:
            service: Recording state owner
            sink: Where finished recordings are written
            transcriber: Optional transcription collaborator
            notifier: User-visible notices (defaults to the service's)
            max_age_days: Recordings older than this are removed on shutdown,
                          None keeps everything
        """
        self.service = service
        self.sink = sink
        self.transcriber = transcriber
        self.notifier = notifier or service.notifier
        self.max_age_days = max_age_days
        self.history: List[str] = []
        self.last_artifact: Optional[ArtifactInfo] = None

        self._drain: Optional[Thread] = None
        self._outcome: Dict[str, Any] = {}
        self._interrupted = False
        self.service.on_state_changed(self._on_state_changed)

        logger.info(f"SessionManager initialized with recordings dir: {sink.recordings_dir}")

    @classmethod
    def from_config(
        cls,
        config: VoiceCapConfig,
        notifier: Optional[Notifier] = None,
        transcriber: Optional[AbstractTranscriber] = None,
        chunk_callback: Optional[Callable[[AudioChunkEvent], None]] = None,
    ) -> "SessionManager":
        notifier = notifier or LoggingNotifier()
        service = RecordingService.from_config(config, notifier=notifier, chunk_callback=chunk_callback)
        sink = AudioSink(str(config.get_data_directory()))
        return cls(
            service,
            sink,
            transcriber=transcriber,
            notifier=notifier,
            max_age_days=config.get('storage.max_age_days'),
        )

    @property
    def is_recording(self) -> bool:
        return self.service.is_recording

    @property
    def last_transcription(self) -> Optional[str]:
        return self.history[0] if self.history else None

    def start_recording(self, device_id: Optional[int] = None) -> bool:
        """Start recording and stream the audio to a new file.

        Returns:
            True if recording started
        """
        if self._drain is not None and not self.service.is_recording:
            # Collect a recording that ended on its own before starting over
            self.stop_recording()

        # Reset first, a capture that dies at spawn reports from the reader thread
        self._interrupted = False
        self._outcome = {}
        self.last_artifact = None

        stream = self.service.start(device_id)
        if stream is None:
            return False

        self._drain = Thread(
            target=self._drain_audio,
            args=(stream, self._outcome),
            daemon=True,
            name="AudioDrainThread",
        )
        self._drain.start()
        return True

    def stop_recording(self) -> Optional[Path]:
        """Stop recording, finalise the file and transcribe it.

        Returns:
            Path to the saved recording, or None if nothing usable was saved
        """
        drain = self._drain
        if drain is None:
            logger.debug("No recording to stop")
            return None

        self.service.stop()
        drain.join()
        self._drain = None
        outcome = self._outcome

        error = outcome.get("error")
        if error is not None:
            logger.error(f"Recording could not be saved: {error}")
            if not self._interrupted:
                # An interrupted capture was already reported with its cause
                self.notifier.error(f"Recording could not be saved: {error}")
            return None

        path = outcome["path"]
        try:
            self.last_artifact = self.sink.describe(path)
            logger.info(f"Recording saved: {path} "
                        f"({self.last_artifact.duration_seconds:.1f}s, "
                        f"{self.last_artifact.size_bytes} bytes)")
        except EmptyOrCorruptArtifactError as e:
            logger.error(f"Recording could not be read back: {e}")
            if not self._interrupted:
                self.notifier.error(f"Recording could not be saved: {e}")
            return None

        if self._interrupted:
            logger.warning(f"Recording was interrupted, partial audio kept at {path} "
                           f"and not transcribed")
            return path

        self._transcribe(path)
        return path

    def retry_transcription(self, path: Optional[Path] = None) -> Optional[str]:
        """Transcribe a saved recording again.

        Args:
            path: Recording to transcribe, defaults to the last saved one

        Returns:
            The transcription, or None if nothing was transcribed
        """
        if path is None and self.last_artifact is not None:
            path = self.last_artifact.path
        if path is None or not Path(path).exists():
            logger.error(f"Cannot retry transcription, audio file missing: {path}")
            self.notifier.error("Audio file no longer exists")
            return None

        if self.transcriber is None:
            self.notifier.error("No transcription provider configured")
            return None

        logger.info(f"Retrying transcription for: {path}")
        return self._transcribe(Path(path))

    def clear_history(self) -> None:
        self.history.clear()
        logger.info("Transcription history cleared")

    def shutdown(self) -> None:
        if self._drain is not None:
            self.stop_recording()
        self.service.remove_state_listener(self._on_state_changed)
        self.service.shutdown()
        if self.max_age_days is not None:
            self.sink.cleanup_old_recordings(self.max_age_days)

    def _drain_audio(self, stream: PassThroughStream, outcome: Dict[str, Any]) -> None:
        """Drain thread: write the stream to disk until it ends."""
        try:
            outcome["path"] = self.sink.consume(stream)
        except EmptyOrCorruptArtifactError as e:
            outcome["error"] = e

    def _transcribe(self, path: Path) -> Optional[str]:
        if self.transcriber is None:
            logger.info("No transcriber configured, skipping transcription")
            return None

        self.service.set_transcription_state(TranscriptionState.TRANSCRIBING)
        try:
            text = self.transcriber.transcribe_file(path)
        except Exception as e:
            logger.error(f"Transcription failed for {path}: {e}")
            self.service.set_transcription_state(TranscriptionState.ERROR)
            self.notifier.error(f"Transcription failed: {e}")
            return None

        if not text:
            self.service.set_transcription_state(TranscriptionState.ERROR)
            self.notifier.warning("No speech detected in recording.")
            return None

        self.history.insert(0, text)
        self.service.set_transcription_state(TranscriptionState.COMPLETED)
        logger.info(f"Transcription completed: {len(text)} characters")
        self.notifier.info("Transcription complete.")
        return text

    def _on_state_changed(self, event: RecordingStateEvent) -> None:
        if event.state == RecordingState.READY and event.reason is not None:
            self._interrupted = True
            logger.warning(f"Recording interrupted: {event.reason}")
