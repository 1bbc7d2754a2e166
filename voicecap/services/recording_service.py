"""Recording state machine that arbitrates start/stop against the capture session."""

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from pubsub import pub

from ..audio.devices import DeviceEnumerator, find_device
from ..audio.locator import ToolLocator
from ..audio.session import RecordingSession
from ..audio.stream import PassThroughStream
from ..config import VoiceCapConfig
from ..exceptions import SpawnError, ToolNotFoundError, UnexpectedExitError
from ..models.audio import AudioDevice, RecordingStats
from ..models.events import AudioChunkEvent, RecordingStateEvent
from ..models.states import RecordingState, TranscriptionState
from ..ui.notifier import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

RECORDING_CONTEXT_KEY = "voicecap.isRecording"

ALLOWED_TRANSITIONS = {
    RecordingState.READY: {RecordingState.INITIALIZING},
    RecordingState.INITIALIZING: {RecordingState.RECORDING, RecordingState.READY},
    RecordingState.RECORDING: {RecordingState.STOPPING},
    RecordingState.STOPPING: {RecordingState.READY},
}

StateCallback = Callable[[RecordingStateEvent], None]


def _state_message_spec(event: RecordingStateEvent) -> None:
    """Message data carried on the recording state topic."""


class RecordingService:
    """Single owner of the recording state.

    Commands (``start``/``stop``) and the session's unexpected-exit
    notification are both handled here under one lock; nothing else writes
    the state. Every transition is published as a ``RecordingStateEvent`` on
    the service's pub/sub topic.
    """

    def __init__(
        self,
        session: RecordingSession,
        enumerator: DeviceEnumerator,
        notifier: Optional[Notifier] = None,
        topic: str = "recording.state",
        context_setter: Optional[Callable[[str, bool], None]] = None,
        selected_device_id: Optional[int] = None,
    ):
        """Initialize recording service.

        Args:
            session: Capture session this service drives
            enumerator: Used for device selection and disconnect checks
            notifier: User-visible notices
            topic: Pub/sub topic for state change events
            context_setter: Receives the UI context flag when recording starts/stops
            selected_device_id: Initially selected device, if any
        """
        self.session = session
        self.session.on_unexpected_stop = self._handle_unexpected_stop
        self.enumerator = enumerator
        self.notifier = notifier or LoggingNotifier()
        self.topic = topic
        self.context: Dict[str, bool] = {RECORDING_CONTEXT_KEY: False}
        self._context_setter = context_setter

        self._lock = threading.RLock()
        self._state = RecordingState.READY
        self._transcription_state = TranscriptionState.IDLE
        self.selected_device_id = selected_device_id
        self.selected_device_name: Optional[str] = None
        self._listeners: List[Tuple[StateCallback, Callable]] = []
        pub.getDefaultTopicMgr().getOrCreateTopic(self.topic, _state_message_spec)

        logger.info("RecordingService ready")

    @classmethod
    def from_config(
        cls,
        config: VoiceCapConfig,
        notifier: Optional[Notifier] = None,
        chunk_callback: Optional[Callable[[AudioChunkEvent], None]] = None,
        topic: str = "recording.state",
    ) -> "RecordingService":
        """Build the locator, enumerator and session from configuration."""
        notifier = notifier or LoggingNotifier()
        locator = ToolLocator(override=config.get_ffmpeg_override(), notifier=notifier)
        enumerator = DeviceEnumerator(
            locator, timeout=float(config.get('devices.enumeration_timeout', 10))
        )
        session = RecordingSession(
            locator,
            stop_timeout=float(config.get('recording.stop_timeout', 2.0)),
            chunk_callback=chunk_callback,
        )
        return cls(
            session,
            enumerator,
            notifier=notifier,
            topic=topic,
            selected_device_id=config.get('devices.selected_device_id'),
        )

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == RecordingState.RECORDING

    @property
    def selected_device(self) -> Optional[AudioDevice]:
        """The selected input, or None for the system default."""
        if self.selected_device_id is None:
            return None
        name = self.selected_device_name or f"Device {self.selected_device_id}"
        return AudioDevice(id=self.selected_device_id, name=name, label=name)

    @property
    def transcription_state(self) -> TranscriptionState:
        return self._transcription_state

    def set_transcription_state(self, state: TranscriptionState) -> None:
        with self._lock:
            self._transcription_state = state
            logger.info(f"Transcription state updated to: {state.value}")

    def list_devices(self) -> List[AudioDevice]:
        """List audio input devices (never empty)."""
        return self.enumerator.list_devices()

    def start(self, device_id: Optional[int] = None) -> Optional[PassThroughStream]:
        """Start recording.

        Args:
            device_id: Device to record from; defaults to the selected device

        Returns:
            Live audio stream, or None if recording did not start
        """
        with self._lock:
            if self._state != RecordingState.READY:
                self.notifier.info("Recording is already active.")
                return None

            if device_id is None:
                device_id = self.selected_device_id
            device_name = (
                self.selected_device_name if device_id == self.selected_device_id else None
            )
            logger.info(f"Attempting to start recording with device ID: "
                        f"{device_id if device_id is not None else 'Default'}")

            self._transition(RecordingState.INITIALIZING)
            stream = self.session.start(device_id, device_name)

            if stream is None:
                error = self.session.last_error
                self._transition(RecordingState.READY)
                if isinstance(error, SpawnError):
                    self.notifier.error(f"Failed to start recording: {error}")
                elif isinstance(error, ToolNotFoundError):
                    # The locator has already shown install guidance
                    logger.error("Cannot start recording, ffmpeg not available.")
                else:
                    self.notifier.warning(
                        "Previous recording is still shutting down. Please try again."
                    )
                return None

            self._transition(RecordingState.RECORDING)
            self._set_context(True)

        self.notifier.info("Recording started...")
        return stream

    def stop(self) -> None:
        """Stop recording. No-op unless currently recording."""
        with self._lock:
            if self._state != RecordingState.RECORDING:
                logger.debug(f"Stop ignored in state: {self._state.value}")
                return

            self._transition(RecordingState.STOPPING)
            self.session.stop()
            self._set_context(False)
            self._transition(RecordingState.READY)

    def get_duration(self) -> int:
        """Milliseconds recorded so far, 0 when not recording."""
        return self.session.get_duration()

    def get_stats(self) -> RecordingStats:
        return self.session.get_stats()

    def select_device(self, device_id: Optional[int]) -> bool:
        """Select the input device used by later ``start`` calls.

        None or a negative id selects the system default.
        """
        if self.is_recording:
            self.notifier.warning("Cannot change microphone while recording is active.")
            return False

        if device_id is None or device_id < 0:
            return self._select_system_default()

        device = find_device(self.list_devices(), device_id)
        if device is None or device.is_error:
            self.notifier.error(
                f"Selected microphone (ID: {device_id}) not found. Please select a different device."
            )
            return False
        if device.is_fallback_default:
            # Not a real device, let the backend pick its default input
            return self._select_system_default()

        with self._lock:
            self.selected_device_id = device.id
            self.selected_device_name = device.name
        logger.info(f"Device selected: {device.name} (ID: {device.id})")
        self.notifier.info(f"Input device set to: {device.name}")
        return True

    def _select_system_default(self) -> bool:
        with self._lock:
            self.selected_device_id = None
            self.selected_device_name = None
        logger.info("Device selected: system default")
        self.notifier.info("Input device set to: Default System Microphone")
        return True

    def check_device_availability(self) -> bool:
        """Clear the selected device if it is no longer listed.

        Returns:
            False if the selection was cleared, True otherwise
        """
        selected_id = self.selected_device_id
        if selected_id is None:
            return True

        devices = self.list_devices()
        if any(device.is_error for device in devices):
            logger.warning("Could not verify selected microphone, device listing failed")
            return True

        if find_device(devices, selected_id) is not None:
            return True

        with self._lock:
            if self.selected_device_id == selected_id:
                self.selected_device_id = None
                self.selected_device_name = None
        logger.warning(f"Selected device {selected_id} disappeared")
        self.notifier.warning("Microphone disconnected. Please select a new device.")
        return False

    def on_state_changed(self, callback: StateCallback) -> None:
        """Register ``callback(event)`` for every state transition."""
        def listener(event: RecordingStateEvent) -> None:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in recording state change listener: {e}")

        # pubsub holds listeners weakly, keep the wrapper alive here
        self._listeners.append((callback, listener))
        pub.subscribe(listener, self.topic)

    def remove_state_listener(self, callback: StateCallback) -> None:
        for registered, listener in list(self._listeners):
            if registered == callback:
                pub.unsubscribe(listener, self.topic)
                self._listeners.remove((registered, listener))

    def shutdown(self) -> None:
        """Stop any recording and drop all listeners."""
        self.stop()
        for callback, _ in list(self._listeners):
            self.remove_state_listener(callback)
        logger.info("RecordingService shut down")

    def _handle_unexpected_stop(self, error: UnexpectedExitError) -> None:
        """Session callback: ffmpeg died without ``stop``. Runs on the reader thread."""
        with self._lock:
            if self.session.is_active or self._state == RecordingState.READY:
                logger.debug(f"Ignoring stale capture exit: {error}")
                return

            self._set_context(False)
            self._transcription_state = TranscriptionState.IDLE
            self._transition(RecordingState.READY, reason=str(error), force=True)

        self.notifier.warning(str(error))
        self.check_device_availability()

    def _transition(self, new_state: RecordingState, reason: Optional[str] = None,
                    force: bool = False) -> None:
        previous = self._state
        if not force and new_state not in ALLOWED_TRANSITIONS[previous]:
            raise ValueError(f"Invalid recording transition {previous.value} -> {new_state.value}")

        self._state = new_state
        logger.info(f"Recording state updated to: {new_state.value}")
        pub.sendMessage(
            self.topic,
            event=RecordingStateEvent(state=new_state, previous_state=previous, reason=reason),
        )

    def _set_context(self, is_recording: bool) -> None:
        self.context[RECORDING_CONTEXT_KEY] = is_recording
        if self._context_setter is not None:
            self._context_setter(RECORDING_CONTEXT_KEY, is_recording)
