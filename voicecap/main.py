"""Main application entry point for voicecap."""

import sys
import time
import argparse
import logging
from pathlib import Path
from typing import Optional

from pubsub import pub
from rich.console import Console
from rich.table import Table

from .audio.audio_pub import AudioPublisher
from .config import VoiceCapConfig
from .models.events import AudioChunkEvent
from .services.session_manager import SessionManager
from .ui.notifier import ConsoleNotifier

logger = logging.getLogger(__name__)

AUDIO_TOPIC = "audio.chunk"


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = VoiceCapConfig(config_path)
        # Set up logging (override config with command line if specified)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.console = Console()
        self.should_exit = False
        self.bytes_captured = 0

    def init(self):
        logger.info("Initializing services...")
        self.notifier = ConsoleNotifier()
        self.audio_publisher = AudioPublisher(AUDIO_TOPIC)
        self.session_manager = SessionManager.from_config(
            self.config,
            notifier=self.notifier,
            chunk_callback=self.audio_publisher.publish_audio_chunk,
        )
        pub.subscribe(self.on_audio_chunk, AUDIO_TOPIC)

    def on_audio_chunk(self, event: AudioChunkEvent) -> None:
        self.bytes_captured += len(event.data)

    def list_devices(self) -> None:
        devices = self.session_manager.service.list_devices()
        table = Table(title="Audio input devices")
        table.add_column("ID", justify="right")
        table.add_column("Name")
        for device in devices:
            style = "red" if device.is_error else None
            table.add_row(str(device.id), device.label or device.name, style=style)
        self.console.print(table)

    def run(self, device_id: Optional[int], duration: Optional[int]) -> Optional[Path]:
        service = self.session_manager.service
        if device_id is not None and not service.select_device(device_id):
            return None

        if not self.session_manager.start_recording():
            return None

        self.console.print("🎙️  Recording... press Ctrl-C to stop")
        try:
            deadline = time.monotonic() + duration if duration else None
            while service.is_recording and not self.should_exit:
                if deadline is not None and time.monotonic() >= deadline:
                    break
                time.sleep(0.2)
        except KeyboardInterrupt:
            logger.info("Recording interrupted by user")

        return self.session_manager.stop_recording()

    def report(self, path: Optional[Path]) -> None:
        artifact = self.session_manager.last_artifact
        if path is None or artifact is None:
            return
        self.console.print(f"💾 Saved {artifact.path}")
        self.console.print(
            f"   {artifact.duration_seconds:.1f}s, {artifact.size_bytes} bytes, "
            f"peak level {artifact.peak_level:.2f}, {self.bytes_captured} bytes streamed"
        )

    def cleanup(self):
        pub.unsubscribe(self.on_audio_chunk, AUDIO_TOPIC)
        self.session_manager.shutdown()


def setup_logging(config: VoiceCapConfig, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/voicecap.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("voicecap starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for voicecap."""
    parser = argparse.ArgumentParser(
        description="voicecap - Record microphone audio through ffmpeg"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in settings)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, INFO)"
    )

    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List audio input devices and exit"
    )

    parser.add_argument(
        "--device",
        type=int,
        help="Input device ID to record from (default: system default)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        help="Stop recording after this many seconds (default: until Ctrl-C)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="voicecap v0.1.0"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level)
        server.init()
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

    try:
        if args.list_devices:
            server.list_devices()
            return
        path = server.run(args.device, args.duration)
        server.report(path)
        if path is None:
            sys.exit(1)
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except Exception as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)
    finally:
        server.cleanup()


if __name__ == "__main__":
    main()
