"""Writes captured audio streams to WAV files in the recordings directory."""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional

import numpy as np

from ..audio import platforms
from ..exceptions import EmptyOrCorruptArtifactError
from ..models.audio import ArtifactInfo

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44
COPY_CHUNK_SIZE = 64 * 1024
HEADER_SCAN_SIZE = 4096
PEAK_BLOCK_SAMPLES = 1 << 20


def recording_filename(now: Optional[datetime] = None) -> str:
    """``recording-<ISO 8601 UTC>.wav`` with ':' and '.' replaced by '-'."""
    now = now or datetime.now(timezone.utc)
    timestamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.")
    timestamp += f"{now.microsecond // 1000:03d}Z"
    return "recording-" + timestamp.replace(":", "-").replace(".", "-") + ".wav"


def _data_offset(data: bytes) -> int:
    """Offset of the PCM payload, skipping any chunks ffmpeg puts before 'data'."""
    pos = 12
    while pos + 8 <= len(data):
        chunk_id = data[pos:pos + 4]
        chunk_size = int.from_bytes(data[pos + 4:pos + 8], "little")
        if chunk_id == b"data":
            return pos + 8
        pos += 8 + chunk_size + (chunk_size & 1)
    return min(WAV_HEADER_SIZE, len(data))


class AudioSink:
    """Persists captured audio streams as uniquely named WAV files."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize audio sink.

        Args:
            data_dir: Base data directory; recordings go to ``<data_dir>/recordings``
        """
        self.data_dir = Path(data_dir)
        self.recordings_dir = self.data_dir / "recordings"

        logger.info(f"AudioSink initialized with recordings dir: {self.recordings_dir}")

    def _ensure_directory(self) -> Path:
        """Create the recordings directory on first use."""
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        return self.recordings_dir

    def _unique_path(self) -> Path:
        first = self._ensure_directory() / recording_filename()
        path = first
        counter = 1
        while path.exists():
            path = first.with_name(f"{first.stem}-{counter}.wav")
            counter += 1
        return path

    def consume(self, stream: BinaryIO) -> Path:
        """Copy a stream to disk until it ends and return the validated file.

        Args:
            stream: Readable binary stream (normally a PassThroughStream)

        Returns:
            Path to the finished WAV file

        Raises:
            EmptyOrCorruptArtifactError: If the copy fails or the result is
                not a usable WAV file
        """
        try:
            target = self._unique_path()
        except OSError as e:
            raise EmptyOrCorruptArtifactError(
                f"Failed to create recordings directory: {e}", path=self.recordings_dir
            ) from e

        partial = target.with_name(target.name + ".part")
        logger.info(f"Saving audio to: {target}")

        try:
            with open(partial, "wb") as f:
                shutil.copyfileobj(stream, f, COPY_CHUNK_SIZE)
            partial.replace(target)
        except OSError as e:
            logger.error(f"Error saving audio stream to {target}: {e}")
            self._remove(partial)
            raise EmptyOrCorruptArtifactError(
                f"Failed to save audio recording: {e}", path=target
            ) from e

        self.validate(target)
        logger.info(f"Audio successfully saved to {target}")
        return target

    def validate(self, path: Path) -> int:
        """Check that ``path`` looks like a WAV file with a full header.

        Returns:
            File size in bytes

        Raises:
            EmptyOrCorruptArtifactError: If the file is missing, shorter than
                a WAV header or lacks the RIFF/WAVE magic
        """
        path = Path(path)
        try:
            size = path.stat().st_size
            with open(path, "rb") as f:
                header = f.read(12)
        except OSError as e:
            raise EmptyOrCorruptArtifactError(
                f"Recording file is unreadable: {e}", path=path
            ) from e

        if size < WAV_HEADER_SIZE:
            raise EmptyOrCorruptArtifactError(
                f"Recording is empty or corrupt ({size} bytes)", path=path, size_bytes=size
            )
        if header[:4] != b"RIFF" or header[8:12] != b"WAVE":
            raise EmptyOrCorruptArtifactError(
                "Recording is not a WAV file", path=path, size_bytes=size
            )
        return size

    def describe(self, path: Path) -> ArtifactInfo:
        """Summarise a validated recording: size, duration and peak level."""
        path = Path(path)
        size = self.validate(path)
        with open(path, "rb") as f:
            offset = _data_offset(f.read(HEADER_SCAN_SIZE))

        # Streamed WAV headers carry placeholder sizes, so derive from the file size
        count = max(size - offset, 0) // platforms.SAMPLE_WIDTH
        peak = self._peak_level(path, offset, count)
        duration = count / float(platforms.SAMPLE_RATE * platforms.CHANNELS)

        return ArtifactInfo(
            path=path,
            size_bytes=size,
            duration_seconds=duration,
            peak_level=peak,
            created_at=datetime.fromtimestamp(path.stat().st_mtime),
        )

    @staticmethod
    def _peak_level(path: Path, offset: int, count: int) -> float:
        """Peak absolute sample level in [0, 1], read block by block from disk."""
        if count == 0:
            return 0.0
        samples = np.memmap(path, dtype="<i2", mode="r", offset=offset, shape=(count,))
        try:
            peak = 0
            for start in range(0, count, PEAK_BLOCK_SAMPLES):
                block = samples[start:start + PEAK_BLOCK_SAMPLES]
                peak = max(peak, int(np.abs(block.astype(np.int32)).max()))
        finally:
            del samples
        return peak / 32768.0

    def list_recordings(self) -> List[Path]:
        """List recordings, oldest first."""
        if not self.recordings_dir.exists():
            return []
        return sorted(self.recordings_dir.glob("recording-*.wav"))

    def cleanup_old_recordings(self, max_age_days: int = 30) -> int:
        """Delete recordings older than ``max_age_days``.

        Returns:
            Number of recordings removed
        """
        cutoff_time = datetime.now().timestamp() - (max_age_days * 24 * 60 * 60)
        cleaned_count = 0

        for path in self.list_recordings():
            try:
                if path.stat().st_mtime < cutoff_time:
                    path.unlink()
                    cleaned_count += 1
                    logger.info(f"Cleaned up old recording: {path}")
            except OSError as e:
                logger.error(f"Error removing {path}: {e}")

        logger.info(f"Cleaned up {cleaned_count} old recordings")
        return cleaned_count

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            if path.exists():
                path.unlink()
                logger.info(f"Cleaned up partially written file: {path}")
        except OSError as e:
            logger.error(f"Error cleaning up failed audio file {path}: {e}")
