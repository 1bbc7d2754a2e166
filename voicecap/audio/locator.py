"""Discovery of the ffmpeg binary."""

import logging
import shutil
import subprocess
import threading
from pathlib import Path
from typing import List, Optional

from ..exceptions import ToolNotFoundError
from ..ui.notifier import LoggingNotifier, Notifier
from . import platforms

logger = logging.getLogger(__name__)


class ToolLocator:
    """Finds and validates an invocable ffmpeg.

    The result, found or not, is cached for the lifetime of the instance.
    Install guidance is surfaced once per instance.
    """

    def __init__(
        self,
        override: Optional[str] = None,
        platform: Optional[str] = None,
        notifier: Optional[Notifier] = None,
        validate_timeout: float = 5.0,
    ):
        """Initialize the locator.

        Args:
            override: Explicit path to ffmpeg, checked before anything else
            platform: ``sys.platform`` style name (defaults to the running one)
            notifier: Where install guidance is shown
            validate_timeout: Seconds allowed for ``ffmpeg -version``
        """
        self.override = override
        self.platform = platforms.normalize_platform(platform)
        self.notifier = notifier or LoggingNotifier()
        self.validate_timeout = validate_timeout

        self._lock = threading.Lock()
        self._resolved = False
        self._path: Optional[Path] = None
        self._guidance_shown = False

    @property
    def available(self) -> bool:
        return self.resolve() is not None

    def locate(self) -> Path:
        """Return the validated ffmpeg path.

        Raises:
            ToolNotFoundError: If no candidate validates
        """
        path = self.resolve()
        if path is None:
            raise ToolNotFoundError(
                f"ffmpeg not found. {platforms.install_hint(self.platform)}"
            )
        return path

    def resolve(self) -> Optional[Path]:
        """Return the cached ffmpeg path, probing on first use. None if absent."""
        with self._lock:
            if not self._resolved:
                self._path = self._discover()
                self._resolved = True
                if self._path is None:
                    self._report_missing()
            return self._path

    def refresh(self) -> None:
        """Forget the cached result so the next call looks again."""
        with self._lock:
            self._resolved = False
            self._path = None

    def _candidates(self) -> List[Path]:
        candidates: List[Path] = []
        if self.override:
            candidates.append(Path(self.override))

        which_path = shutil.which(platforms.tool_executable(self.platform))
        if which_path:
            candidates.append(Path(which_path))

        for location in platforms.candidate_locations(self.platform):
            if location.exists() and location not in candidates:
                candidates.append(location)
        return candidates

    def _discover(self) -> Optional[Path]:
        for candidate in self._candidates():
            if self._validate(candidate):
                logger.info(f"Found ffmpeg at: {candidate}")
                return candidate
            logger.debug(f"Rejected ffmpeg candidate: {candidate}")
        return None

    def _validate(self, candidate: Path) -> bool:
        """Run ``<candidate> -version`` and accept it on exit code 0."""
        try:
            result = subprocess.run(
                [str(candidate), "-version"],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.validate_timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"ffmpeg validation failed for {candidate}: {e}")
            return False
        return result.returncode == 0

    def _report_missing(self) -> None:
        if self._guidance_shown:
            return
        self._guidance_shown = True
        logger.error("ffmpeg not found in PATH or common locations")
        self.notifier.error(
            f"FFmpeg is not installed or not in PATH. {platforms.install_hint(self.platform)}"
        )
