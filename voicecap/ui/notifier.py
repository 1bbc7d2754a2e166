"""User notifications for capture events.

The editor or UI layer decides how notices are shown. The capture components
only talk to the small ``Notifier`` interface below.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from rich.console import Console

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Interface for user-visible notices."""

    @abstractmethod
    def info(self, message: str) -> None:
        """Show an informational notice."""
        pass

    @abstractmethod
    def warning(self, message: str) -> None:
        """Show a warning."""
        pass

    @abstractmethod
    def error(self, message: str) -> None:
        """Show an error."""
        pass


class LoggingNotifier(Notifier):
    """Sends notices to the log only. Used when no UI is attached."""

    def info(self, message: str) -> None:
        logger.info(message)

    def warning(self, message: str) -> None:
        logger.warning(message)

    def error(self, message: str) -> None:
        logger.error(message)


class ConsoleNotifier(Notifier):
    """Prints notices to the terminal with rich."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def info(self, message: str) -> None:
        logger.info(message)
        self.console.print(f"ℹ️  {message}", style="blue")

    def warning(self, message: str) -> None:
        logger.warning(message)
        self.console.print(f"⚠️  {message}", style="yellow")

    def error(self, message: str) -> None:
        logger.error(message)
        self.console.print(f"❌ {message}", style="bold red")
