"""User-facing notification layer."""

from .notifier import Notifier, ConsoleNotifier, LoggingNotifier

__all__ = ["Notifier", "ConsoleNotifier", "LoggingNotifier"]
