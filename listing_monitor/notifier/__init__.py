"""Notification sinks."""

from .alerts import AlertThrottle
from .base import LoggingNotifier, NotificationSink
from .telegram import TelegramNotifier

__all__ = ["AlertThrottle", "LoggingNotifier", "NotificationSink", "TelegramNotifier"]
