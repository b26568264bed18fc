"""Error taxonomy for the monitoring pipeline.

Fetch errors carry a coarse ``reason`` (network, timeout, auth, other) that is
reported in cycle outcomes and error alerts. Only ``FetchError`` and its
subclasses make the fetch chain escalate to the next strategy.
"""

from typing import Optional

from listing_monitor.models.data_models import FailureReason


class MonitorError(Exception):
    """Base class for all listing monitor errors."""


class FetchError(MonitorError):
    """A fetch strategy could not produce a snapshot."""

    default_reason = FailureReason.NETWORK

    def __init__(
        self,
        message: str,
        reason: Optional[FailureReason] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.reason = reason or self.default_reason
        self.status_code = status_code


class BotChallengeError(FetchError):
    """A verification / challenge page was served instead of listings."""

    default_reason = FailureReason.AUTH


class ExtractionError(FetchError):
    """The page loaded but no selector matched any listing."""

    default_reason = FailureReason.OTHER


class StorageIOError(MonitorError):
    """Reading or writing persisted monitor state failed."""


class NotificationDeliveryError(MonitorError):
    """A notification could not be delivered after retries."""
