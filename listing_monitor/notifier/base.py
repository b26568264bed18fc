"""Notification sink interface and a log-only implementation."""

from typing import Optional, Protocol

from listing_monitor.models.data_models import NotificationData, Statistics
from listing_monitor.monitoring.logger import StructuredLogger


class NotificationSink(Protocol):
    """Where monitoring events are delivered."""

    async def test_connection(self) -> bool:
        ...

    async def send_startup_notice(self) -> None:
        ...

    async def send_shutdown_notice(self) -> None:
        ...

    async def send_new_listing_notification(self, data: NotificationData) -> None:
        ...

    async def send_error_alert(self, url: str, reason: str) -> None:
        ...

    async def send_statistics_report(self, stats: Statistics) -> None:
        ...


class LoggingNotifier:
    """Writes every event to the structured log. Used when no bot token is set."""

    def __init__(self, logger: Optional[StructuredLogger] = None):
        self.logger = logger or StructuredLogger()

    async def test_connection(self) -> bool:
        return True

    async def send_startup_notice(self) -> None:
        self.logger.log("notify_startup")

    async def send_shutdown_notice(self) -> None:
        self.logger.log("notify_shutdown")

    async def send_new_listing_notification(self, data: NotificationData) -> None:
        self.logger.log(
            "notify_new_listings",
            url=data.url,
            new_count=len(data.new_listings),
            total_monitored=data.total_monitored,
            confidence=data.confidence.value,
            listings=[listing.key for listing in data.new_listings],
        )

    async def send_error_alert(self, url: str, reason: str) -> None:
        self.logger.warning("notify_error_alert", url=url, reason=reason)

    async def send_statistics_report(self, stats: Statistics) -> None:
        self.logger.log(
            "notify_statistics",
            total_checks=stats.total_checks,
            errors=stats.errors,
            new_listings=stats.new_listings,
            success_rate=stats.success_rate,
            average_execution_time=round(stats.average_execution_time, 2),
        )
