"""Daily operating window for monitoring cycles."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from listing_monitor.models.data_models import utc_now


@dataclass
class OperatingHoursStatus:
    is_operating: bool
    current_hour: int
    next_change_hour: Optional[int]


class OperatingHours:
    """
    Restrict cycles to ``start_hour <= hour < end_hour`` in ``timezone``.

    A window whose start is after its end wraps midnight (e.g. 22 to 6).
    When disabled every hour is operating.
    """

    def __init__(
        self,
        enabled: bool = False,
        start_hour: int = 6,
        end_hour: int = 22,
        timezone: str = "Asia/Tokyo",
        now: Callable[[], datetime] = utc_now
    ):
        self.enabled = enabled
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.tz = ZoneInfo(timezone)
        self.now = now

    def status(self) -> OperatingHoursStatus:
        hour = self.now().astimezone(self.tz).hour
        if not self.enabled:
            return OperatingHoursStatus(is_operating=True, current_hour=hour, next_change_hour=None)

        if self.start_hour <= self.end_hour:
            operating = self.start_hour <= hour < self.end_hour
        else:
            operating = hour >= self.start_hour or hour < self.end_hour

        return OperatingHoursStatus(
            is_operating=operating,
            current_hour=hour,
            next_change_hour=self.end_hour if operating else self.start_hour,
        )

    def is_operating(self) -> bool:
        return self.status().is_operating
