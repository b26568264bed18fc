"""Collects per-target outcomes into a cycle report."""

import time
from datetime import datetime
from typing import List, Optional

from listing_monitor.models.data_models import (
    CycleOutcome,
    CycleReport,
    CycleStatus,
    CycleSummary,
    TargetSummary,
    utc_now,
)


class CycleAggregator:
    """
    Accumulates outcomes for one monitoring cycle.

    Targets are processed sequentially, so no locking is needed.
    """

    def __init__(self):
        self._outcomes: List[CycleOutcome] = []
        self._started_at: Optional[datetime] = None
        self._start_time: float = 0.0
        self._end_time: float = 0.0

    def start_timer(self) -> None:
        """Start timing the cycle."""
        self._started_at = utc_now()
        self._start_time = time.perf_counter()

    def stop_timer(self) -> None:
        """Stop timing the cycle."""
        self._end_time = time.perf_counter()

    def add_outcome(self, outcome: CycleOutcome) -> None:
        self._outcomes.append(outcome)

    def get_outcomes(self) -> List[CycleOutcome]:
        return self._outcomes.copy()

    def get_summary(self) -> CycleSummary:
        """
        Generate summary statistics.

        Returns:
            CycleSummary with counts, duration and success rate (0-1)
        """
        duration = self._end_time - self._start_time if self._end_time > 0 else 0.0
        errors = sum(1 for o in self._outcomes if o.status == CycleStatus.ERROR)
        total = len(self._outcomes)
        succeeded = total - errors

        return CycleSummary(
            total_targets=total,
            succeeded=succeeded,
            errors=errors,
            new_listings=sum(len(o.new_listings) for o in self._outcomes
                             if o.status == CycleStatus.NEW_LISTINGS),
            duration_seconds=duration,
            success_rate=succeeded / total if total > 0 else 0.0,
        )

    def get_target_summaries(self) -> List[TargetSummary]:
        return [
            TargetSummary(
                target_id=o.target_id,
                url=o.url,
                status=o.status,
                new_listings=len(o.new_listings),
                execution_time_ms=o.execution_time_ms,
                error=o.error,
            )
            for o in self._outcomes
        ]

    def build_report(self, cycle_id: str) -> CycleReport:
        return CycleReport(
            cycle_id=cycle_id,
            started_at=self._started_at or utc_now(),
            summary=self.get_summary(),
            targets=self.get_target_summaries(),
            outcomes=self.get_outcomes(),
        )
