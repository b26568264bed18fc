"""JSON output formatter for cycle reports.

Example output structure::

    {
        "cycle_id": "20250101T000000Z-1a2b3c",
        "started_at": "2025-01-01T00:00:00+00:00",
        "summary": {
            "total_targets": 2,
            "succeeded": 1,
            "errors": 1,
            "new_listings": 1,
            "duration_seconds": 12.34,
            "success_rate": 0.5
        },
        "targets": [...],
        "new_listings": [...]
    }
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from listing_monitor.models.data_models import CycleReport, CycleStatus


class JSONOutputFormatter:
    """Formats cycle reports as JSON."""

    def format(self, report: CycleReport) -> Dict[str, Any]:
        """
        Format a cycle report as a JSON-serializable dictionary.

        Args:
            report: Complete cycle report

        Returns:
            Dictionary with summary, targets and new_listings sections
        """
        return {
            "cycle_id": report.cycle_id,
            "started_at": report.started_at.isoformat(),
            "summary": self._format_summary(report),
            "targets": self._format_targets(report),
            "new_listings": self._format_new_listings(report),
        }

    def _format_summary(self, report: CycleReport) -> Dict[str, Any]:
        summary = report.summary
        return {
            "total_targets": summary.total_targets,
            "succeeded": summary.succeeded,
            "errors": summary.errors,
            "new_listings": summary.new_listings,
            "duration_seconds": round(summary.duration_seconds, 2),
            "success_rate": round(summary.success_rate, 4),
        }

    def _format_targets(self, report: CycleReport) -> List[Dict[str, Any]]:
        outcomes = {o.target_id: o for o in report.outcomes}
        formatted = []
        for target in report.targets:
            outcome = outcomes.get(target.target_id)
            formatted.append({
                "id": target.target_id,
                "url": target.url,
                "status": target.status.value,
                "new_listings": target.new_listings,
                "execution_time_ms": round(target.execution_time_ms, 1),
                "strategy": outcome.strategy_used if outcome else None,
                "confidence": outcome.confidence.value if outcome and outcome.confidence else None,
                "cold_start": outcome.cold_start if outcome else False,
                "error": target.error,
                "error_reason": outcome.error_reason.value if outcome and outcome.error_reason else None,
            })
        return formatted

    def _format_new_listings(self, report: CycleReport) -> List[Dict[str, Any]]:
        return [
            {
                "target_id": outcome.target_id,
                "title": listing.title,
                "price": listing.price,
                "location": listing.location,
                "signature": listing.key,
            }
            for outcome in report.outcomes
            if outcome.status == CycleStatus.NEW_LISTINGS
            for listing in outcome.new_listings
        ]

    def save(self, report: CycleReport, path: str = "out/cycle_report.json") -> None:
        """
        Save a formatted report to a JSON file.

        Creates parent directories if they don't exist.
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(self.format(report), f, indent=2, ensure_ascii=False)
