"""Structured logging for monitor telemetry."""

import json
import logging
from typing import Any, Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "listing_monitor", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        """
        Log structured event.

        Standard keys: event, url, target, strategy, attempt, elapsed_ms,
                      cb_state, status, reason, error
        """
        log_data = {"event": event, **kwargs}
        self.logger.log(level, json.dumps(log_data, default=str, ensure_ascii=False))

    def debug(self, event: str, **kwargs: Any) -> None:
        self.log(event, level=logging.DEBUG, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self.log(event, level=logging.WARNING, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self.log(event, level=logging.ERROR, **kwargs)

    def cycle_start(self, cycle_id: str, targets: int) -> None:
        self.log("cycle_start", cycle_id=cycle_id, targets=targets)

    def cycle_complete(self, cycle_id: str, elapsed_ms: float, succeeded: int, errors: int) -> None:
        self.log("cycle_complete", cycle_id=cycle_id, elapsed_ms=elapsed_ms,
                 succeeded=succeeded, errors=errors)

    def cycle_skipped(self, reason: str) -> None:
        self.warning("cycle_skipped", reason=reason)

    def fetch_start(self, url: str, strategy: str) -> None:
        self.log("fetch_start", url=url, strategy=strategy)

    def fetch_success(self, url: str, strategy: str, listings: int, elapsed_ms: float) -> None:
        self.log("fetch_success", url=url, strategy=strategy, listings=listings, elapsed_ms=elapsed_ms)

    def fetch_error(self, url: str, strategy: str, reason: str, error: str,
                    attempt: Optional[int] = None) -> None:
        self.warning("fetch_error", url=url, strategy=strategy, reason=reason,
                     error=error, attempt=attempt)

    def strategy_escalation(self, url: str, from_strategy: str, to_strategy: str, error: str) -> None:
        self.log("strategy_escalation", url=url, from_strategy=from_strategy,
                 to_strategy=to_strategy, error=error)

    def circuit_breaker_state(self, state: str, **kwargs: Any) -> None:
        self.log("circuit_breaker", cb_state=state, **kwargs)

    def detection(self, url: str, status: str, new_count: int, total: int, confidence: str) -> None:
        self.log("detection", url=url, status=status, new_count=new_count,
                 total_monitored=total, confidence=confidence)

    def notification_error(self, kind: str, error: str) -> None:
        self.error("notification_error", kind=kind, error=error)

    def target_check(self, target: str, url: str, status: str, elapsed_ms: float, **kwargs: Any) -> None:
        self.log("target_check", target=target, url=url, status=status,
                 elapsed_ms=elapsed_ms, **kwargs)
