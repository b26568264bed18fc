"""Ordered fetch strategies with escalation on failure."""

import asyncio
import dataclasses
from typing import List, Optional, Protocol, Sequence

from listing_monitor.errors import FetchError
from listing_monitor.models.data_models import FailureReason, Snapshot, Target
from listing_monitor.monitoring.logger import StructuredLogger


class FetchStrategy(Protocol):
    """A way of turning a URL into a Snapshot."""

    name: str

    async def fetch(self, url: str, hints: Sequence[str] = ()) -> Snapshot:
        ...


class FetchChain:
    """
    Try each strategy in order until one produces a snapshot.

    Any FetchError (including challenge and extraction errors) escalates to
    the next strategy. Each strategy is bounded by ``fetch_timeout``. When
    every strategy fails the last error is raised.
    """

    def __init__(
        self,
        strategies: List[FetchStrategy],
        fetch_timeout: float = 180.0,
        logger: Optional[StructuredLogger] = None
    ):
        if not strategies:
            raise ValueError("FetchChain needs at least one strategy")
        self.strategies = strategies
        self.fetch_timeout = fetch_timeout
        self.logger = logger or StructuredLogger()

    async def fetch(self, target: Target) -> Snapshot:
        last_error: Optional[FetchError] = None

        for index, strategy in enumerate(self.strategies):
            if last_error is not None:
                self.logger.strategy_escalation(
                    target.url, self.strategies[index - 1].name, strategy.name, str(last_error)
                )
            try:
                snapshot = await asyncio.wait_for(
                    strategy.fetch(target.url, target.selector_hints),
                    timeout=self.fetch_timeout,
                )
            except asyncio.TimeoutError:
                last_error = FetchError(
                    f"{strategy.name} exceeded {self.fetch_timeout}s for {target.url}",
                    FailureReason.TIMEOUT,
                )
                self.logger.fetch_error(target.url, strategy.name, last_error.reason.value, str(last_error))
                continue
            except FetchError as e:
                last_error = e
                self.logger.fetch_error(target.url, strategy.name, e.reason.value, str(e))
                continue

            return dataclasses.replace(snapshot, target_id=target.id)

        raise last_error
