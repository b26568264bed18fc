"""Repository interface used by the detector and orchestrator."""

from typing import List, Optional, Protocol

from listing_monitor.models.data_models import ListingSignature, Statistics


class TargetRepository(Protocol):
    """
    Persisted per-target baselines plus process-wide statistics.

    Reads raise StorageIOError when the backing store is unreadable; writes
    raise StorageIOError when the new state could not be made durable.
    """

    def get_hash(self, url: str) -> Optional[str]:
        ...

    def set_hash(self, url: str, content_hash: str) -> None:
        ...

    def get_signatures(self, url: str) -> List[ListingSignature]:
        ...

    def set_signatures(self, url: str, signatures: List[ListingSignature]) -> None:
        ...

    def get_stats(self) -> Statistics:
        ...

    def increment_checks(self) -> None:
        ...

    def increment_errors(self) -> None:
        ...

    def increment_new_listings(self, count: int = 1) -> None:
        ...

    def record_execution_time(self, execution_time_ms: float) -> None:
        ...

    def reset_stats(self) -> None:
        ...
