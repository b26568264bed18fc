"""Hash fast path plus structural signature diff."""

from typing import List, Optional

from listing_monitor.detector.signature import new_signatures, score_confidence
from listing_monitor.errors import StorageIOError
from listing_monitor.models.data_models import (
    DetectionResult,
    ListingSignature,
    Snapshot,
    Target,
    utc_now,
)
from listing_monitor.monitoring.logger import StructuredLogger
from listing_monitor.storage.base import TargetRepository


class ChangeDetector:
    """
    Decide whether a snapshot contains listings not seen before.

    1. If the content hash equals the stored hash the page is unchanged and
       the structural diff is skipped (unless ``force_diff``).
    2. Otherwise the current signatures are diffed against the stored set
       and stored as the new baseline together with the hash.

    Unreadable state is treated as a cold start. Failed writes propagate,
    since a lost baseline would re-announce the same listings next cycle.
    """

    def __init__(self, repository: TargetRepository, logger: Optional[StructuredLogger] = None):
        self.repository = repository
        self.logger = logger or StructuredLogger()

    def detect(self, target: Target, snapshot: Snapshot, force_diff: bool = False) -> DetectionResult:
        current = list(snapshot.listings)
        total = len(current)
        stored_hash = self._read_hash(target.url)

        if not force_diff and stored_hash is not None and stored_hash == snapshot.content_hash:
            return DetectionResult(
                has_new_listings=False,
                new_listings=[],
                total_monitored=total,
                confidence=score_confidence(total, 0),
                content_hash=snapshot.content_hash,
                hash_changed=False,
            )

        previous = self._read_signatures(target.url)
        cold_start = stored_hash is None and not previous
        fresh = new_signatures(current, previous)

        now = utc_now()
        first_seen = {signature.key: signature.detected_at for signature in previous}
        baseline: List[ListingSignature] = [
            ListingSignature(
                title=signature.title,
                price=signature.price,
                location=signature.location,
                detected_at=first_seen.get(signature.key) or now,
            )
            for signature in current
        ]
        self.repository.set_signatures(target.url, baseline)
        self.repository.set_hash(target.url, snapshot.content_hash)

        return DetectionResult(
            has_new_listings=bool(fresh),
            new_listings=fresh,
            total_monitored=total,
            confidence=score_confidence(total, len(fresh)),
            content_hash=snapshot.content_hash,
            cold_start=cold_start,
            hash_changed=stored_hash != snapshot.content_hash,
            detected_at=now,
        )

    def _read_hash(self, url: str) -> Optional[str]:
        try:
            return self.repository.get_hash(url)
        except StorageIOError as e:
            self.logger.warning("storage_read_failed", url=url, kind="hash", error=str(e))
            return None

    def _read_signatures(self, url: str) -> List[ListingSignature]:
        try:
            return list(self.repository.get_signatures(url))
        except StorageIOError as e:
            self.logger.warning("storage_read_failed", url=url, kind="signatures", error=str(e))
            return []
