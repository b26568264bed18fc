"""Listing signature normalization and set difference."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from listing_monitor.models.data_models import Confidence, ListingSignature


def make_signature(title: Any, price: Any, location: Any = "") -> ListingSignature:
    """
    Build a signature from loosely typed values.

    Non-string values are converted with ``str()``; None becomes an empty
    string. Whitespace is trimmed so the composite key is stable.
    """
    def _clean(value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    return ListingSignature(title=_clean(title), price=_clean(price), location=_clean(location))


def signature_to_record(signature: ListingSignature, detected_at: datetime) -> Dict[str, str]:
    """Persisted form: ``{title, price, location, signature, detectedAt}``."""
    return {
        "title": signature.title,
        "price": signature.price,
        "location": signature.location,
        "signature": signature.key,
        "detectedAt": (signature.detected_at or detected_at).isoformat(),
    }


def signature_from_record(record: Dict[str, Any]) -> ListingSignature:
    detected_at: Optional[datetime] = None
    raw_detected = record.get("detectedAt")
    if isinstance(raw_detected, str):
        try:
            detected_at = datetime.fromisoformat(raw_detected)
        except ValueError:
            detected_at = None

    signature = make_signature(record.get("title"), record.get("price"), record.get("location"))
    return ListingSignature(
        title=signature.title,
        price=signature.price,
        location=signature.location,
        detected_at=detected_at,
    )


def new_signatures(
    current: Iterable[ListingSignature],
    previous: Iterable[ListingSignature]
) -> List[ListingSignature]:
    """
    Set difference ``current \\ previous`` by composite key.

    Order of ``current`` is preserved and duplicates are reported once.
    """
    known = {signature.key for signature in previous}
    result: List[ListingSignature] = []
    for signature in current:
        if signature.key in known:
            continue
        known.add(signature.key)
        result.append(signature)
    return result


def score_confidence(total_monitored: int, new_count: int) -> Confidence:
    """Informational confidence of a detection."""
    if total_monitored >= 3 and new_count <= 3:
        return Confidence.VERY_HIGH
    if total_monitored >= 2:
        return Confidence.HIGH
    return Confidence.MEDIUM
