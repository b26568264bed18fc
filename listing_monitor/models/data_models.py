"""Core data models for the listing monitor."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def readable_slug(url: str, max_length: int = 80) -> str:
    """Lowercase URL with the scheme dropped and other punctuation folded to dashes."""
    slug = re.sub(r"^https?://", "", url)
    return re.sub(r"[^A-Za-z0-9]+", "-", slug).strip("-").lower()[:max_length]


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CycleStatus(Enum):
    """Result of checking one target in one cycle."""
    UNCHANGED = "unchanged"
    NEW_LISTINGS = "new_listings"
    ERROR = "error"


class FailureReason(Enum):
    """Coarse failure category reported for an errored target."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    OTHER = "other"
    CIRCUIT_OPEN = "circuit_open"


class Confidence(Enum):
    """Informational confidence of a detection result."""
    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"


@dataclass(frozen=True)
class ListingSignature:
    """
    Normalized identity of one listing.

    Two signatures are equal when their composite keys are equal; the
    detection timestamp is carried for persistence only.
    """
    title: str
    price: str
    location: str = ""
    detected_at: Optional[datetime] = field(default=None, compare=False, hash=False)

    @property
    def key(self) -> str:
        """Composite key: ``title:price:location`` with each part trimmed."""
        return f"{self.title.strip()}:{self.price.strip()}:{self.location.strip()}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ListingSignature):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


@dataclass(frozen=True)
class Snapshot:
    """Extracted result of one successful fetch."""
    target_id: str
    fetched_at: datetime
    content_hash: str
    listings: List[ListingSignature]
    strategy_used: str
    matched_selector: Optional[str] = None


@dataclass
class Target:
    """A monitored URL plus its extraction hints and running counters."""
    id: str
    url: str
    selector_hints: List[str] = field(default_factory=list)
    monitoring_enabled: bool = True
    last_content_hash: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    total_checks: int = 0
    error_count: int = 0
    new_listing_count: int = 0
    consecutive_errors: int = 0


@dataclass
class CircuitBreakerStats:
    """Point-in-time view of the circuit breaker."""
    state: CircuitState
    consecutive_errors: int
    error_rate: float
    recent_error_count: int
    last_open_time: Optional[float]


@dataclass
class DetectionResult:
    """Outcome of comparing a snapshot with the stored baseline."""
    has_new_listings: bool
    new_listings: List[ListingSignature]
    total_monitored: int
    confidence: Confidence
    content_hash: str
    cold_start: bool = False
    hash_changed: bool = True
    detected_at: datetime = field(default_factory=utc_now)

    @property
    def new_count(self) -> int:
        return len(self.new_listings)


@dataclass
class CycleOutcome:
    """Result for one target in one monitoring cycle."""
    target_id: str
    url: str
    status: CycleStatus
    new_listings: List[ListingSignature] = field(default_factory=list)
    confidence: Optional[Confidence] = None
    execution_time_ms: float = 0.0
    error: Optional[str] = None
    error_reason: Optional[FailureReason] = None
    cold_start: bool = False
    strategy_used: Optional[str] = None


@dataclass
class Statistics:
    """Process-wide monitoring statistics."""
    total_checks: int = 0
    errors: int = 0
    new_listings: int = 0
    last_check: Optional[datetime] = None
    average_execution_time: float = 0.0  # seconds

    @property
    def success_rate(self) -> float:
        """Success percentage, derived from the counters."""
        if self.total_checks <= 0:
            return 100.0
        return round((self.total_checks - self.errors) / self.total_checks * 100, 2)


@dataclass
class NotificationData:
    """Payload for a new-listing notification."""
    url: str
    new_listings: List[ListingSignature]
    total_monitored: int
    confidence: Confidence
    detected_at: datetime
    execution_time: float  # seconds


@dataclass
class TargetSummary:
    """Per-target line of a cycle report."""
    target_id: str
    url: str
    status: CycleStatus
    new_listings: int
    execution_time_ms: float
    error: Optional[str] = None


@dataclass
class CycleSummary:
    """Aggregate statistics for one cycle."""
    total_targets: int
    succeeded: int
    errors: int
    new_listings: int
    duration_seconds: float
    success_rate: float  # Range 0.0-1.0


@dataclass
class CycleReport:
    """Complete result of one monitoring cycle."""
    cycle_id: str
    started_at: datetime
    summary: CycleSummary
    targets: List[TargetSummary]
    outcomes: List[CycleOutcome]

    def outcomes_by_status(self) -> Dict[CycleStatus, List[CycleOutcome]]:
        grouped: Dict[CycleStatus, List[CycleOutcome]] = {}
        for outcome in self.outcomes:
            grouped.setdefault(outcome.status, []).append(outcome)
        return grouped
