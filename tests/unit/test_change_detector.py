"""Unit tests for signatures and the change detector."""

import pytest

from listing_monitor.detector.change_detector import ChangeDetector
from listing_monitor.detector.signature import (
    make_signature,
    new_signatures,
    score_confidence,
    signature_from_record,
    signature_to_record,
)
from listing_monitor.errors import StorageIOError
from listing_monitor.models.data_models import Confidence, Target, utc_now
from tests.fixtures.fakes import InMemoryRepository, make_snapshot, sig


URL = "https://listings.test/alpha"


@pytest.fixture
def target():
    return Target(id="alpha", url=URL)


class TestSignature:

    def test_key_is_whitespace_insensitive(self):
        assert make_signature("  A  ", "  1000万円  ", "  Tokyo  ") == make_signature("A", "1000万円", "Tokyo")
        assert make_signature("  A  ", "  1000万円  ", "  Tokyo  ").key == "A:1000万円:Tokyo"

    def test_location_distinguishes_listings(self):
        assert make_signature("A", "1000万円", "Tokyo") != make_signature("A", "1000万円", "Osaka")

    def test_detected_at_is_not_part_of_identity(self):
        a = sig("A", "1000万円")
        b = make_signature("A", "1000万円")
        stamped = signature_from_record({**signature_to_record(b, utc_now())})
        assert a == stamped
        assert hash(a) == hash(stamped)

    def test_none_values_become_empty(self):
        assert make_signature("A", 1000, None).key == "A:1000:"

    def test_record_round_trip_keeps_fields(self):
        record = signature_to_record(sig("A", "1000万円", "Tokyo"), utc_now())
        assert record["signature"] == "A:1000万円:Tokyo"
        assert set(record) == {"title", "price", "location", "signature", "detectedAt"}
        assert signature_from_record(record).detected_at is not None

    def test_new_signatures_is_ordered_set_difference(self):
        previous = [sig("A", "1")]
        current = [sig("C", "3"), sig("A", "1"), sig("B", "2"), sig("C", "3")]
        assert [s.key for s in new_signatures(current, previous)] == ["C:3:", "B:2:"]


class TestConfidence:

    @pytest.mark.parametrize("total, new, expected", [
        (3, 3, Confidence.VERY_HIGH),
        (3, 0, Confidence.VERY_HIGH),
        (5, 4, Confidence.HIGH),
        (2, 1, Confidence.HIGH),
        (1, 1, Confidence.MEDIUM),
        (0, 0, Confidence.MEDIUM),
    ])
    def test_mapping(self, total, new, expected):
        assert score_confidence(total, new) == expected


class TestChangeDetector:

    def test_new_listing_added(self, target):
        # Scenario A
        repo = InMemoryRepository()
        repo.hashes[URL] = "old"
        repo.signatures[URL] = [sig("A", "1000万円", "Tokyo")]
        detector = ChangeDetector(repo)

        result = detector.detect(target, make_snapshot(
            [sig("A", "1000万円", "Tokyo"), sig("B", "2000万円", "Kanagawa")], content_hash="new"))

        assert result.has_new_listings is True
        assert result.new_count == 1
        assert result.new_listings[0].key == "B:2000万円:Kanagawa"
        assert result.total_monitored == 2
        assert result.confidence == Confidence.HIGH
        assert result.cold_start is False

    def test_cold_start_reports_everything_as_new(self, target):
        # Scenario B
        repo = InMemoryRepository()
        detector = ChangeDetector(repo)

        result = detector.detect(target, make_snapshot([sig("A", "1"), sig("B", "2"), sig("C", "3")]))

        assert result.cold_start is True
        assert result.new_count == 3
        assert result.total_monitored == 3
        assert result.confidence == Confidence.VERY_HIGH

    def test_markup_churn_is_not_a_new_listing(self, target):
        # Scenario C
        repo = InMemoryRepository()
        repo.hashes[URL] = "old-hash"
        repo.signatures[URL] = [sig("A", "1"), sig("B", "2")]
        detector = ChangeDetector(repo)

        result = detector.detect(target, make_snapshot([sig("B", "2"), sig("A", "1")], content_hash="new-hash"))

        assert result.has_new_listings is False
        assert result.new_count == 0
        assert result.hash_changed is True
        assert repo.hashes[URL] == "new-hash"

    def test_price_and_location_changes_count_separately(self, target):
        repo = InMemoryRepository()
        repo.hashes[URL] = "old"
        repo.signatures[URL] = [sig("A", "1000万円", "Tokyo")]
        detector = ChangeDetector(repo)

        result = detector.detect(target, make_snapshot(
            [sig("A", "900万円", "Tokyo"), sig("A", "1000万円", "Osaka")], content_hash="new"))

        assert result.new_count == 2

    def test_hash_fast_path_skips_diff(self, target):
        repo = InMemoryRepository()
        repo.hashes[URL] = "same"
        repo.signatures[URL] = []
        detector = ChangeDetector(repo)

        result = detector.detect(target, make_snapshot([sig("Z", "9")], content_hash="same"))

        assert result.has_new_listings is False
        assert result.hash_changed is False
        assert repo.signatures[URL] == []

    def test_force_diff_bypasses_hash_fast_path(self, target):
        repo = InMemoryRepository()
        repo.hashes[URL] = "same"
        repo.signatures[URL] = [sig("A", "1")]
        detector = ChangeDetector(repo)

        result = detector.detect(target, make_snapshot([sig("A", "1"), sig("B", "2")], content_hash="same"),
                                 force_diff=True)

        assert result.new_count == 1

    def test_baseline_is_replaced_and_keeps_first_seen_time(self, target):
        repo = InMemoryRepository()
        detector = ChangeDetector(repo)
        detector.detect(target, make_snapshot([sig("A", "1")], content_hash="h1"))
        first_seen = repo.signatures[URL][0].detected_at

        detector.detect(target, make_snapshot([sig("B", "2"), sig("A", "1")], content_hash="h2"))

        stored = {s.key: s.detected_at for s in repo.signatures[URL]}
        assert set(stored) == {"A:1:", "B:2:"}
        assert stored["A:1:"] == first_seen
        assert repo.hashes[URL] == "h2"

    def test_read_failure_degrades_to_cold_start(self, target):
        repo = InMemoryRepository(fail_reads=True)
        detector = ChangeDetector(repo)

        result = detector.detect(target, make_snapshot([sig("A", "1")]))

        assert result.cold_start is True
        assert result.new_count == 1
        assert repo.signatures[URL] == [sig("A", "1")]

    def test_write_failure_propagates(self, target):
        repo = InMemoryRepository(fail_writes=True)
        detector = ChangeDetector(repo)

        with pytest.raises(StorageIOError):
            detector.detect(target, make_snapshot([sig("A", "1")]))
