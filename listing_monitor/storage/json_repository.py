"""JSON-file implementation of the target repository.

Layout under ``data_dir``::

    hashes.json                         {url: hash}
    statistics.json                     {totalChecks, errors, newListings,
                                         lastCheck, averageExecutionTime,
                                         successRate}
    signatures/<slug>-signatures.json   [{title, price, location,
                                          signature, detectedAt}]

Every write goes to a temporary file that replaces the target with
``os.replace`` so a crash never leaves a half-written file behind.
"""

import hashlib
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from listing_monitor.detector.signature import signature_from_record, signature_to_record
from listing_monitor.errors import StorageIOError
from listing_monitor.models.data_models import ListingSignature, Statistics, readable_slug, utc_now


def url_slug(url: str) -> str:
    """Filesystem-safe, collision-resistant name for a URL."""
    readable = readable_slug(url, max_length=60)
    digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
    return f"{readable}-{digest}" if readable else digest


class JsonFileRepository:
    """File-backed hashes, signatures and statistics."""

    def __init__(self, data_dir: Union[str, Path] = "data"):
        self.data_dir = Path(data_dir)
        self.hashes_path = self.data_dir / "hashes.json"
        self.statistics_path = self.data_dir / "statistics.json"
        self.signatures_dir = self.data_dir / "signatures"

    # Hashes

    def get_hash(self, url: str) -> Optional[str]:
        hashes = self._read_json(self.hashes_path, {})
        if not isinstance(hashes, dict):
            raise StorageIOError(f"Malformed hash file {self.hashes_path}")
        return hashes.get(url)

    def set_hash(self, url: str, content_hash: str) -> None:
        hashes = self._read_for_update(self.hashes_path, {})
        hashes[url] = content_hash
        self._write_json(self.hashes_path, hashes)

    # Signatures

    def signatures_path(self, url: str) -> Path:
        return self.signatures_dir / f"{url_slug(url)}-signatures.json"

    def get_signatures(self, url: str) -> List[ListingSignature]:
        records = self._read_json(self.signatures_path(url), [])
        if not isinstance(records, list):
            raise StorageIOError(f"Malformed signature file for {url}")
        return [signature_from_record(record) for record in records if isinstance(record, dict)]

    def set_signatures(self, url: str, signatures: List[ListingSignature]) -> None:
        now = utc_now()
        records = [signature_to_record(signature, now) for signature in signatures]
        self._write_json(self.signatures_path(url), records)

    # Statistics

    def get_stats(self) -> Statistics:
        return self._stats_from_dict(self._read_json(self.statistics_path, {}))

    def increment_checks(self) -> None:
        stats = self._load_stats_for_update()
        stats.total_checks += 1
        stats.last_check = utc_now()
        self._save_stats(stats)

    def increment_errors(self) -> None:
        stats = self._load_stats_for_update()
        stats.errors += 1
        self._save_stats(stats)

    def increment_new_listings(self, count: int = 1) -> None:
        stats = self._load_stats_for_update()
        stats.new_listings += count
        self._save_stats(stats)

    def record_execution_time(self, execution_time_ms: float) -> None:
        """Fold one execution time into the running mean (stored in seconds)."""
        stats = self._load_stats_for_update()
        checks = max(stats.total_checks, 1)
        stats.average_execution_time = (
            stats.average_execution_time * (checks - 1) + execution_time_ms / 1000
        ) / checks
        self._save_stats(stats)

    def reset_stats(self) -> None:
        self._save_stats(Statistics(last_check=utc_now()))

    # Serialization

    @staticmethod
    def _stats_to_dict(stats: Statistics) -> Dict[str, Any]:
        return {
            "totalChecks": stats.total_checks,
            "errors": stats.errors,
            "newListings": stats.new_listings,
            "lastCheck": stats.last_check.isoformat() if stats.last_check else None,
            "averageExecutionTime": stats.average_execution_time,
            "successRate": stats.success_rate,
        }

    @staticmethod
    def _stats_from_dict(data: Dict[str, Any]) -> Statistics:
        # successRate is derived from the counters, never trusted from disk
        if not isinstance(data, dict):
            raise StorageIOError("Malformed statistics file")
        last_check = data.get("lastCheck")
        try:
            return Statistics(
                total_checks=int(data.get("totalChecks", 0)),
                errors=int(data.get("errors", 0)),
                new_listings=int(data.get("newListings", 0)),
                last_check=datetime.fromisoformat(last_check) if last_check else None,
                average_execution_time=float(data.get("averageExecutionTime", 0.0)),
            )
        except (TypeError, ValueError) as e:
            raise StorageIOError(f"Malformed statistics file: {e}") from e

    def _load_stats_for_update(self) -> Statistics:
        try:
            return self.get_stats()
        except StorageIOError:
            return Statistics()

    def _save_stats(self, stats: Statistics) -> None:
        self._write_json(self.statistics_path, self._stats_to_dict(stats))

    # File access

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageIOError(f"Failed to read {path}: {e}") from e

    def _read_for_update(self, path: Path, default: Dict) -> Dict:
        """Read a mapping to modify; an unreadable file starts over empty."""
        try:
            data = self._read_json(path, default)
        except StorageIOError:
            return dict(default)
        return data if isinstance(data, dict) else dict(default)

    def _write_json(self, path: Path, data: Any) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageIOError(f"Failed to write {path}: {e}") from e
