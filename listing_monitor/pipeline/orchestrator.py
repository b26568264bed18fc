"""Monitoring orchestrator: gate, fetch, detect, record, notify."""

import asyncio
import time
import uuid
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import httpx

from listing_monitor.detector.change_detector import ChangeDetector
from listing_monitor.errors import FetchError, NotificationDeliveryError, StorageIOError
from listing_monitor.fetcher.chain import FetchChain, FetchStrategy
from listing_monitor.fetcher.circuit_breaker import CircuitBreaker
from listing_monitor.fetcher.http_client import AsyncHTTPClient
from listing_monitor.fetcher.lightweight import LightweightFetcher, TransientStatusError
from listing_monitor.fetcher.retry_handler import RetryPolicy
from listing_monitor.fetcher.stealth_browser import StealthBrowserFetcher
from listing_monitor.models.config import MonitorConfig
from listing_monitor.models.data_models import (
    CircuitState,
    CycleOutcome,
    CycleReport,
    CycleStatus,
    FailureReason,
    NotificationData,
    Target,
    utc_now,
)
from listing_monitor.monitoring.logger import StructuredLogger
from listing_monitor.notifier.alerts import AlertThrottle
from listing_monitor.notifier.base import LoggingNotifier, NotificationSink
from listing_monitor.notifier.telegram import TelegramNotifier
from listing_monitor.pipeline.aggregator import CycleAggregator
from listing_monitor.pipeline.operating_hours import OperatingHours
from listing_monitor.pipeline.scheduler import JobManager
from listing_monitor.storage.base import TargetRepository
from listing_monitor.storage.json_repository import JsonFileRepository


MONITORING_JOB = "monitoring"
STATISTICS_JOB = "statistics"


class MonitorOrchestrator:
    """
    Runs monitoring cycles over a list of targets.

    Targets are checked strictly one after another with a fixed delay in
    between. A failing target never aborts the cycle, and a cycle that is
    triggered while another is in flight is skipped rather than queued.
    """

    def __init__(
        self,
        config: MonitorConfig,
        fetch_chain: FetchChain,
        detector: ChangeDetector,
        repository: TargetRepository,
        notifier: NotificationSink,
        circuit_breaker: CircuitBreaker,
        job_manager: JobManager,
        operating_hours: Optional[OperatingHours] = None,
        alert_throttle: Optional[AlertThrottle] = None,
        logger: Optional[StructuredLogger] = None,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
        resources: Sequence[Any] = ()
    ):
        """
        Initialize orchestrator with explicit collaborators.

        Args:
            config: Monitor configuration
            fetch_chain: Ordered fetch strategies
            detector: Change detector backed by ``repository``
            repository: Persisted baselines and statistics
            notifier: Notification sink
            circuit_breaker: Process-wide fault gate
            job_manager: Scheduler for the monitoring and statistics ticks
            operating_hours: Optional daily window outside which cycles are skipped
            alert_throttle: Cooldown for repeated error alerts
            logger: Structured logger
            sleeper: Awaitable sleep used for the inter-request delay
            resources: Async context managers (HTTP clients) entered with the orchestrator
        """
        self.config = config
        self.fetch_chain = fetch_chain
        self.detector = detector
        self.repository = repository
        self.notifier = notifier
        self.circuit_breaker = circuit_breaker
        self.job_manager = job_manager
        self.operating_hours = operating_hours or OperatingHours(enabled=False, timezone=config.timezone)
        self.alert_throttle = alert_throttle or AlertThrottle(config.error_alert_cooldown)
        self.logger = logger or StructuredLogger(level=config.log_level)
        self.sleeper = sleeper
        self.resources = list(resources)

        self._targets: List[Target] = []
        self._is_running = False
        self._cycle_in_flight = False
        self._exit_stack: Optional[AsyncExitStack] = None

    @classmethod
    def from_config(cls, config: MonitorConfig, logger: Optional[StructuredLogger] = None) -> "MonitorOrchestrator":
        """Wire the production component graph from configuration."""
        logger = logger or StructuredLogger(level=config.log_level)

        http_client = AsyncHTTPClient(
            connect_timeout=config.http_connect_timeout,
            read_timeout=config.http_read_timeout,
        )
        resources: List[Any] = [http_client]

        strategies: List[FetchStrategy] = [
            LightweightFetcher(
                http_client,
                retry_policy=RetryPolicy(
                    max_retries=config.http_max_retries,
                    retry_delay=config.http_retry_delay,
                    backoff_multiplier=config.http_backoff_multiplier,
                    retry_on=(httpx.TransportError, TransientStatusError),
                ),
                max_listings=config.max_listings,
                initial_delay=(config.initial_delay_min, config.initial_delay_max),
                logger=logger,
            )
        ]
        if config.browser_enabled:
            strategies.append(StealthBrowserFetcher(
                headless=config.browser_headless,
                max_retries=config.browser_max_retries,
                backoff_base=config.browser_backoff_base,
                navigation_timeout=config.browser_navigation_timeout,
                warmup_urls=config.warmup_urls,
                max_listings=config.max_listings,
                timezone_id=config.timezone,
                logger=logger,
            ))

        if config.telegram_enabled:
            telegram_client = AsyncHTTPClient(
                connect_timeout=config.http_connect_timeout,
                read_timeout=config.http_read_timeout,
                headers={"User-Agent": "listing-monitor"},
            )
            resources.append(telegram_client)
            notifier: NotificationSink = TelegramNotifier(
                telegram_client,
                config.telegram_bot_token,
                config.telegram_chat_id,
                timezone=config.timezone,
                monitoring_cron=config.monitoring_cron,
                logger=logger,
            )
        else:
            notifier = LoggingNotifier(logger)

        repository = JsonFileRepository(config.data_dir)
        circuit_breaker = CircuitBreaker(
            max_consecutive_errors=config.circuit_breaker_max_consecutive_errors,
            error_rate_threshold=config.circuit_breaker_error_rate_threshold,
            window_seconds=config.circuit_breaker_window_seconds,
            recovery_seconds=config.circuit_breaker_recovery_seconds,
            auto_recovery_enabled=config.circuit_breaker_auto_recovery,
            min_error_samples=config.circuit_breaker_min_error_samples,
            expected_check_interval_seconds=config.circuit_breaker_check_interval_seconds,
            logger=logger,
        )

        return cls(
            config=config,
            fetch_chain=FetchChain(strategies, fetch_timeout=config.fetch_timeout, logger=logger),
            detector=ChangeDetector(repository, logger=logger),
            repository=repository,
            notifier=notifier,
            circuit_breaker=circuit_breaker,
            job_manager=JobManager(timezone=config.timezone, logger=logger),
            operating_hours=OperatingHours(
                enabled=config.operating_hours_enabled,
                start_hour=config.operating_start_hour,
                end_hour=config.operating_end_hour,
                timezone=config.timezone,
            ),
            alert_throttle=AlertThrottle(config.error_alert_cooldown),
            logger=logger,
            resources=resources,
        )

    async def __aenter__(self) -> "MonitorOrchestrator":
        stack = AsyncExitStack()
        try:
            for resource in self.resources:
                await stack.enter_async_context(resource)
        except BaseException:
            await stack.aclose()
            raise
        self._exit_stack = stack
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if self._is_running:
                await self.stop()
        finally:
            if self._exit_stack is not None:
                await self._exit_stack.aclose()
                self._exit_stack = None

    # Lifecycle

    async def start(self, targets: Iterable[Target]) -> None:
        """
        Announce startup, schedule both ticks and run the first cycle.

        An unreachable notification sink is logged; monitoring starts anyway.
        """
        self._targets = list(targets)

        try:
            reachable = await self.notifier.test_connection()
        except (httpx.HTTPError, NotificationDeliveryError) as e:
            self.logger.notification_error("test_connection", str(e))
            reachable = False

        if reachable:
            await self._notify("startup", self.notifier.send_startup_notice())
        else:
            self.logger.warning("notifier_unreachable")

        self.job_manager.schedule(self.config.monitoring_cron, MONITORING_JOB, self._monitoring_tick)
        self.job_manager.schedule(self.config.statistics_cron, STATISTICS_JOB, self.send_statistics_report)
        self.job_manager.start_all()
        self._is_running = True
        self.logger.log("monitor_started", targets=len(self._targets),
                        monitoring_cron=self.config.monitoring_cron,
                        statistics_cron=self.config.statistics_cron)

        if self.config.run_on_start:
            await self.run_cycle(self._targets)

    async def stop(self) -> None:
        """Cancel both ticks and send a best-effort shutdown notice."""
        self.job_manager.stop_all()
        await self._notify("shutdown", self.notifier.send_shutdown_notice())
        self._is_running = False
        self._targets = []
        self.logger.log("monitor_stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._is_running,
            "consecutive_errors": self.circuit_breaker.get_stats().consecutive_errors,
            "has_active_jobs": self.job_manager.has_active_jobs,
        }

    async def _monitoring_tick(self) -> None:
        await self.run_cycle(self._targets)

    # Cycle

    async def run_cycle(self, targets: Optional[Iterable[Target]] = None) -> Optional[CycleReport]:
        """
        Check every enabled target once.

        Returns:
            CycleReport, or None when the cycle was skipped (already running
            or outside operating hours)
        """
        if self._cycle_in_flight:
            self.logger.cycle_skipped("cycle_in_progress")
            return None

        hours = self.operating_hours.status()
        if not hours.is_operating:
            self.logger.cycle_skipped("outside_operating_hours")
            return None

        self._cycle_in_flight = True
        try:
            active = [t for t in (self._targets if targets is None else targets) if t.monitoring_enabled]
            cycle_id = f"{utc_now().strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:6]}"
            aggregator = CycleAggregator()
            aggregator.start_timer()
            self.logger.cycle_start(cycle_id, len(active))

            for index, target in enumerate(active):
                if index > 0 and self.config.inter_request_delay > 0:
                    await self.sleeper(self.config.inter_request_delay)
                aggregator.add_outcome(await self._check_target(target))

            aggregator.stop_timer()
            report = aggregator.build_report(cycle_id)
            self.logger.cycle_complete(
                cycle_id,
                round(report.summary.duration_seconds * 1000, 1),
                report.summary.succeeded,
                report.summary.errors,
            )
            return report
        finally:
            self._cycle_in_flight = False

    async def _check_target(self, target: Target) -> CycleOutcome:
        if not self.circuit_breaker.can_execute():
            self.logger.target_check(target.id, target.url, CycleStatus.ERROR.value, 0.0,
                                     reason=FailureReason.CIRCUIT_OPEN.value)
            return CycleOutcome(
                target_id=target.id,
                url=target.url,
                status=CycleStatus.ERROR,
                error="Circuit breaker is open",
                error_reason=FailureReason.CIRCUIT_OPEN,
            )

        start = time.perf_counter()
        target.total_checks += 1
        self._update_stats(self.repository.increment_checks)

        try:
            snapshot = await self.fetch_chain.fetch(target)
            detection = self.detector.detect(target, snapshot)
        except (FetchError, StorageIOError) as e:
            return await self._record_failure(target, e, start)
        except Exception as e:
            # Unexpected bug in one target must not abort the cycle
            self.logger.error("target_unexpected_error", target=target.id, url=target.url,
                              error=f"{type(e).__name__}: {e}")
            return await self._record_failure(target, e, start)

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._update_stats(self.repository.record_execution_time, elapsed_ms)
        self.circuit_breaker.record_success()

        target.last_checked_at = snapshot.fetched_at
        target.last_content_hash = detection.content_hash
        target.consecutive_errors = 0

        status = CycleStatus.NEW_LISTINGS if detection.has_new_listings else CycleStatus.UNCHANGED
        self.logger.detection(target.url, status.value, detection.new_count,
                              detection.total_monitored, detection.confidence.value)

        if detection.has_new_listings:
            if detection.cold_start and not self.config.notify_on_cold_start:
                self.logger.log("cold_start_baseline", target=target.id, listings=detection.new_count)
            else:
                target.new_listing_count += detection.new_count
                self._update_stats(self.repository.increment_new_listings, detection.new_count)
                await self._notify("new_listings", self.notifier.send_new_listing_notification(
                    NotificationData(
                        url=target.url,
                        new_listings=detection.new_listings,
                        total_monitored=detection.total_monitored,
                        confidence=detection.confidence,
                        detected_at=detection.detected_at,
                        execution_time=elapsed_ms / 1000,
                    )
                ))

        self.logger.target_check(target.id, target.url, status.value, round(elapsed_ms, 1),
                                 strategy=snapshot.strategy_used, cold_start=detection.cold_start)
        return CycleOutcome(
            target_id=target.id,
            url=target.url,
            status=status,
            new_listings=detection.new_listings,
            confidence=detection.confidence,
            execution_time_ms=elapsed_ms,
            cold_start=detection.cold_start,
            strategy_used=snapshot.strategy_used,
        )

    async def _record_failure(self, target: Target, error: Exception, start: float) -> CycleOutcome:
        elapsed_ms = (time.perf_counter() - start) * 1000
        reason = error.reason if isinstance(error, FetchError) else FailureReason.OTHER

        target.error_count += 1
        target.consecutive_errors += 1
        self._update_stats(self.repository.increment_errors)
        self._update_stats(self.repository.record_execution_time, elapsed_ms)

        was_open = self.circuit_breaker.state == CircuitState.OPEN
        should_stop = self.circuit_breaker.record_error(f"{target.id}: {reason.value}")

        if should_stop and not was_open:
            if self.alert_throttle.should_send("circuit_open"):
                await self._notify("circuit_open", self.notifier.send_error_alert(
                    target.url,
                    f"circuit_open after {self.circuit_breaker.get_stats().consecutive_errors} errors: {error}",
                ))
        elif self.alert_throttle.should_send(f"{target.id}:error"):
            await self._notify("error_alert", self.notifier.send_error_alert(target.url, f"{reason.value}: {error}"))

        self.logger.target_check(target.id, target.url, CycleStatus.ERROR.value, round(elapsed_ms, 1),
                                 reason=reason.value, error=str(error))
        return CycleOutcome(
            target_id=target.id,
            url=target.url,
            status=CycleStatus.ERROR,
            execution_time_ms=elapsed_ms,
            error=str(error),
            error_reason=reason,
        )

    # Statistics and notifications

    async def send_statistics_report(self) -> None:
        """Send the aggregate statistics; failures are logged."""
        try:
            stats = self.repository.get_stats()
        except StorageIOError as e:
            self.logger.error("statistics_read_failed", error=str(e))
            return
        await self._notify("statistics", self.notifier.send_statistics_report(stats))

    def _update_stats(self, update: Callable[..., None], *args: Any) -> None:
        try:
            update(*args)
        except StorageIOError as e:
            self.logger.warning("statistics_write_failed", error=str(e))

    async def _notify(self, kind: str, delivery: Awaitable[None]) -> None:
        """Await one delivery; a broken channel never stalls monitoring."""
        try:
            await delivery
        except NotificationDeliveryError as e:
            self.logger.notification_error(kind, str(e))
        except Exception as e:
            # A misbehaving sink is logged like a failed delivery
            self.logger.notification_error(kind, f"{type(e).__name__}: {e}")
