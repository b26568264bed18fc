"""Cron job management on top of APScheduler."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from listing_monitor.monitoring.logger import StructuredLogger


@dataclass
class ScheduledJob:
    name: str
    cron: str
    func: Callable[[], Awaitable[Any]]
    trigger: CronTrigger


class JobManager:
    """
    Named cron jobs that are started and stopped together.

    Each job runs with ``max_instances=1`` and ``coalesce=True``: a tick that
    fires while the previous run is still going is dropped, never queued.
    """

    def __init__(
        self,
        timezone: str = "Asia/Tokyo",
        scheduler_factory: Callable[..., AsyncIOScheduler] = AsyncIOScheduler,
        logger: Optional[StructuredLogger] = None
    ):
        self.timezone = timezone
        self.scheduler_factory = scheduler_factory
        self.logger = logger or StructuredLogger()
        self._jobs: Dict[str, ScheduledJob] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None

    def schedule(self, cron: str, name: str, func: Callable[[], Awaitable[Any]]) -> None:
        """
        Register a job; replaces any job with the same name.

        Raises:
            ValueError: If the cron expression is invalid
        """
        trigger = CronTrigger.from_crontab(cron, timezone=self.timezone)
        self._jobs[name] = ScheduledJob(name=name, cron=cron, func=func, trigger=trigger)
        if self._scheduler is not None:
            self._add(self._scheduler, self._jobs[name])

    def start_all(self) -> None:
        """Start every registered job. Must be called from a running event loop."""
        if self._scheduler is not None:
            return
        scheduler = self.scheduler_factory(timezone=self.timezone)
        for job in self._jobs.values():
            self._add(scheduler, job)
        scheduler.start()
        self._scheduler = scheduler
        self.logger.log("jobs_started", jobs=sorted(self._jobs))

    def stop_all(self) -> None:
        """Stop the scheduler and forget every job."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self.logger.log("jobs_stopped", jobs=sorted(self._jobs))
        self._jobs.clear()

    @property
    def has_active_jobs(self) -> bool:
        return self._scheduler is not None and bool(self._jobs)

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        status: Dict[str, Dict[str, Any]] = {}
        for name, job in self._jobs.items():
            next_run = None
            if self._scheduler is not None:
                scheduled = self._scheduler.get_job(name)
                next_run = scheduled.next_run_time if scheduled is not None else None
            status[name] = {"cron": job.cron, "running": self._scheduler is not None, "next_run": next_run}
        return status

    @staticmethod
    def _add(scheduler: AsyncIOScheduler, job: ScheduledJob) -> None:
        scheduler.add_job(
            job.func,
            trigger=job.trigger,
            id=job.name,
            name=job.name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
