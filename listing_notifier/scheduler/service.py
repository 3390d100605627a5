"""Scheduler service driving the scan and process ticks."""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from listing_notifier.logging import get_logger

logger = get_logger(__name__, component="scheduler")

SCAN_JOB_ID = "listing-scan"
PROCESS_JOB_ID = "listing-process"


@dataclass
class ScheduledJob:
    """A periodic tick registered on the scheduler."""

    id: str
    name: str
    func: Callable[[], object]
    interval_seconds: int


class SchedulerService:
    """
    Wraps APScheduler to run the scan and process ticks on independent intervals.

    Uses BackgroundScheduler so ticks run on worker threads while the main
    thread waits for a shutdown signal.
    """

    def __init__(
        self,
        scan_callable: Callable[[], object],
        process_callable: Callable[[], object],
        scan_interval_seconds: int,
        process_interval_seconds: int,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            scan_callable: Ingestion tick (e.g., ScanPipeline.run_once)
            process_callable: Processing tick (e.g., ProcessPipeline.run_once)
            scan_interval_seconds: Seconds between scan ticks
            process_interval_seconds: Seconds between process ticks
            shutdown_event: Optional event to set on shutdown for coordination
        """
        self.jobs: Dict[str, ScheduledJob] = {
            SCAN_JOB_ID: ScheduledJob(SCAN_JOB_ID, "Listing Scan", scan_callable, scan_interval_seconds),
            PROCESS_JOB_ID: ScheduledJob(
                PROCESS_JOB_ID, "Match And Notify", process_callable, process_interval_seconds
            ),
        }
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # No overlapping ticks of the same job
                "coalesce": True,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register both jobs and start the scheduler.

        Each job runs once immediately, then at its own interval.
        """
        next_run = datetime.now(timezone.utc)
        for job in self.jobs.values():
            self.scheduler.add_job(
                func=job.func,
                trigger=IntervalTrigger(seconds=job.interval_seconds, timezone=timezone.utc),
                id=job.id,
                name=job.name,
                replace_existing=True,
                misfire_grace_time=job.interval_seconds,
                next_run_time=next_run,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started: scan every {self.jobs[SCAN_JOB_ID].interval_seconds}s, "
            f"process every {self.jobs[PROCESS_JOB_ID].interval_seconds}s",
            extra={
                "event": "scheduler.started",
                "scan_interval_seconds": self.jobs[SCAN_JOB_ID].interval_seconds,
                "process_interval_seconds": self.jobs[PROCESS_JOB_ID].interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for running ticks to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self, job_ids: Optional[List[str]] = None) -> None:
        """
        Run jobs immediately on the calling thread, scan first.

        Args:
            job_ids: Jobs to run; defaults to all of them
        """
        for job_id in job_ids or list(self.jobs):
            job = self.jobs.get(job_id)
            if job is None:
                raise KeyError(f"Unknown job: {job_id}")
            logger.info(
                f"Triggering immediate run of {job.name}",
                extra={"event": "scheduler.trigger_now", "job_id": job_id},
            )
            job.func()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self, job_id: str = PROCESS_JOB_ID) -> Optional[datetime]:
        """
        Get the next scheduled run time of a job.

        Returns:
            Next run time as a datetime, or None if not scheduled
        """
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None
