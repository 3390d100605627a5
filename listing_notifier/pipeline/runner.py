"""Tick orchestration for the process and scan pipelines."""

import threading
import time
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable, List, Optional
from uuid import uuid4

from listing_notifier.delivery.queue import DeliveryQueue
from listing_notifier.ingestion.service import ListingIngestor
from listing_notifier.logging import get_logger
from listing_notifier.logging.context import log_context
from listing_notifier.matching.engine import MatchEngine
from listing_notifier.notifications.reminders import ReminderScheduler
from listing_notifier.notifications.scheduler import NotificationScheduler
from listing_notifier.persistence import (
    ListingRepository,
    MatchRepository,
    ReminderRepository,
    get_session,
)
from listing_notifier.utils.timestamps import utc_now

from .models import CleanupResult, ScanResult, StepOutcome, TickResult, TickStats

logger = get_logger(__name__, component="pipeline")

_FAILED_STATUSES = {"error", "render_failed"}


def _step_error(result: Any) -> Optional[str]:
    """Error reported by a step's return value, if any."""
    error = getattr(result, "error", None)
    if error:
        return str(error)
    status = getattr(result, "status", None)
    if status in _FAILED_STATUSES:
        return f"status={status}"
    return None


class ProcessPipeline:
    """
    Runs one process tick: cleanup, match, notify, remind, stats.

    Every step runs even when an earlier one failed; each outcome is recorded
    on the returned TickResult. Overlapping ticks are skipped, not queued.
    """

    STEPS = ("cleanup", "match", "notify", "remind", "stats")

    def __init__(
        self,
        match_engine: MatchEngine,
        notification_scheduler: NotificationScheduler,
        reminder_scheduler: ReminderScheduler,
        queue: DeliveryQueue,
        session_factory: Callable[[], AbstractContextManager] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the process pipeline.

        Args:
            match_engine: Computes and repairs matches
            notification_scheduler: Sends at most one match notification per tick
            reminder_scheduler: Sends at most one due reminder per tick
            queue: Delivery queue, reported in tick stats
            session_factory: Context manager factory yielding a SQLAlchemy session
            clock: Returns the current aware UTC datetime
        """
        self.match_engine = match_engine
        self.notification_scheduler = notification_scheduler
        self.reminder_scheduler = reminder_scheduler
        self.queue = queue
        self._session_factory = session_factory
        self._clock = clock
        self._lock = threading.Lock()

    def run_once(self) -> TickResult:
        """
        Execute one process tick.

        Returns:
            TickResult with one StepOutcome per step, or skipped=True when a
            previous tick is still running
        """
        started_at = self._clock()
        tick_id = uuid4().hex

        if not self._lock.acquire(blocking=False):
            with log_context(tick_id=tick_id):
                logger.warning(
                    "Process tick skipped: previous tick still in progress",
                    extra={"event": "pipeline.tick.skipped", "reason": "lock_held"},
                )
            return TickResult(tick_id=tick_id, started_at=started_at, finished_at=self._clock(), skipped=True)

        try:
            with log_context(tick_id=tick_id):
                logger.info("Process tick started", extra={"event": "pipeline.tick.started"})

                steps: List[StepOutcome] = []
                for name in self.STEPS:
                    steps.append(self._run_step(name, getattr(self, f"_{name}"), started_at))

                result = TickResult(
                    tick_id=tick_id,
                    started_at=started_at,
                    finished_at=self._clock(),
                    steps=steps,
                )
                failed = [s.name for s in steps if not s.succeeded]
                logger.info(
                    "Process tick completed",
                    extra={
                        "event": "pipeline.tick.completed",
                        "duration_ms": int(result.duration_seconds * 1000),
                        "failed_steps": ",".join(failed) if failed else None,
                    },
                )
                return result
        finally:
            self._lock.release()

    def _run_step(self, name: str, step: Callable[[datetime], Any], now: datetime) -> StepOutcome:
        step_started = time.monotonic()
        try:
            value = step(now)
        except Exception as e:
            duration = time.monotonic() - step_started
            logger.error(
                f"Step {name} raised: {e}",
                exc_info=True,
                extra={"event": "pipeline.step.failed", "step": name, "error_type": type(e).__name__},
            )
            return StepOutcome(name=name, succeeded=False, duration_seconds=duration, error=str(e))

        duration = time.monotonic() - step_started
        error = _step_error(value)
        if error:
            logger.warning(
                f"Step {name} reported an error: {error}",
                extra={"event": "pipeline.step.failed", "step": name},
            )
        else:
            logger.debug(
                f"Step {name} finished",
                extra={"event": "pipeline.step.completed", "step": name, "duration_ms": int(duration * 1000)},
            )
        return StepOutcome(
            name=name,
            succeeded=error is None,
            duration_seconds=duration,
            result=value,
            error=error,
        )

    def _cleanup(self, now: datetime) -> CleanupResult:
        result = CleanupResult()
        result.listings_deactivated = self._cleanup_part(
            "listings", result, lambda: self._deactivate_expired_listings(now)
        )
        result.reminders_deactivated = self._cleanup_part(
            "reminders", result, lambda: self.reminder_scheduler.deactivate_expired(now)
        )
        result.duplicate_matches_removed = self._cleanup_part(
            "duplicate_matches", result, self.match_engine.remove_duplicate_matches
        )

        logger.info(
            "Cleanup finished",
            extra={
                "event": "pipeline.cleanup.completed",
                "listings_deactivated": result.listings_deactivated,
                "reminders_deactivated": result.reminders_deactivated,
                "duplicate_matches_removed": result.duplicate_matches_removed,
                "failed_parts": len(result.errors),
            },
        )
        return result

    def _cleanup_part(self, part: str, result: CleanupResult, action: Callable[[], int]) -> int:
        try:
            return action()
        except Exception as e:
            result.errors.append(f"{part}: {e}")
            logger.error(
                f"Cleanup of {part} failed: {e}",
                exc_info=True,
                extra={"event": "pipeline.cleanup.failed", "part": part, "error_type": type(e).__name__},
            )
            return 0

    def _deactivate_expired_listings(self, now: datetime) -> int:
        with self._session_factory() as session:
            return ListingRepository(session).deactivate_expired(now)

    def _match(self, now: datetime):
        return self.match_engine.compute_matches(now)

    def _notify(self, now: datetime):
        return self.notification_scheduler.run_once(now)

    def _remind(self, now: datetime):
        return self.reminder_scheduler.run_once(now)

    def _stats(self, now: datetime) -> TickStats:
        with self._session_factory() as session:
            stats = TickStats(
                listings=ListingRepository(session).get_stats(),
                matching=MatchRepository(session).get_stats(now),
                reminders=ReminderRepository(session).get_stats(now),
                queue=self.queue.get_status(),
            )

        logger.info(
            f"Listings: {stats.listings.active_listings} active of {stats.listings.total_listings}; "
            f"matches: {stats.matching.active_matches}; "
            f"reminders ready: {stats.reminders.reminders_ready_to_send}; "
            f"queue: {stats.queue.queue_size}",
            extra={
                "event": "pipeline.stats",
                "active_listings": stats.listings.active_listings,
                "active_matches": stats.matching.active_matches,
                "notifications_sent_today": stats.matching.notifications_sent_today,
                "active_reminders": stats.reminders.active_reminders,
                "reminders_ready_to_send": stats.reminders.reminders_ready_to_send,
                "queue_size": stats.queue.queue_size,
                "queue_processing": stats.queue.is_processing,
            },
        )
        return stats


class ScanPipeline:
    """Runs one listing ingestion pass, skipping if the previous one is still running."""

    def __init__(self, ingestor: ListingIngestor, clock: Callable[[], datetime] = utc_now):
        self.ingestor = ingestor
        self._clock = clock
        self._lock = threading.Lock()

    def run_once(self) -> ScanResult:
        started_at = self._clock()
        tick_id = uuid4().hex

        if not self._lock.acquire(blocking=False):
            with log_context(tick_id=tick_id):
                logger.warning(
                    "Scan skipped: previous scan still in progress",
                    extra={"event": "pipeline.scan.skipped", "reason": "lock_held"},
                )
            return ScanResult(tick_id=tick_id, started_at=started_at, finished_at=self._clock(), skipped=True)

        try:
            with log_context(tick_id=tick_id):
                logger.info("Scan started", extra={"event": "pipeline.scan.started"})
                result = ScanResult(tick_id=tick_id, started_at=started_at, finished_at=started_at)
                try:
                    result.ingestion = self.ingestor.run_once(started_at)
                except Exception as e:
                    result.error = str(e)
                    logger.error(
                        f"Scan failed: {e}",
                        exc_info=True,
                        extra={"event": "pipeline.scan.failed", "error_type": type(e).__name__},
                    )

                result.finished_at = self._clock()
                logger.info(
                    "Scan completed",
                    extra={
                        "event": "pipeline.scan.completed",
                        "duration_ms": int(result.duration_seconds * 1000),
                        "had_errors": result.had_errors,
                    },
                )
                return result
        finally:
            self._lock.release()
