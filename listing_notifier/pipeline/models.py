"""Data models for tick execution tracking and reporting."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from listing_notifier.delivery.models import QueueStatus
from listing_notifier.domain.models import ListingStats, MatchingStats, ReminderStats
from listing_notifier.ingestion.models import IngestionResult


@dataclass
class StepOutcome:
    """
    Outcome of one step of a process tick.

    Attributes:
        name: Step name (cleanup, match, notify, remind, stats)
        succeeded: False if the step raised or reported an error
        duration_seconds: Wall time spent in the step
        result: Whatever the step returned (run result, stats, ...)
        error: Error description when the step failed
    """

    name: str
    succeeded: bool
    duration_seconds: float = 0.0
    result: Any = None
    error: Optional[str] = None


@dataclass
class CleanupResult:
    """Counts from the cleanup step. Each part runs even if another failed."""

    listings_deactivated: int = 0
    reminders_deactivated: int = 0
    duplicate_matches_removed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None


@dataclass
class TickStats:
    """Snapshot logged at the end of every process tick."""

    listings: ListingStats
    matching: MatchingStats
    reminders: ReminderStats
    queue: QueueStatus


@dataclass
class TickResult:
    """
    Aggregate result of a process tick.

    Attributes:
        tick_id: Random id attached to every log line of the tick
        started_at: UTC timestamp when the tick began
        finished_at: UTC timestamp when the tick completed
        steps: Outcomes in execution order
        skipped: True when a previous tick still held the lock
    """

    tick_id: str
    started_at: datetime
    finished_at: datetime
    steps: List[StepOutcome] = field(default_factory=list)
    skipped: bool = False

    @property
    def had_errors(self) -> bool:
        return any(not step.succeeded for step in self.steps)

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def step(self, name: str) -> Optional[StepOutcome]:
        for outcome in self.steps:
            if outcome.name == name:
                return outcome
        return None


@dataclass
class ScanResult:
    """Result of a scan tick (listing ingestion)."""

    tick_id: str
    started_at: datetime
    finished_at: datetime
    ingestion: Optional[IngestionResult] = None
    skipped: bool = False
    error: Optional[str] = None

    @property
    def had_errors(self) -> bool:
        if self.error:
            return True
        return bool(self.ingestion and self.ingestion.had_errors)

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()
