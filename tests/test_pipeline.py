"""Unit tests for the pipeline runner.

Tests the ProcessPipeline and ScanPipeline orchestration including:
- Step order and catch-and-continue on failures
- Failure detection from returned run results
- Lock behavior (overlapping ticks are skipped)
- Tick statistics against a real database
"""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest

from listing_notifier.delivery import DeliveryQueue
from listing_notifier.ingestion.models import IngestionResult
from listing_notifier.matching.models import MatchRunStats
from listing_notifier.notifications.models import NotificationRunResult, ReminderRunResult
from listing_notifier.persistence import (
    ListingRepository,
    PersistenceError,
    close_database,
    get_session,
    init_database,
)
from listing_notifier.pipeline import CleanupResult, ProcessPipeline, ScanPipeline, TickStats
from tests.helpers import (
    BASE_TIME,
    FakeClock,
    RecordingMessenger,
    create_test_listing,
    create_test_user,
    store_listing,
    store_match,
    store_user,
)


def make_collaborators():
    """Mocks for the match engine and both schedulers, all reporting quiet runs."""
    match_engine = Mock()
    match_engine.compute_matches.return_value = MatchRunStats()
    match_engine.remove_duplicate_matches.return_value = 0

    notification_scheduler = Mock()
    notification_scheduler.run_once.return_value = NotificationRunResult(status="idle")

    reminder_scheduler = Mock()
    reminder_scheduler.deactivate_expired.return_value = 0
    reminder_scheduler.run_once.return_value = ReminderRunResult(status="idle")

    return match_engine, notification_scheduler, reminder_scheduler


class TestProcessPipeline:
    """Test suite for ProcessPipeline."""

    @pytest.fixture(autouse=True)
    def setup_database(self):
        """Setup test database before each test."""
        init_database("sqlite:///:memory:")
        yield
        close_database()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def queue(self, clock):
        return DeliveryQueue(RecordingMessenger(clock), autostart=False, clock=clock, sleep=clock.sleep)

    def make_pipeline(self, queue, clock, collaborators=None):
        match_engine, notification_scheduler, reminder_scheduler = collaborators or make_collaborators()
        return ProcessPipeline(match_engine, notification_scheduler, reminder_scheduler, queue, clock=clock)

    def test_runs_all_steps_in_order(self, queue, clock):
        """Test a quiet tick runs every step and reports no errors."""
        pipeline = self.make_pipeline(queue, clock)

        result = pipeline.run_once()

        assert [s.name for s in result.steps] == ["cleanup", "match", "notify", "remind", "stats"]
        assert result.had_errors is False
        assert result.skipped is False
        assert result.started_at == BASE_TIME

    def test_steps_receive_tick_start_time(self, queue, clock):
        collaborators = make_collaborators()
        match_engine, notification_scheduler, reminder_scheduler = collaborators
        pipeline = self.make_pipeline(queue, clock, collaborators)

        pipeline.run_once()

        match_engine.compute_matches.assert_called_once_with(BASE_TIME)
        notification_scheduler.run_once.assert_called_once_with(BASE_TIME)
        reminder_scheduler.run_once.assert_called_once_with(BASE_TIME)
        reminder_scheduler.deactivate_expired.assert_called_once_with(BASE_TIME)

    def test_failing_step_does_not_stop_later_steps(self, queue, clock):
        """Test an exception in the match step is recorded and the tick continues."""
        collaborators = make_collaborators()
        match_engine, notification_scheduler, reminder_scheduler = collaborators
        match_engine.compute_matches.side_effect = RuntimeError("matcher exploded")
        pipeline = self.make_pipeline(queue, clock, collaborators)

        result = pipeline.run_once()

        match_step = result.step("match")
        assert match_step.succeeded is False
        assert "matcher exploded" in match_step.error
        assert result.had_errors is True
        notification_scheduler.run_once.assert_called_once()
        reminder_scheduler.run_once.assert_called_once()
        assert result.step("stats").succeeded is True

    def test_cleanup_failure_is_isolated(self, queue, clock):
        collaborators = make_collaborators()
        match_engine, _, reminder_scheduler = collaborators
        match_engine.remove_duplicate_matches.side_effect = RuntimeError("boom")
        pipeline = self.make_pipeline(queue, clock, collaborators)

        result = pipeline.run_once()

        assert result.step("cleanup").succeeded is False
        assert result.step("match").succeeded is True
        reminder_scheduler.run_once.assert_called_once()

    def test_cleanup_parts_run_after_listing_expiry_fails(self, queue, clock):
        """Test the reminder sweep and duplicate repair still run when listing expiry fails."""
        collaborators = make_collaborators()
        match_engine, _, reminder_scheduler = collaborators
        reminder_scheduler.deactivate_expired.return_value = 2
        match_engine.remove_duplicate_matches.return_value = 1
        pipeline = self.make_pipeline(queue, clock, collaborators)

        with patch.object(ListingRepository, "deactivate_expired", side_effect=PersistenceError("disk I/O error")):
            result = pipeline.run_once()

        cleanup_step = result.step("cleanup")
        assert cleanup_step.succeeded is False
        assert "listings" in cleanup_step.error
        assert cleanup_step.result.reminders_deactivated == 2
        assert cleanup_step.result.duplicate_matches_removed == 1
        reminder_scheduler.deactivate_expired.assert_called_once_with(BASE_TIME)
        match_engine.remove_duplicate_matches.assert_called_once()

    def test_error_status_marks_step_failed(self, queue, clock):
        """Test a step returning an error status counts as failed without raising."""
        collaborators = make_collaborators()
        _, notification_scheduler, reminder_scheduler = collaborators
        notification_scheduler.run_once.return_value = NotificationRunResult(
            status="render_failed", error="no image"
        )
        reminder_scheduler.run_once.return_value = ReminderRunResult(status="error")
        pipeline = self.make_pipeline(queue, clock, collaborators)

        result = pipeline.run_once()

        assert result.step("notify").succeeded is False
        assert result.step("notify").error == "no image"
        assert result.step("remind").succeeded is False
        assert result.step("remind").error == "status=error"

    def test_match_error_field_marks_step_failed(self, queue, clock):
        collaborators = make_collaborators()
        collaborators[0].compute_matches.return_value = MatchRunStats(error="database is locked")
        pipeline = self.make_pipeline(queue, clock, collaborators)

        result = pipeline.run_once()

        assert result.step("match").succeeded is False
        assert result.step("match").error == "database is locked"

    def test_duplicate_status_is_not_a_failure(self, queue, clock):
        collaborators = make_collaborators()
        collaborators[1].run_once.return_value = NotificationRunResult(status="duplicate")
        pipeline = self.make_pipeline(queue, clock, collaborators)

        assert pipeline.run_once().step("notify").succeeded is True

    def test_overlapping_tick_is_skipped(self, queue, clock):
        """Test a tick is skipped while another holds the lock."""
        collaborators = make_collaborators()
        pipeline = self.make_pipeline(queue, clock, collaborators)

        pipeline._lock.acquire()
        try:
            result = pipeline.run_once()
        finally:
            pipeline._lock.release()

        assert result.skipped is True
        assert result.steps == []
        collaborators[0].compute_matches.assert_not_called()

        assert pipeline.run_once().skipped is False

    def test_cleanup_deactivates_expired_listings(self, queue, clock):
        store_listing(create_test_listing("L1", deadline=BASE_TIME - timedelta(minutes=1)))
        store_listing(create_test_listing("L2"))
        pipeline = self.make_pipeline(queue, clock)

        result = pipeline.run_once()

        cleanup = result.step("cleanup").result
        assert isinstance(cleanup, CleanupResult)
        assert cleanup.listings_deactivated == 1
        with get_session() as session:
            assert ListingRepository(session).get("L1").is_active is False
            assert ListingRepository(session).get("L2").is_active is True

    def test_stats_reflect_storage_and_queue(self, queue, clock):
        """Test the stats step reports listing, match and queue counts."""
        user = store_user(create_test_user("1001"))
        store_listing(create_test_listing("L1"))
        store_listing(create_test_listing("L2", type="project"))
        store_match(user.id, "L1")
        pipeline = self.make_pipeline(queue, clock)

        stats = pipeline.run_once().step("stats").result

        assert isinstance(stats, TickStats)
        assert stats.listings.total_listings == 2
        assert stats.listings.active_listings == 2
        assert stats.matching.total_matches == 1
        assert stats.queue.queue_size == 0
        assert stats.queue.is_processing is False

    def test_stats_failure_after_database_closed(self, queue, clock):
        pipeline = self.make_pipeline(queue, clock)
        close_database()

        result = pipeline.run_once()

        assert result.step("stats").succeeded is False
        assert result.step("cleanup").succeeded is False
        assert result.step("match").succeeded is True


class TestScanPipeline:
    """Test suite for ScanPipeline."""

    def test_successful_scan(self):
        clock = FakeClock()
        ingestor = Mock()
        ingestor.run_once.return_value = IngestionResult(fetched=3, upserted=3)

        result = ScanPipeline(ingestor, clock=clock).run_once()

        ingestor.run_once.assert_called_once_with(BASE_TIME)
        assert result.ingestion.upserted == 3
        assert result.had_errors is False
        assert result.skipped is False

    def test_ingestion_errors_are_reported(self):
        ingestor = Mock()
        ingestor.run_once.return_value = IngestionResult(errors=["bounties: HTTP 503"])

        result = ScanPipeline(ingestor, clock=FakeClock()).run_once()

        assert result.had_errors is True
        assert result.error is None

    def test_exception_is_captured(self):
        """Test an unexpected exception is recorded instead of propagating."""
        ingestor = Mock()
        ingestor.run_once.side_effect = RuntimeError("network down")

        result = ScanPipeline(ingestor, clock=FakeClock()).run_once()

        assert result.error == "network down"
        assert result.ingestion is None
        assert result.had_errors is True

    def test_overlapping_scan_is_skipped(self):
        ingestor = Mock()
        pipeline = ScanPipeline(ingestor, clock=FakeClock())

        pipeline._lock.acquire()
        try:
            result = pipeline.run_once()
        finally:
            pipeline._lock.release()

        assert result.skipped is True
        ingestor.run_once.assert_not_called()
