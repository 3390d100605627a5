"""Integration tests for the scan and process ticks.

Tests end-to-end flow:
- Listings API (mocked) -> ingestion -> matching -> notification -> delivery
- At most one notification per tick, with the per-user cutoff window
- No repeat notifications across ticks
- Reminder subscriptions delivered through the same queue
- Real SQLite database (in-memory)
"""

from unittest.mock import Mock

import pytest

from listing_notifier.config.models import ListingsConfig, NotificationsConfig
from listing_notifier.delivery import DeliveryQueue, RecipientUnavailableError
from listing_notifier.ingestion import ListingIngestor
from listing_notifier.matching import MatchEngine
from listing_notifier.notifications import NotificationScheduler, ReminderScheduler, ThumbnailRenderer
from listing_notifier.persistence import close_database, init_database
from listing_notifier.pipeline import ProcessPipeline, ScanPipeline
from tests.helpers import FakeClock, RecordingMessenger, create_test_user, store_user

IMAGE_URL = "https://cdn.example/listing.png"


def make_details(listing_id):
    return {
        "id": listing_id,
        "title": f"Write docs {listing_id}",
        "slug": f"write-docs-{listing_id}",
        "deadline": "2025-11-10T00:00:00.000Z",
        "usdValue": 500,
        "token": "USDC",
        "type": "bounty",
        "sponsor": {"name": "Acme"},
        "skills": [{"skills": "Content", "subskills": ["Research"]}],
    }


@pytest.fixture
def integration_database():
    """Create an in-memory database for integration testing."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def listings_client():
    client = Mock()
    client.fetch_listings.side_effect = lambda tab: (
        [{"slug": "write-docs-a"}, {"slug": "write-docs-b"}] if tab == "bounties" else []
    )
    client.fetch_listing_details.side_effect = lambda slug: make_details(slug.rsplit("-", 1)[1])
    return client


class ListingSystem:
    """Wires the real components around a fake clock and messenger."""

    def __init__(self, listings_client):
        self.clock = FakeClock()
        self.messenger = RecordingMessenger(self.clock)
        self.queue = DeliveryQueue(
            self.messenger, autostart=False, clock=self.clock, sleep=self.clock.sleep
        )
        thumbnails = ThumbnailRenderer(IMAGE_URL)
        self.reminders = ReminderScheduler(self.queue, thumbnail_renderer=thumbnails, clock=self.clock)
        self.scan = ScanPipeline(
            ListingIngestor(listings_client, ListingsConfig(), clock=self.clock, sleep=self.clock.sleep),
            clock=self.clock,
        )
        self.process = ProcessPipeline(
            MatchEngine(clock=self.clock),
            NotificationScheduler(
                self.queue,
                thumbnail_renderer=thumbnails,
                config=NotificationsConfig(cutoff_window="1h"),
                clock=self.clock,
            ),
            self.reminders,
            self.queue,
            clock=self.clock,
        )

    def tick(self):
        result = self.process.run_once()
        self.queue.drain()
        return result

    def callbacks_sent_to(self, chat_id):
        return [
            options["reply_markup"]["inline_keyboard"][0][0]["callback_data"]
            for kind, cid, content, options in self.messenger.sent
            if cid == chat_id
        ]


@pytest.mark.usefixtures("integration_database")
class TestListingFlow:
    """End-to-end ticks against a real database."""

    @pytest.fixture
    def system(self, listings_client):
        store_user(create_test_user("1001", expertise=("CONTENT",)))
        store_user(create_test_user("2002", expertise=("DESIGN",)))
        return ListingSystem(listings_client)

    def test_scan_stores_listings(self, system):
        result = system.scan.run_once()

        assert result.had_errors is False
        assert result.ingestion.upserted == 2

    def test_matching_user_notified_once_per_listing(self, system):
        """Test one notification per tick, held by the cutoff, never repeated."""
        system.scan.run_once()

        first = system.tick()
        assert first.had_errors is False
        assert first.step("match").result.created == 2
        assert first.step("notify").result.status == "sent"
        assert len(system.messenger.sent) == 1

        # Same user was just notified; the cutoff window holds the second listing
        assert system.tick().step("notify").result.status == "idle"
        assert len(system.messenger.sent) == 1

        system.clock.advance(hours=1, seconds=1)
        assert system.tick().step("notify").result.status == "sent"

        system.clock.advance(hours=2)
        assert system.tick().step("notify").result.status == "idle"

        assert sorted(system.callbacks_sent_to("1001")) == ["remind_me:a", "remind_me:b"]
        assert system.callbacks_sent_to("2002") == []

    def test_reminder_delivered_through_queue(self, system):
        """Test a subscription produces a reminder on the next tick and again after the interval."""
        system.scan.run_once()
        system.reminders.subscribe("1001", "a", interval_hours=6)

        tick = system.tick()

        assert tick.step("remind").result.status == "sent"
        assert "stop_reminder:a" in system.callbacks_sent_to("1001")

        system.clock.advance(hours=1, seconds=1)
        assert system.tick().step("remind").result.status == "idle"

        system.clock.advance(hours=5)
        assert system.tick().step("remind").result.status == "sent"
        assert system.callbacks_sent_to("1001").count("stop_reminder:a") == 2

    def test_unavailable_recipient_does_not_block_others(self, system):
        """Test a blocked chat is dropped while the next user still receives messages."""
        store_user(create_test_user("3003", expertise=("CONTENT",)))
        system.messenger.fail("1001", lambda attempt: RecipientUnavailableError("blocked"))
        system.scan.run_once()

        system.tick()
        system.tick()

        assert len(system.messenger.attempts_for("1001")) == 1
        assert len(system.callbacks_sent_to("3003")) == 1
        assert system.queue.get_status().queue_size == 0
