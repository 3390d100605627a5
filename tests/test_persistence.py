"""Unit tests for persistence layer."""

from datetime import timedelta

import pytest
from sqlalchemy import text

from listing_notifier.domain.models import Notification
from listing_notifier.persistence import (
    DatabaseConnectionError,
    DataIntegrityError,
    ListingRepository,
    MatchRepository,
    NotificationRepository,
    RecordNotFoundError,
    ReminderRepository,
    UserRepository,
    close_database,
    get_session,
    init_database,
)
from listing_notifier.persistence.schema import MATCH_PAIR_INDEX
from tests.helpers import (
    BASE_TIME,
    create_test_listing,
    create_test_user,
    store_listing,
    store_match,
    store_reminder,
    store_user,
)


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_init_database_creates_file_and_parent_directories(self, tmp_path):
        """Test a file URL creates missing directories and the database file."""
        db_file = tmp_path / "nested" / "notifier.db"

        init_database(f"sqlite:///{db_file}")

        assert db_file.exists()
        with get_session() as session:
            assert session is not None
        close_database()

    def test_init_database_invalid_url_raises_error(self):
        """Test an empty URL raises DatabaseConnectionError."""
        with pytest.raises(DatabaseConnectionError):
            init_database("")

    def test_get_session_before_init_raises(self):
        """Test using a session without init_database fails clearly."""
        close_database()
        with pytest.raises(DatabaseConnectionError):
            with get_session():
                pass

    def test_session_rolls_back_on_error(self):
        """Test an exception inside the session discards its writes."""
        init_database("sqlite:///:memory:")
        try:
            with pytest.raises(RuntimeError):
                with get_session() as session:
                    UserRepository(session).create(create_test_user("rollback"))
                    raise RuntimeError("abort")

            with get_session() as session:
                assert UserRepository(session).get_by_external_id("rollback") is None
        finally:
            close_database()


class TestUserRepository:
    """Tests for UserRepository."""

    @pytest.fixture(autouse=True)
    def setup_database(self):
        """Setup test database before each test."""
        init_database("sqlite:///:memory:")
        yield
        close_database()

    def test_create_and_lookup_by_external_id(self):
        """Test created users are returned with an id and normalized sets."""
        user = store_user(create_test_user("55", expertise=[" development ", "design"]))

        assert user.id is not None
        assert user.expertise == {"DEVELOPMENT", "DESIGN"}
        with get_session() as session:
            loaded = UserRepository(session).get_by_external_id("55")
        assert loaded == user

    def test_duplicate_external_id_raises_integrity_error(self):
        """Test the external id is unique."""
        store_user(external_id="55")

        with pytest.raises(DataIntegrityError):
            store_user(external_id="55")

    def test_set_expertise_normalizes(self):
        """Test set_expertise replaces and normalizes the category set."""
        user = store_user(expertise=())

        with get_session() as session:
            updated = UserRepository(session).set_expertise(user.id, ["growth", "Content"])

        assert updated.expertise == {"GROWTH", "CONTENT"}

    def test_set_skills_on_missing_user_raises(self):
        """Test updating a missing user raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                UserRepository(session).set_skills(999, ["rust"])

    def test_get_users_with_expertise_skips_empty_sets(self):
        """Test users without expertise are not matching candidates."""
        store_user(external_id="1", expertise=("DESIGN",))
        store_user(external_id="2", expertise=())

        with get_session() as session:
            users = UserRepository(session).get_users_with_expertise()

        assert [u.external_id for u in users] == ["1"]


class TestListingRepository:
    """Tests for ListingRepository."""

    @pytest.fixture(autouse=True)
    def setup_database(self):
        """Setup test database before each test."""
        init_database("sqlite:///:memory:")
        yield
        close_database()

    def test_upsert_inserts_then_updates_without_touching_created_at(self):
        """Test re-ingestion refreshes fields but keeps created_at."""
        store_listing(create_test_listing("L1", title="Old title", created_at=BASE_TIME))

        refreshed = create_test_listing(
            "L1", title="New title", created_at=BASE_TIME + timedelta(days=1), usd_value=99
        )
        with get_session() as session:
            result = ListingRepository(session).upsert(refreshed)

        assert result.title == "New title"
        assert result.usd_value == 99
        assert result.created_at == BASE_TIME

    def test_mapped_skills_round_trip_as_set(self):
        """Test mapped skills are stored and loaded as a set."""
        store_listing(create_test_listing("L1", mapped_skills=("DESIGN", "CONTENT")))

        with get_session() as session:
            listing = ListingRepository(session).get("L1")

        assert listing.mapped_skills == {"DESIGN", "CONTENT"}

    def test_get_active_with_mapped_skills_filters(self):
        """Test inactive, expired and skill-less listings are excluded."""
        store_listing(create_test_listing("open"))
        store_listing(create_test_listing("no-skills", mapped_skills=()))
        store_listing(create_test_listing("expired", deadline=BASE_TIME - timedelta(hours=1)))
        store_listing(create_test_listing("inactive", is_active=False))

        with get_session() as session:
            listings = ListingRepository(session).get_active_with_mapped_skills(BASE_TIME)

        assert [l.id for l in listings] == ["open"]

    def test_deactivate_expired_counts_rows(self):
        """Test only active listings past their deadline are deactivated."""
        store_listing(create_test_listing("past", deadline=BASE_TIME - timedelta(minutes=1)))
        store_listing(create_test_listing("future"))

        with get_session() as session:
            count = ListingRepository(session).deactivate_expired(BASE_TIME)

        assert count == 1
        with get_session() as session:
            repo = ListingRepository(session)
            assert repo.get("past").is_active is False
            assert repo.get("future").is_active is True

    def test_mark_inactive_missing_listing_raises(self):
        """Test marking an unknown listing raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                ListingRepository(session).mark_inactive("nope")

    def test_get_stats(self):
        """Test listing stats count active bounties and projects."""
        store_listing(create_test_listing("b1", usd_value=1000))
        store_listing(create_test_listing("p1", type="project", usd_value=3000))
        store_listing(create_test_listing("old", is_active=False, usd_value=50))

        with get_session() as session:
            stats = ListingRepository(session).get_stats()

        assert stats.total_listings == 3
        assert stats.active_listings == 2
        assert stats.bounties == 1
        assert stats.projects == 1
        assert stats.average_usd_value == 2000


class TestMatchRepository:
    """Tests for MatchRepository."""

    @pytest.fixture(autouse=True)
    def setup_database(self):
        """Setup test database before each test."""
        init_database("sqlite:///:memory:")
        self.user = store_user()
        store_listing(create_test_listing("L1"))
        store_listing(create_test_listing("L2"))
        yield
        close_database()

    def test_duplicate_pair_rejected_by_storage(self):
        """Test the unique index rejects a second match for the same pair."""
        store_match(self.user.id, "L1")

        with pytest.raises(DataIntegrityError):
            store_match(self.user.id, "L1")

    def test_exists(self):
        """Test exists reflects stored pairs."""
        store_match(self.user.id, "L1")

        with get_session() as session:
            repo = MatchRepository(session)
            assert repo.exists(self.user.id, "L1")
            assert not repo.exists(self.user.id, "L2")

    def test_pending_notification_excludes_notified_pairs(self):
        """Test matches that already have a notification are not pending."""
        store_match(self.user.id, "L1", created_at=BASE_TIME)
        store_match(self.user.id, "L2", created_at=BASE_TIME + timedelta(minutes=1))
        with get_session() as session:
            NotificationRepository(session).create(
                Notification(user_id=self.user.id, listing_id="L1", sent_at=BASE_TIME)
            )

        with get_session() as session:
            pending = MatchRepository(session).get_pending_notification(BASE_TIME)

        assert [m.listing_id for m in pending] == ["L2"]

    def test_remove_duplicates_keeps_most_recent(self):
        """Test the repair pass keeps the newest row of each duplicate group."""
        with get_session() as session:
            session.execute(text(f"DROP INDEX {MATCH_PAIR_INDEX}"))
        store_match(self.user.id, "L1", score=1, created_at=BASE_TIME)
        store_match(self.user.id, "L1", score=2, created_at=BASE_TIME + timedelta(hours=1))
        store_match(self.user.id, "L2", score=1)

        with get_session() as session:
            removed = MatchRepository(session).remove_duplicates()

        assert removed == 1
        with get_session() as session:
            matches = MatchRepository(session).get_active()
        by_listing = {m.listing_id: m for m in matches}
        assert len(matches) == 2
        assert by_listing["L1"].score == 2

    def test_get_stats_counts_notifications_since_midnight(self):
        """Test notifications_sent_today starts at UTC midnight."""
        store_match(self.user.id, "L1")
        with get_session() as session:
            repo = NotificationRepository(session)
            repo.create(Notification(user_id=self.user.id, listing_id="L1", sent_at=BASE_TIME))
            repo.create(
                Notification(user_id=self.user.id, listing_id="L2", sent_at=BASE_TIME - timedelta(days=1))
            )

        with get_session() as session:
            stats = MatchRepository(session).get_stats(BASE_TIME)

        assert stats.total_matches == 1
        assert stats.active_matches == 1
        assert stats.users_with_matches == 1
        assert stats.notifications_sent_today == 1


class TestNotificationRepository:
    """Tests for NotificationRepository."""

    @pytest.fixture(autouse=True)
    def setup_database(self):
        """Setup test database before each test."""
        init_database("sqlite:///:memory:")
        self.user = store_user()
        store_listing(create_test_listing("L1"))
        store_listing(create_test_listing("L2"))
        yield
        close_database()

    def test_duplicate_notification_rejected(self):
        """Test a pair can only be notified once."""
        note = Notification(user_id=self.user.id, listing_id="L1", sent_at=BASE_TIME)
        with get_session() as session:
            NotificationRepository(session).create(note)

        with pytest.raises(DataIntegrityError):
            with get_session() as session:
                NotificationRepository(session).create(note)

    def test_notified_since_window(self):
        """Test notified_since is inclusive of the window start."""
        with get_session() as session:
            NotificationRepository(session).create(
                Notification(user_id=self.user.id, listing_id="L1", sent_at=BASE_TIME)
            )

        with get_session() as session:
            repo = NotificationRepository(session)
            assert repo.notified_since(self.user.id, BASE_TIME)
            assert not repo.notified_since(self.user.id, BASE_TIME + timedelta(seconds=1))

    def test_clear_all(self):
        """Test clear_all removes every notification."""
        with get_session() as session:
            repo = NotificationRepository(session)
            repo.create(Notification(user_id=self.user.id, listing_id="L1", sent_at=BASE_TIME))
            repo.create(Notification(user_id=self.user.id, listing_id="L2", sent_at=BASE_TIME))

        with get_session() as session:
            assert NotificationRepository(session).clear_all() == 2
        with get_session() as session:
            assert NotificationRepository(session).count_since(BASE_TIME - timedelta(days=1)) == 0


class TestReminderRepository:
    """Tests for ReminderRepository."""

    @pytest.fixture(autouse=True)
    def setup_database(self):
        """Setup test database before each test."""
        init_database("sqlite:///:memory:")
        self.user = store_user()
        store_listing(create_test_listing("L1"))
        yield
        close_database()

    def test_create_and_get(self):
        """Test a stored reminder is retrievable by pair."""
        stored = store_reminder(self.user.id, "L1", interval_hours=6)

        with get_session() as session:
            repo = ReminderRepository(session)
            assert repo.get(self.user.id, "L1") == stored
            assert repo.exists(self.user.id, "L1")

    def test_duplicate_pair_rejected(self):
        """Test one reminder per (user, listing)."""
        store_reminder(self.user.id, "L1")

        with pytest.raises(DataIntegrityError):
            store_reminder(self.user.id, "L1")

    def test_update_last_sent(self):
        """Test update_last_sent advances the timestamp."""
        stored = store_reminder(self.user.id, "L1")

        with get_session() as session:
            ReminderRepository(session).update_last_sent(stored.id, BASE_TIME)

        with get_session() as session:
            assert ReminderRepository(session).get(self.user.id, "L1").last_sent_at == BASE_TIME

    def test_update_last_sent_missing_raises(self):
        """Test updating an unknown reminder raises RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                ReminderRepository(session).update_last_sent(404, BASE_TIME)

    def test_deactivate_and_reactivate(self):
        """Test reactivation resets interval and send history."""
        store_reminder(self.user.id, "L1", interval_hours=6, last_sent_at=BASE_TIME)

        with get_session() as session:
            repo = ReminderRepository(session)
            assert repo.deactivate(self.user.id, "L1") is True
            assert repo.get_active() == []
            reminder = repo.reactivate(self.user.id, "L1", 24)

        assert reminder.is_active is True
        assert reminder.interval_hours == 24
        assert reminder.last_sent_at is None

    def test_deactivate_missing_returns_false(self):
        """Test deactivating a pair with no reminder returns False."""
        with get_session() as session:
            assert ReminderRepository(session).deactivate(self.user.id, "L1") is False

    def test_deactivate_for_closed_listings(self):
        """Test reminders for inactive or expired listings are switched off."""
        store_listing(create_test_listing("expired", deadline=BASE_TIME - timedelta(hours=1)))
        store_listing(create_test_listing("closed", is_active=False))
        store_reminder(self.user.id, "L1")
        store_reminder(self.user.id, "expired")
        store_reminder(self.user.id, "closed")

        with get_session() as session:
            count = ReminderRepository(session).deactivate_for_closed_listings(BASE_TIME)

        assert count == 2
        with get_session() as session:
            assert [r.listing_id for r in ReminderRepository(session).get_active()] == ["L1"]

    def test_get_stats_counts_due_reminders(self):
        """Test reminders_ready_to_send uses the interval."""
        store_listing(create_test_listing("L2"))
        store_reminder(self.user.id, "L1", interval_hours=6, last_sent_at=BASE_TIME - timedelta(hours=7))
        store_reminder(self.user.id, "L2", interval_hours=6, last_sent_at=BASE_TIME - timedelta(hours=1))

        with get_session() as session:
            stats = ReminderRepository(session).get_stats(BASE_TIME)

        assert stats.total_reminders == 2
        assert stats.active_reminders == 2
        assert stats.reminders_ready_to_send == 1
        assert stats.users_with_reminders == 1
