"""ORM models and conversions to and from domain models.

Timestamps are ISO-8601 strings with a ``Z`` suffix; set-valued attributes
are JSON arrays (sorted) in text columns. Each (user, listing) table carries
a named unique index so duplicates are rejected by storage.
"""

import json
from typing import Iterable, Optional, Set

from sqlalchemy import Boolean, Column, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from listing_notifier.domain.models import Listing, Match, Notification, Reminder, User
from listing_notifier.logging import get_logger
from listing_notifier.utils.timestamps import from_storage, to_storage

logger = get_logger(__name__, component="database")

Base = declarative_base()

MATCH_PAIR_INDEX = "uq_matches_user_listing"
NOTIFICATION_PAIR_INDEX = "uq_notifications_user_listing"
REMINDER_PAIR_INDEX = "uq_reminders_user_listing"


class JSONStringSet(TypeDecorator):
    """Store a set of strings as a sorted JSON array."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Optional[Iterable[str]], dialect) -> str:
        return json.dumps(sorted(value or ()))

    def process_result_value(self, value: Optional[str], dialect) -> Set[str]:
        if not value:
            return set()
        return set(json.loads(value))


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False, unique=True)
    username = Column(String(255), nullable=True)
    expertise = Column(JSONStringSet, nullable=False, default=set)
    skills = Column(JSONStringSet, nullable=False, default=set)
    created_at = Column(String(50), nullable=False)

    def to_domain(self) -> User:
        return User(
            id=self.id,
            external_id=self.external_id,
            username=self.username,
            expertise=self.expertise,
            skills=self.skills,
            created_at=from_storage(self.created_at),
        )

    @classmethod
    def from_domain(cls, user: User) -> "UserModel":
        return cls(
            id=user.id,
            external_id=user.external_id,
            username=user.username,
            expertise=user.expertise,
            skills=user.skills,
            created_at=to_storage(user.created_at),
        )


class ListingModel(Base):
    """Listings keyed by their stable external id."""

    __tablename__ = "listings"

    id = Column(String(64), primary_key=True)
    title = Column(Text, nullable=False)
    slug = Column(String(255), nullable=False)
    deadline = Column(String(50), nullable=False)
    usd_value = Column(Float, nullable=False, default=0.0)
    token = Column(String(32), nullable=True)
    type = Column(String(16), nullable=False)
    compensation_type = Column(String(32), nullable=True)
    sponsor_name = Column(String(255), nullable=True)
    mapped_skills = Column(JSONStringSet, nullable=False, default=set)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)
    last_fetched_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_listings_active_deadline", "is_active", "deadline"),
    )

    def to_domain(self) -> Listing:
        return Listing(
            id=self.id,
            title=self.title,
            slug=self.slug,
            deadline=from_storage(self.deadline),
            usd_value=self.usd_value,
            token=self.token,
            type=self.type,
            compensation_type=self.compensation_type,
            sponsor_name=self.sponsor_name,
            mapped_skills=self.mapped_skills,
            is_active=self.is_active,
            created_at=from_storage(self.created_at),
            last_fetched_at=from_storage(self.last_fetched_at),
        )

    def apply(self, listing: Listing) -> None:
        """Copy mutable attributes from a freshly fetched listing."""
        self.title = listing.title
        self.slug = listing.slug
        self.deadline = to_storage(listing.deadline)
        self.usd_value = listing.usd_value
        self.token = listing.token
        self.type = listing.type.value
        self.compensation_type = listing.compensation_type
        self.sponsor_name = listing.sponsor_name
        self.mapped_skills = listing.mapped_skills
        self.is_active = listing.is_active
        self.last_fetched_at = to_storage(listing.last_fetched_at)

    @classmethod
    def from_domain(cls, listing: Listing) -> "ListingModel":
        model = cls(id=listing.id, created_at=to_storage(listing.created_at))
        model.apply(listing)
        return model


class MatchModel(Base):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    listing_id = Column(String(64), ForeignKey("listings.id"), nullable=False)
    score = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index(MATCH_PAIR_INDEX, "user_id", "listing_id", unique=True),
        Index("idx_matches_active_created", "is_active", "created_at"),
    )

    def to_domain(self) -> Match:
        return Match(
            id=self.id,
            user_id=self.user_id,
            listing_id=self.listing_id,
            score=self.score,
            is_active=self.is_active,
            created_at=from_storage(self.created_at),
        )

    @classmethod
    def from_domain(cls, match: Match) -> "MatchModel":
        return cls(
            id=match.id,
            user_id=match.user_id,
            listing_id=match.listing_id,
            score=match.score,
            is_active=match.is_active,
            created_at=to_storage(match.created_at),
        )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    listing_id = Column(String(64), ForeignKey("listings.id"), nullable=False)
    message_type = Column(String(32), nullable=False, default="skill_match")
    sent_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index(NOTIFICATION_PAIR_INDEX, "user_id", "listing_id", unique=True),
        Index("idx_notifications_user_sent", "user_id", "sent_at"),
    )

    def to_domain(self) -> Notification:
        return Notification(
            id=self.id,
            user_id=self.user_id,
            listing_id=self.listing_id,
            message_type=self.message_type,
            sent_at=from_storage(self.sent_at),
        )

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationModel":
        return cls(
            id=notification.id,
            user_id=notification.user_id,
            listing_id=notification.listing_id,
            message_type=notification.message_type,
            sent_at=to_storage(notification.sent_at),
        )


class ReminderModel(Base):
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    listing_id = Column(String(64), ForeignKey("listings.id"), nullable=False)
    interval_hours = Column(Integer, nullable=False)
    last_sent_at = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index(REMINDER_PAIR_INDEX, "user_id", "listing_id", unique=True),
        Index("idx_reminders_active_created", "is_active", "created_at"),
    )

    def to_domain(self) -> Reminder:
        return Reminder(
            id=self.id,
            user_id=self.user_id,
            listing_id=self.listing_id,
            interval_hours=self.interval_hours,
            last_sent_at=from_storage(self.last_sent_at),
            is_active=self.is_active,
            created_at=from_storage(self.created_at),
        )

    @classmethod
    def from_domain(cls, reminder: Reminder) -> "ReminderModel":
        return cls(
            id=reminder.id,
            user_id=reminder.user_id,
            listing_id=reminder.listing_id,
            interval_hours=reminder.interval_hours,
            last_sent_at=to_storage(reminder.last_sent_at),
            is_active=reminder.is_active,
            created_at=to_storage(reminder.created_at),
        )


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes that do not exist yet."""
    from sqlalchemy import inspect

    Base.metadata.create_all(engine, checkfirst=True)
    tables = inspect(engine).get_table_names()
    logger.info(
        f"Database schema ready. Tables: {', '.join(sorted(tables))}",
        extra={"event": "database.schema_ready"},
    )
