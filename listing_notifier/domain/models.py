"""Core domain models for users, listings, matches, notifications and reminders.

Set-valued attributes (expertise, skills, mapped skill categories) are real
sets here; persistence decides how to serialize them.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel, Field, field_validator

from listing_notifier.utils.timestamps import ensure_utc


def _normalize_categories(values) -> Set[str]:
    if values is None:
        return set()
    normalized = set()
    for value in values:
        if not isinstance(value, str):
            raise ValueError(f"Category must be a string, got: {value!r}")
        stripped = value.strip().upper()
        if stripped:
            normalized.add(stripped)
    return normalized


class ListingType(str, Enum):
    """Listing variants: time-boxed task or ongoing engagement."""

    BOUNTY = "bounty"
    PROJECT = "project"


class User(BaseModel):
    """A chat user who can receive notifications."""

    id: Optional[int] = Field(None, description="Storage key (None until persisted)")
    external_id: str = Field(..., min_length=1, description="Opaque chat id on the messaging platform")
    username: Optional[str] = Field(None, description="Display handle")
    expertise: Set[str] = Field(default_factory=set, description="Declared expertise categories")
    skills: Set[str] = Field(default_factory=set, description="Declared skills")
    created_at: Optional[datetime] = None

    @field_validator("expertise", "skills", mode="before")
    @classmethod
    def normalize_sets(cls, v):
        return _normalize_categories(v)

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class Listing(BaseModel):
    """An externally sourced opportunity with a reward and a deadline.

    The external ``id`` is the natural key; re-ingestion upserts by it.
    """

    id: str = Field(..., min_length=1, description="Stable external listing id")
    title: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    deadline: datetime
    usd_value: float = Field(0.0, ge=0)
    token: Optional[str] = None
    type: ListingType
    compensation_type: Optional[str] = None
    sponsor_name: Optional[str] = None
    mapped_skills: Set[str] = Field(default_factory=set, description="Derived skill categories")
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_fetched_at: Optional[datetime] = None

    @field_validator("mapped_skills", mode="before")
    @classmethod
    def normalize_mapped_skills(cls, v):
        return _normalize_categories(v)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("deadline", "created_at", "last_fetched_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def is_expired(self, now: datetime) -> bool:
        """True once the deadline has passed."""
        return self.deadline < ensure_utc(now)

    def is_open(self, now: datetime) -> bool:
        """Active and not past the deadline."""
        return self.is_active and not self.is_expired(now)


class Match(BaseModel):
    """A recorded skill overlap between a user and a listing."""

    id: Optional[int] = None
    user_id: int
    listing_id: str
    score: int = Field(..., ge=1, description="Number of overlapping skill categories")
    is_active: bool = True
    created_at: Optional[datetime] = None

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class Notification(BaseModel):
    """Record that a skill-match message was sent for a (user, listing) pair."""

    id: Optional[int] = None
    user_id: int
    listing_id: str
    message_type: str = "skill_match"
    sent_at: datetime

    @field_validator("sent_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class Reminder(BaseModel):
    """A user's recurring reminder subscription for one listing."""

    id: Optional[int] = None
    user_id: int
    listing_id: str
    interval_hours: int = Field(..., ge=1)
    last_sent_at: Optional[datetime] = Field(None, description="None means never sent")
    is_active: bool = True
    created_at: Optional[datetime] = None

    @field_validator("last_sent_at", "created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.interval_hours)

    def next_due_at(self) -> Optional[datetime]:
        """When the reminder becomes due again (None if it was never sent)."""
        if self.last_sent_at is None:
            return None
        return self.last_sent_at + self.interval

    def is_due(self, now: datetime) -> bool:
        """Due when never sent, or once ``interval_hours`` have fully elapsed."""
        if self.last_sent_at is None:
            return True
        return ensure_utc(now) - self.last_sent_at >= self.interval


class ListingStats(BaseModel):
    total_listings: int = 0
    active_listings: int = 0
    bounties: int = 0
    projects: int = 0
    average_usd_value: int = 0


class MatchingStats(BaseModel):
    total_matches: int = 0
    active_matches: int = 0
    notifications_sent_today: int = 0
    users_with_matches: int = 0


class ReminderStats(BaseModel):
    total_reminders: int = 0
    active_reminders: int = 0
    reminders_ready_to_send: int = 0
    users_with_reminders: int = 0
