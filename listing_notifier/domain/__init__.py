"""Domain models for users, listings, matches, notifications and reminders."""

from .models import (
    Listing,
    ListingStats,
    ListingType,
    Match,
    MatchingStats,
    Notification,
    Reminder,
    ReminderStats,
    User,
)

__all__ = [
    "User",
    "Listing",
    "ListingType",
    "Match",
    "Notification",
    "Reminder",
    "ListingStats",
    "MatchingStats",
    "ReminderStats",
]
