"""Result types and exceptions for the notification and reminder schedulers."""

from dataclasses import dataclass
from typing import Optional

from listing_notifier.domain.models import Listing, Match, Reminder, User


class NotificationError(Exception):
    """Base exception for notification-related errors."""


class RenderError(NotificationError):
    """Building a message (thumbnail or caption) failed; nothing was enqueued."""


class SubscriptionError(NotificationError):
    """A reminder subscription request refers to an unknown user or listing."""


@dataclass
class NotificationCandidate:
    """An unnotified match together with the records needed to render it."""

    match: Match
    user: User
    listing: Listing


@dataclass
class ReminderCandidate:
    """A due reminder together with the records needed to render it."""

    reminder: Reminder
    user: User
    listing: Listing


@dataclass
class NotificationRunResult:
    """Outcome of one notification step.

    Attributes:
        status: "sent", "idle" (nothing to send), "duplicate" (pair already
            notified), "render_failed" or "error" (storage failure)
        user_id: Recipient of the selected candidate, if any
        listing_id: Listing of the selected candidate, if any
        message_id: Queue id of the enqueued message
        error: Failure description for render_failed/error
    """

    status: str
    user_id: Optional[int] = None
    listing_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

    def is_success(self) -> bool:
        return self.status == "sent"


@dataclass
class ReminderRunResult:
    """Outcome of one reminder step.

    Attributes:
        status: "sent", "idle", "render_failed" or "error"
        deactivated: Reminders switched off by the expiry sweep
        due: Reminders that were due before dispatch
        reminder_id: Reminder that was dispatched, if any
        message_id: Queue id of the enqueued message
        error: Failure description for render_failed/error
    """

    status: str
    deactivated: int = 0
    due: int = 0
    reminder_id: Optional[int] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

    def is_success(self) -> bool:
        return self.status == "sent"
