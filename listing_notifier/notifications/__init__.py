"""Skill-match notifications and recurring reminders."""

from .models import (
    NotificationCandidate,
    NotificationError,
    NotificationRunResult,
    ReminderCandidate,
    ReminderRunResult,
    RenderError,
    SubscriptionError,
)
from .reminders import ReminderScheduler
from .rendering import ThumbnailRenderer
from .scheduler import NotificationScheduler
from .templates import CaptionRenderer

__all__ = [
    "NotificationScheduler",
    "ReminderScheduler",
    "CaptionRenderer",
    "ThumbnailRenderer",
    "NotificationCandidate",
    "ReminderCandidate",
    "NotificationRunResult",
    "ReminderRunResult",
    "NotificationError",
    "RenderError",
    "SubscriptionError",
]
