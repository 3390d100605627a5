"""Outbound message delivery: rate-limited queue and messaging client."""

from .exceptions import DeliveryError, RecipientUnavailableError, ThrottledError
from .models import BatchResult, MessageKind, MessagePayload, QueuedMessage, QueueStatus
from .queue import DeliveryQueue
from .telegram_client import TelegramClient

__all__ = [
    "DeliveryQueue",
    "TelegramClient",
    "QueuedMessage",
    "MessagePayload",
    "MessageKind",
    "QueueStatus",
    "BatchResult",
    "DeliveryError",
    "ThrottledError",
    "RecipientUnavailableError",
]
