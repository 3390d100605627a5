"""Message and status types for the delivery queue."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class MessageKind(str, Enum):
    PHOTO = "photo"
    TEXT = "text"
    DOCUMENT = "document"


@dataclass(frozen=True)
class MessagePayload:
    """What to send.

    Attributes:
        kind: Which messaging API call delivers the payload
        content: Photo/document reference, or the message text
        options: Extra send parameters (caption, parse_mode, reply_markup, ...)
    """

    kind: MessageKind
    content: str
    options: Dict[str, Any] = field(default_factory=dict)


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


@dataclass
class QueuedMessage:
    """A unit of outbound work. Lives only in queue memory.

    ``id``, ``retry_count`` and ``created_at`` are stamped by the queue on
    enqueue; ``scheduled_at`` is the earliest instant the message may be sent
    (now, when left unset). ``max_retries`` falls back to the queue default.
    """

    user_id: Optional[int]
    chat_id: str
    payload: MessagePayload
    scheduled_at: Optional[datetime] = None
    max_retries: Optional[int] = None
    retry_count: int = 0
    id: str = ""
    created_at: Optional[datetime] = None

    def is_ready(self, now: datetime) -> bool:
        return self.scheduled_at <= now


@dataclass
class QueueStatus:
    """Point-in-time view of a delivery queue.

    Attributes:
        queue_size: Messages waiting (including ones scheduled in the future)
        is_processing: Whether a drain loop is active
        next_scheduled_at: Earliest ``scheduled_at`` still in the future, if any
    """

    queue_size: int
    is_processing: bool
    next_scheduled_at: Optional[datetime] = None


@dataclass
class BatchResult:
    """Outcome of one drain iteration."""

    attempted: int = 0
    sent: int = 0
    deferred: int = 0
    throttled: int = 0
    retried: int = 0
    dropped: int = 0
    rejected: int = 0
