"""Exceptions raised by messaging clients.

The delivery queue branches on these types: throttling reschedules without
consuming a retry, an unavailable recipient is dropped, and any other
DeliveryError (or unexpected exception) goes through retry with backoff.
"""

from typing import Optional


class DeliveryError(Exception):
    """A send attempt failed; the message may be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ThrottledError(DeliveryError):
    """The messaging API asked us to slow down.

    Attributes:
        retry_after: Seconds the server asked us to wait before the next attempt
    """

    def __init__(self, message: str, retry_after: float, status_code: Optional[int] = 429) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class RecipientUnavailableError(DeliveryError):
    """The recipient can never be reached (e.g. the user blocked the bot)."""
