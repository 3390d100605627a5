"""Thin Telegram Bot API client over a requests session.

Failures are classified for the delivery queue:

- HTTP 429 (or ``error_code`` 429) -> ThrottledError carrying ``retry_after``
- HTTP 403 -> RecipientUnavailableError (bot blocked, user deactivated)
- anything else, including timeouts and connection errors -> DeliveryError
"""

import logging
from typing import Any, Dict, Optional

import requests

from listing_notifier.logging import get_logger

from .exceptions import DeliveryError, RecipientUnavailableError, ThrottledError

logger = get_logger(__name__, component="delivery")

DEFAULT_API_URL = "https://api.telegram.org"
DEFAULT_RETRY_AFTER_SECONDS = 60


class TelegramClient:
    """Send photos, text and documents to chats.

    Attributes:
        timeout: HTTP timeout per send attempt in seconds
    """

    def __init__(
        self,
        token: str,
        timeout: int = 30,
        api_url: str = DEFAULT_API_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not token or not token.strip():
            raise ValueError("Telegram bot token cannot be empty")

        self.timeout = timeout
        self._base_url = f"{api_url.rstrip('/')}/bot{token.strip()}"
        self._session = session or requests.Session()

    def send_photo(self, chat_id: str, content: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("sendPhoto", {"chat_id": chat_id, "photo": content, **(options or {})})

    def send_text(self, chat_id: str, content: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("sendMessage", {"chat_id": chat_id, "text": content, **(options or {})})

    def send_document(self, chat_id: str, content: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("sendDocument", {"chat_id": chat_id, "document": content, **(options or {})})

    def close(self) -> None:
        self._session.close()

    def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a Bot API method and return its ``result`` payload.

        Raises:
            ThrottledError: On 429
            RecipientUnavailableError: On 403
            DeliveryError: On any other failure
        """
        url = f"{self._base_url}/{method}"
        chat_id = body.get("chat_id")

        try:
            response = self._session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"{method} to chat {chat_id} timed out after {self.timeout} seconds",
                extra={"event": "delivery.send.timeout", "method": method, "chat_id": chat_id},
            )
            raise DeliveryError(f"{method} timed out after {self.timeout} seconds") from e
        except requests.exceptions.RequestException as e:
            logger.warning(
                f"{method} to chat {chat_id} failed: {e}",
                extra={
                    "event": "delivery.send.connection_error",
                    "method": method,
                    "chat_id": chat_id,
                    "error_type": type(e).__name__,
                },
            )
            raise DeliveryError(f"{method} failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        error_code = data.get("error_code") or response.status_code
        if response.status_code < 400 and data.get("ok", True):
            return data.get("result", {})

        description = data.get("description") or response.reason or "unknown error"

        if error_code == 429:
            parameters = data.get("parameters") or {}
            retry_after = parameters.get("retry_after") or DEFAULT_RETRY_AFTER_SECONDS
            raise ThrottledError(
                f"{method} throttled: {description}",
                retry_after=float(retry_after),
            )

        if error_code == 403:
            raise RecipientUnavailableError(
                f"Chat {chat_id} unavailable: {description}", status_code=403
            )

        log_level = logging.WARNING if error_code >= 500 else logging.ERROR
        logger.log(
            log_level,
            f"{method} to chat {chat_id} failed with {error_code}: {description}",
            extra={"event": "delivery.send.http_error", "status_code": error_code, "method": method},
        )
        raise DeliveryError(f"{method} failed with {error_code}: {description}", status_code=error_code)
