"""Rate-limited, retrying delivery queue.

Producers call ``enqueue`` and return immediately; a single drain loop per
queue instance takes up to ``batch_size`` messages from the head, sends the
ready ones concurrently, requeues failures with exponential backoff, and
sleeps ``batch_processing_delay`` between iterations. The loop exits when
the queue is empty and is restarted by the next enqueue.
"""

import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Deque, Iterable, List, Optional, Union

from listing_notifier.config.models import DeliveryConfig
from listing_notifier.logging import get_logger
from listing_notifier.logging.context import log_context
from listing_notifier.utils.timestamps import utc_now

from .exceptions import RecipientUnavailableError, ThrottledError
from .models import BatchResult, MessageKind, QueuedMessage, QueueStatus, generate_message_id

logger = get_logger(__name__, component="delivery")

_SENDERS = {
    MessageKind.PHOTO: "send_photo",
    MessageKind.TEXT: "send_text",
    MessageKind.DOCUMENT: "send_document",
}


class DeliveryQueue:
    """In-memory FIFO-with-delay queue in front of a messaging client.

    The deque and the processing flag are guarded by one lock; starting a
    drain loop while one is running is a no-op.

    Args:
        client: Object with ``send_photo``/``send_text``/``send_document``
            methods taking ``(chat_id, content, options)``
        batch_size: Messages taken from the head per drain iteration
        retry_delay: Base backoff in seconds (doubled per failed attempt)
        max_retries: Default retries before a message is dropped
        batch_processing_delay: Seconds slept between drain iterations
        max_workers: Upper bound on concurrent sends within a batch
        autostart: Start a background drain thread on enqueue
        clock: Returns the current aware UTC datetime
        sleep: Called with seconds between iterations
    """

    def __init__(
        self,
        client,
        batch_size: int = 25,
        retry_delay: float = 5.0,
        max_retries: int = 3,
        batch_processing_delay: float = 1.0,
        max_workers: int = 8,
        autostart: bool = True,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self.batch_size = batch_size
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.batch_processing_delay = batch_processing_delay
        self.max_workers = max_workers
        self.autostart = autostart
        self._clock = clock
        self._sleep = sleep

        self._queue: Deque[QueuedMessage] = deque()
        self._lock = threading.Lock()
        self._is_processing = False
        self._idle = threading.Event()
        self._idle.set()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, client, config: DeliveryConfig, **kwargs) -> "DeliveryQueue":
        return cls(
            client,
            batch_size=config.batch_size,
            retry_delay=config.retry_delay_seconds,
            max_retries=config.max_retries,
            batch_processing_delay=config.batch_processing_delay_seconds,
            **kwargs,
        )

    def enqueue(self, messages: Union[QueuedMessage, Iterable[QueuedMessage]]) -> List[str]:
        """Append messages to the tail and make sure a drain loop is running.

        Returns:
            Generated ids of the enqueued messages
        """
        if isinstance(messages, QueuedMessage):
            messages = [messages]

        now = self._clock()
        stamped = []
        for message in messages:
            message.id = generate_message_id()
            message.retry_count = 0
            message.created_at = now
            if message.scheduled_at is None:
                message.scheduled_at = now
            if message.max_retries is None:
                message.max_retries = self.max_retries
            stamped.append(message)

        with self._lock:
            self._queue.extend(stamped)
            queue_size = len(self._queue)
            should_start = self.autostart and not self._is_processing
            if should_start:
                self._mark_processing()

        logger.info(
            f"Enqueued {len(stamped)} message(s). Queue size: {queue_size}",
            extra={"event": "delivery.enqueued", "count": len(stamped), "queue_size": queue_size},
        )

        if should_start:
            self._thread = threading.Thread(
                target=self._run_loop, name="delivery-queue-drain", daemon=True
            )
            self._thread.start()

        return [message.id for message in stamped]

    def drain(self) -> None:
        """Run the drain loop on the calling thread until the queue is empty.

        If a background loop is already active, waits for it instead.
        """
        with self._lock:
            if self._is_processing:
                already_running = True
            else:
                already_running = False
                self._mark_processing()

        if already_running:
            self._idle.wait()
            return

        self._run_loop()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no drain loop is active. Returns False on timeout."""
        return self._idle.wait(timeout)

    def get_status(self) -> QueueStatus:
        now = self._clock()
        with self._lock:
            future = [m.scheduled_at for m in self._queue if m.scheduled_at > now]
            return QueueStatus(
                queue_size=len(self._queue),
                is_processing=self._is_processing,
                next_scheduled_at=min(future) if future else None,
            )

    def clear(self) -> int:
        """Discard all pending messages. Returns how many were dropped."""
        with self._lock:
            count = len(self._queue)
            self._queue.clear()

        logger.info(
            f"Delivery queue cleared ({count} pending messages discarded)",
            extra={"event": "delivery.cleared", "count": count},
        )
        return count

    def pending(self) -> List[QueuedMessage]:
        """Snapshot of queued messages in order."""
        with self._lock:
            return list(self._queue)

    def _mark_processing(self) -> None:
        self._is_processing = True
        self._idle.clear()

    def _run_loop(self) -> None:
        logger.debug("Drain loop started", extra={"event": "delivery.drain.started"})
        try:
            while True:
                with self._lock:
                    # Emptiness check and flag reset are atomic with enqueue
                    if not self._queue:
                        self._is_processing = False
                        self._idle.set()
                        break

                self.process_batch()

                with self._lock:
                    has_more = bool(self._queue)
                if has_more:
                    self._sleep(self.batch_processing_delay)
        except Exception as e:
            logger.error(
                f"Drain loop aborted: {e}",
                exc_info=True,
                extra={"event": "delivery.drain.failed", "error_type": type(e).__name__},
            )
            with self._lock:
                self._is_processing = False
                self._idle.set()
            return

        logger.debug("Drain loop finished", extra={"event": "delivery.drain.finished"})

    def process_batch(self) -> BatchResult:
        """Run one drain iteration: take a batch, send ready messages, requeue failures."""
        now = self._clock()
        with self._lock:
            batch = [self._queue.popleft() for _ in range(min(self.batch_size, len(self._queue)))]
            ready = [m for m in batch if m.is_ready(now)]
            deferred = [m for m in batch if not m.is_ready(now)]
            self._queue.extendleft(reversed(deferred))

        result = BatchResult(attempted=len(ready), deferred=len(deferred))
        if not ready:
            return result

        logger.debug(
            f"Sending batch of {len(ready)} message(s)",
            extra={"event": "delivery.batch.started", "ready": len(ready), "deferred": len(deferred)},
        )

        errors = self._send_all(ready)

        now = self._clock()
        requeue = []
        for message, error in zip(ready, errors):
            if error is None:
                result.sent += 1
            elif isinstance(error, RecipientUnavailableError):
                result.rejected += 1
                logger.info(
                    f"Chat {message.chat_id} unavailable, dropping message {message.id}",
                    extra={"event": "delivery.message.rejected", "message_id": message.id},
                )
            elif isinstance(error, ThrottledError):
                result.throttled += 1
                message.scheduled_at = now + timedelta(seconds=error.retry_after)
                requeue.append(message)
                logger.info(
                    f"Throttled, retrying message {message.id} after {error.retry_after}s",
                    extra={
                        "event": "delivery.message.throttled",
                        "message_id": message.id,
                        "retry_after_seconds": error.retry_after,
                    },
                )
            elif self._schedule_retry(message, error, now):
                result.retried += 1
                requeue.append(message)
            else:
                result.dropped += 1

        if requeue:
            with self._lock:
                self._queue.extend(requeue)

        logger.info(
            f"Batch completed: {result.sent} sent, {result.attempted - result.sent} failed",
            extra={
                "event": "delivery.batch.completed",
                "sent": result.sent,
                "throttled": result.throttled,
                "retried": result.retried,
                "dropped": result.dropped,
                "rejected": result.rejected,
            },
        )
        return result

    def _schedule_retry(self, message: QueuedMessage, error: BaseException, now: datetime) -> bool:
        """Count a failed attempt; reschedule with backoff or report the drop."""
        message.retry_count += 1

        if message.retry_count > message.max_retries:
            logger.error(
                f"Max retries exceeded for message {message.id} to chat {message.chat_id}: {error}",
                extra={
                    "event": "delivery.message.dropped",
                    "message_id": message.id,
                    "retry_count": message.retry_count,
                    "error_type": type(error).__name__,
                },
            )
            return False

        delay = self.retry_delay * 2 ** (message.retry_count - 1)
        message.scheduled_at = now + timedelta(seconds=delay)
        logger.warning(
            f"Send failed for message {message.id}, retry "
            f"{message.retry_count}/{message.max_retries} in {delay:g}s: {error}",
            extra={
                "event": "delivery.message.retry_scheduled",
                "message_id": message.id,
                "retry_count": message.retry_count,
                "delay_seconds": delay,
                "error_type": type(error).__name__,
            },
        )
        return True

    def _send_all(self, messages: List[QueuedMessage]) -> List[Optional[BaseException]]:
        if len(messages) == 1:
            return [self._send_captured(messages[0])]

        workers = max(1, min(self.max_workers, len(messages)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="delivery-send") as pool:
            return list(pool.map(self._send_captured, messages))

    def _send_captured(self, message: QueuedMessage) -> Optional[BaseException]:
        try:
            self._send(message)
        except Exception as e:
            return e
        return None

    def _send(self, message: QueuedMessage) -> None:
        with log_context(message_id=message.id, user_id=message.user_id):
            sender = getattr(self._client, _SENDERS[message.payload.kind])
            sender(message.chat_id, message.payload.content, dict(message.payload.options))
            logger.debug(
                f"Delivered message {message.id} to chat {message.chat_id}",
                extra={"event": "delivery.message.sent", "kind": message.payload.kind.value},
            )
