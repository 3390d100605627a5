"""Recurring reminder scheduler and subscription operations.

Each run first deactivates reminders whose listing is inactive or past its
deadline, then sends the oldest-created due reminder and advances its
``last_sent_at``. One reminder per run; a backlog drains across ticks.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Callable, List, Optional

from listing_notifier.config.models import ListingsConfig, RemindersConfig
from listing_notifier.delivery.queue import DeliveryQueue
from listing_notifier.domain.models import Reminder
from listing_notifier.logging import get_logger
from listing_notifier.logging.context import log_context
from listing_notifier.persistence import (
    DataIntegrityError,
    ListingRepository,
    PersistenceError,
    ReminderRepository,
    UserRepository,
    get_session,
)
from listing_notifier.utils.timestamps import utc_now

from .models import ReminderCandidate, ReminderRunResult, RenderError, SubscriptionError
from .payloads import build_listing_context, build_photo_message, build_reminder_keyboard
from .rendering import ThumbnailRenderer
from .templates import CaptionRenderer

logger = get_logger(__name__, component="reminder")


class ReminderScheduler:
    """Sends due reminders and manages reminder subscriptions.

    Args:
        queue: Delivery queue that receives rendered messages
        caption_renderer: Jinja2 caption renderer
        thumbnail_renderer: Image reference provider
        config: Reminder defaults (interval for new subscriptions)
        listings_base_url: Base URL for the "Join" button
        session_factory: Context manager factory yielding a SQLAlchemy session
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        caption_renderer: Optional[CaptionRenderer] = None,
        thumbnail_renderer: Optional[ThumbnailRenderer] = None,
        config: Optional[RemindersConfig] = None,
        listings_base_url: str = ListingsConfig().base_url,
        session_factory: Callable[[], AbstractContextManager] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.queue = queue
        self.caption_renderer = caption_renderer or CaptionRenderer()
        self.thumbnail_renderer = thumbnail_renderer or ThumbnailRenderer()
        self.config = config or RemindersConfig()
        self.listings_base_url = listings_base_url
        self._session_factory = session_factory
        self._clock = clock

    def deactivate_expired(self, now: Optional[datetime] = None) -> int:
        """Deactivate active reminders whose listing closed. Returns how many."""
        now = now or self._clock()
        try:
            with self._session_factory() as session:
                count = ReminderRepository(session).deactivate_for_closed_listings(now)
        except PersistenceError as e:
            logger.warning(
                f"Reminder expiry sweep failed: {e}",
                extra={"event": "reminder.sweep.failed", "error_type": type(e).__name__},
            )
            return 0

        if count:
            logger.info(
                f"Deactivated {count} reminder(s) for closed listings",
                extra={"event": "reminder.sweep.deactivated", "count": count},
            )
        return count

    def select_due_reminders(self, now: Optional[datetime] = None) -> List[ReminderCandidate]:
        """Sweep closed listings, then return due reminders oldest-created first."""
        now = now or self._clock()
        self.deactivate_expired(now)
        try:
            return self._load_due(now)
        except PersistenceError as e:
            logger.warning(
                f"Could not load due reminders: {e}",
                extra={"event": "reminder.select.failed", "error_type": type(e).__name__},
            )
            return []

    def _load_due(self, now: datetime) -> List[ReminderCandidate]:
        with self._session_factory() as session:
            due = [r for r in ReminderRepository(session).get_active() if r.is_due(now)]
            if not due:
                return []

            users = UserRepository(session)
            listings = ListingRepository(session).get_many(r.listing_id for r in due)

            candidates = []
            for reminder in due:
                user = users.get(reminder.user_id)
                listing = listings.get(reminder.listing_id)
                if user is None or listing is None or not listing.is_open(now):
                    continue
                candidates.append(ReminderCandidate(reminder=reminder, user=user, listing=listing))
            return candidates

    def run_once(self, now: Optional[datetime] = None) -> ReminderRunResult:
        """Sweep, then dispatch the first due reminder (if any)."""
        now = now or self._clock()
        result = ReminderRunResult(status="idle")
        result.deactivated = self.deactivate_expired(now)

        try:
            due = self._load_due(now)
        except PersistenceError as e:
            logger.warning(
                f"Could not load due reminders: {e}",
                extra={"event": "reminder.select.failed", "error_type": type(e).__name__},
            )
            result.status, result.error = "error", str(e)
            return result

        result.due = len(due)
        if not due:
            return result

        candidate = due[0]
        reminder, user, listing = candidate.reminder, candidate.user, candidate.listing
        result.reminder_id = reminder.id

        with log_context(user_id=user.id, listing_id=listing.id, reminder_id=reminder.id):
            try:
                image_ref = self.thumbnail_renderer.render(listing)
                context = build_listing_context(listing, now)
                context["interval_hours"] = reminder.interval_hours
                caption = self.caption_renderer.render_reminder(context)
            except RenderError as e:
                logger.warning(
                    f"Rendering failed, reminder not sent: {e}",
                    extra={"event": "reminder.render.failed"},
                )
                result.status, result.error = "render_failed", str(e)
                return result

            message = build_photo_message(
                user, image_ref, caption, build_reminder_keyboard(listing, self.listings_base_url)
            )
            result.message_id = self.queue.enqueue(message)[0]

            try:
                with self._session_factory() as session:
                    ReminderRepository(session).update_last_sent(reminder.id, now)
            except PersistenceError as e:
                logger.error(
                    f"Reminder enqueued but last_sent_at not advanced: {e}",
                    extra={
                        "event": "reminder.record.failed",
                        "message_id": result.message_id,
                        "error_type": type(e).__name__,
                    },
                )
                result.status, result.error = "error", str(e)
                return result

            result.status = "sent"
            logger.info(
                f"Queued reminder about '{listing.title}' for user {user.id} "
                f"({len(due) - 1} more due)",
                extra={"event": "reminder.dispatch.queued", "message_id": result.message_id},
            )
            return result

    def subscribe(
        self,
        user_external_id: str,
        listing_id: str,
        interval_hours: Optional[int] = None,
    ) -> Optional[Reminder]:
        """Start (or restart) reminders about a listing for a user.

        Subscribing twice keeps a single reminder; an inactive one is
        re-activated with the new interval.

        Returns:
            The active reminder, or None if storage failed

        Raises:
            SubscriptionError: If the user or listing is unknown, or the listing closed
        """
        interval_hours = interval_hours or self.config.default_interval_hours
        now = self._clock()

        try:
            with self._session_factory() as session:
                user = UserRepository(session).get_by_external_id(user_external_id)
                if user is None:
                    raise SubscriptionError(f"Unknown user {user_external_id}")

                listing = ListingRepository(session).get(listing_id)
                if listing is None or not listing.is_open(now):
                    raise SubscriptionError(f"Listing {listing_id} is not open for reminders")

                reminders = ReminderRepository(session)
                existing = reminders.get(user.id, listing_id)
                if existing is not None and existing.is_active:
                    return existing
                if existing is not None:
                    reminder = reminders.reactivate(user.id, listing_id, interval_hours)
                else:
                    reminder = reminders.create(
                        Reminder(
                            user_id=user.id,
                            listing_id=listing_id,
                            interval_hours=interval_hours,
                            created_at=now,
                        )
                    )
        except DataIntegrityError:
            # Concurrent subscribe won the insert
            reminder = self._stored_reminder(user.id, listing_id)
            if reminder is None:
                return None
        except PersistenceError as e:
            logger.warning(
                f"Could not subscribe {user_external_id} to {listing_id}: {e}",
                extra={"event": "reminder.subscribe.failed", "error_type": type(e).__name__},
            )
            return None

        logger.info(
            f"User {user.id} subscribed to reminders for listing {listing_id} "
            f"every {interval_hours}h",
            extra={"event": "reminder.subscribed", "user_id": user.id, "listing_id": listing_id},
        )
        return reminder

    def _stored_reminder(self, user_id: int, listing_id: str) -> Optional[Reminder]:
        try:
            with self._session_factory() as session:
                return ReminderRepository(session).get(user_id, listing_id)
        except PersistenceError as e:
            logger.warning(
                f"Could not load reminder for user {user_id} and listing {listing_id}: {e}",
                extra={"event": "reminder.subscribe.failed", "error_type": type(e).__name__},
            )
            return None

    def unsubscribe(self, user_external_id: str, listing_id: str) -> bool:
        """Stop reminders about a listing. Returns False if there was nothing to stop."""
        try:
            with self._session_factory() as session:
                user = UserRepository(session).get_by_external_id(user_external_id)
                if user is None:
                    return False
                stopped = ReminderRepository(session).deactivate(user.id, listing_id)
        except PersistenceError as e:
            logger.warning(
                f"Could not unsubscribe {user_external_id} from {listing_id}: {e}",
                extra={"event": "reminder.unsubscribe.failed", "error_type": type(e).__name__},
            )
            return False

        if stopped:
            logger.info(
                f"User {user.id} stopped reminders for listing {listing_id}",
                extra={"event": "reminder.unsubscribed", "user_id": user.id, "listing_id": listing_id},
            )
        return stopped
