"""Skill-match notification scheduler.

Each run selects at most one unnotified match, renders it, enqueues it on the
delivery queue and then records the Notification. Sending one message per
tick spreads volume across ticks instead of bursting every match at once.

Ordering is enqueue-then-write: a render failure leaves no record, so the
match is retried on the next tick. If the record write fails after enqueue,
the same match can be sent again on a later tick.
"""

from contextlib import AbstractContextManager
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from listing_notifier.config.models import ListingsConfig, NotificationsConfig, RemindersConfig
from listing_notifier.delivery.queue import DeliveryQueue
from listing_notifier.domain.models import Notification
from listing_notifier.logging import get_logger
from listing_notifier.logging.context import log_context
from listing_notifier.persistence import (
    DataIntegrityError,
    ListingRepository,
    MatchRepository,
    NotificationRepository,
    PersistenceError,
    UserRepository,
    get_session,
)
from listing_notifier.utils.timestamps import utc_now

from .models import NotificationCandidate, NotificationRunResult, RenderError
from .payloads import build_listing_context, build_match_keyboard, build_photo_message
from .rendering import ThumbnailRenderer
from .templates import CaptionRenderer

logger = get_logger(__name__, component="notification")


class NotificationScheduler:
    """Turns recorded matches into at most one queued notification per run.

    Args:
        queue: Delivery queue that receives rendered messages
        caption_renderer: Jinja2 caption renderer
        thumbnail_renderer: Image reference provider
        config: Cutoff window and message type settings
        reminder_interval_hours: Interval advertised on the "remind me" button
        listings_base_url: Base URL for the "Join" button
        session_factory: Context manager factory yielding a SQLAlchemy session
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        caption_renderer: Optional[CaptionRenderer] = None,
        thumbnail_renderer: Optional[ThumbnailRenderer] = None,
        config: Optional[NotificationsConfig] = None,
        reminder_interval_hours: int = RemindersConfig().default_interval_hours,
        listings_base_url: str = ListingsConfig().base_url,
        session_factory: Callable[[], AbstractContextManager] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.queue = queue
        self.caption_renderer = caption_renderer or CaptionRenderer()
        self.thumbnail_renderer = thumbnail_renderer or ThumbnailRenderer()
        self.config = config or NotificationsConfig()
        self.reminder_interval_hours = reminder_interval_hours
        self.listings_base_url = listings_base_url
        self._session_factory = session_factory
        self._clock = clock

    def select_next_notifiable(self, now: Optional[datetime] = None) -> Optional[NotificationCandidate]:
        """Return the oldest eligible unnotified match, or None.

        Eligible means: match active, no Notification for the pair, listing
        still active and open, and the user was not notified within the
        cutoff window.
        """
        now = now or self._clock()
        cutoff_seconds = self.config.cutoff_window_seconds

        try:
            with self._session_factory() as session:
                pending = MatchRepository(session).get_pending_notification(now)
                if not pending:
                    return None

                notifications = NotificationRepository(session)
                users = UserRepository(session)
                listings = ListingRepository(session)
                recently_notified: Dict[int, bool] = {}

                for match in pending:
                    if cutoff_seconds:
                        if match.user_id not in recently_notified:
                            recently_notified[match.user_id] = notifications.notified_since(
                                match.user_id, now - timedelta(seconds=cutoff_seconds)
                            )
                        if recently_notified[match.user_id]:
                            continue

                    user = users.get(match.user_id)
                    listing = listings.get(match.listing_id)
                    if user is None or listing is None:
                        continue

                    return NotificationCandidate(match=match, user=user, listing=listing)

        except PersistenceError as e:
            logger.warning(
                f"Could not select next notification: {e}",
                extra={"event": "notification.select.failed", "error_type": type(e).__name__},
            )
            return None

        logger.debug(
            f"{len(pending)} unnotified match(es) held back by the cutoff window",
            extra={"event": "notification.select.cutoff", "pending": len(pending)},
        )
        return None

    def dispatch(self, candidate: NotificationCandidate, now: Optional[datetime] = None) -> NotificationRunResult:
        """Render, enqueue and record one notification."""
        now = now or self._clock()
        user, listing = candidate.user, candidate.listing
        result = NotificationRunResult(status="sent", user_id=user.id, listing_id=listing.id)

        with log_context(user_id=user.id, listing_id=listing.id):
            try:
                with self._session_factory() as session:
                    already_notified = NotificationRepository(session).exists(user.id, listing.id)
            except PersistenceError as e:
                logger.warning(
                    f"Could not check notification state: {e}",
                    extra={"event": "notification.dispatch.failed", "error_type": type(e).__name__},
                )
                result.status, result.error = "error", str(e)
                return result

            if already_notified:
                result.status = "duplicate"
                return result

            try:
                image_ref = self.thumbnail_renderer.render(listing)
                context = build_listing_context(
                    listing, now, overlap=user.expertise & listing.mapped_skills
                )
                caption = self.caption_renderer.render_match(context)
            except RenderError as e:
                logger.warning(
                    f"Rendering failed, notification not sent: {e}",
                    extra={"event": "notification.render.failed"},
                )
                result.status, result.error = "render_failed", str(e)
                return result

            message = build_photo_message(
                user,
                image_ref,
                caption,
                build_match_keyboard(listing, self.listings_base_url, self.reminder_interval_hours),
            )
            result.message_id = self.queue.enqueue(message)[0]

            try:
                with self._session_factory() as session:
                    NotificationRepository(session).create(
                        Notification(
                            user_id=user.id,
                            listing_id=listing.id,
                            message_type=self.config.message_type,
                            sent_at=now,
                        )
                    )
            except DataIntegrityError:
                logger.info(
                    f"User {user.id} was already notified about listing {listing.id}",
                    extra={"event": "notification.dispatch.duplicate"},
                )
                result.status = "duplicate"
                return result
            except PersistenceError as e:
                logger.error(
                    f"Notification enqueued but not recorded: {e}",
                    extra={
                        "event": "notification.record.failed",
                        "message_id": result.message_id,
                        "error_type": type(e).__name__,
                    },
                )
                result.status, result.error = "error", str(e)
                return result

            logger.info(
                f"Queued notification about '{listing.title}' for user {user.id}",
                extra={
                    "event": "notification.dispatch.queued",
                    "message_id": result.message_id,
                    "score": candidate.match.score,
                },
            )
            return result

    def run_once(self, now: Optional[datetime] = None) -> NotificationRunResult:
        """Select and dispatch at most one notification."""
        now = now or self._clock()
        candidate = self.select_next_notifiable(now)
        if candidate is None:
            return NotificationRunResult(status="idle")
        return self.dispatch(candidate, now)

    def clear_all_notifications(self) -> int:
        """Delete every Notification record (test reset)."""
        try:
            with self._session_factory() as session:
                removed = NotificationRepository(session).clear_all()
        except PersistenceError as e:
            logger.warning(
                f"Could not clear notifications: {e}",
                extra={"event": "notification.clear.failed", "error_type": type(e).__name__},
            )
            return 0

        logger.warning(
            f"Cleared {removed} notification record(s)",
            extra={"event": "notification.cleared", "removed": removed},
        )
        return removed
