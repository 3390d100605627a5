"""Repositories over SQLAlchemy sessions.

Repositories return domain models, never ORM instances. Every database
failure is re-raised as a PersistenceError subclass; constraint violations
become DataIntegrityError so callers can treat a duplicate (user, listing)
pair as "already recorded".
"""

from datetime import datetime, time, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import Text, delete, func, select, type_coerce, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from listing_notifier.domain.models import (
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
from listing_notifier.logging import get_logger
from listing_notifier.utils.timestamps import ensure_utc, to_storage, utc_now

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import ListingModel, MatchModel, NotificationModel, ReminderModel, UserModel

logger = get_logger(__name__, component="database")


def _non_empty_set(column):
    return type_coerce(column, Text) != "[]"


class UserRepository:
    """Repository for chat users and their declared expertise."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, user: User) -> User:
        """Insert a new user.

        Raises:
            DataIntegrityError: If the external id is already registered
            PersistenceError: If a database error occurs
        """
        try:
            if user.created_at is None:
                user = user.model_copy(update={"created_at": utc_now()})
            model = UserModel.from_domain(user)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.warning(f"Duplicate user {user.external_id}: {e}")
            raise DataIntegrityError(f"User {user.external_id} already exists") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating user {user.external_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create user: {e}") from e

    def get(self, user_id: int) -> Optional[User]:
        try:
            model = self.session.get(UserModel, user_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve user: {e}") from e

    def get_by_external_id(self, external_id: str) -> Optional[User]:
        try:
            stmt = select(UserModel).where(UserModel.external_id == external_id)
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving user {external_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve user: {e}") from e

    def set_expertise(self, user_id: int, expertise: Iterable[str]) -> User:
        return self._set_field(user_id, "expertise", expertise)

    def set_skills(self, user_id: int, skills: Iterable[str]) -> User:
        return self._set_field(user_id, "skills", skills)

    def _set_field(self, user_id: int, field: str, values: Iterable[str]) -> User:
        try:
            model = self.session.get(UserModel, user_id)
            if model is None:
                raise RecordNotFoundError(f"User {user_id} not found")

            normalized = User.model_validate({"external_id": model.external_id, field: list(values)})
            setattr(model, field, getattr(normalized, field))
            self.session.flush()
            return model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating {field} for user {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update user {field}: {e}") from e

    def get_users_with_expertise(self) -> List[User]:
        """Users that declared at least one expertise category (oldest first)."""
        try:
            stmt = (
                select(UserModel)
                .where(_non_empty_set(UserModel.expertise))
                .order_by(UserModel.id.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving users with expertise: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve users: {e}") from e


class ListingRepository:
    """Repository for ingested listings."""

    def __init__(self, session: Session):
        self.session = session

    def upsert(self, listing: Listing) -> Listing:
        """Insert a new listing or refresh an existing one by external id.

        ``created_at`` of an existing row is never overwritten.
        """
        try:
            existing = self.session.get(ListingModel, listing.id)

            if existing:
                existing.apply(listing)
                self.session.flush()
                return existing.to_domain()

            if listing.created_at is None:
                listing = listing.model_copy(update={"created_at": utc_now()})
            model = ListingModel.from_domain(listing)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.error(f"Integrity error upserting listing {listing.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to upsert listing: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting listing {listing.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert listing: {e}") from e

    def get(self, listing_id: str) -> Optional[Listing]:
        try:
            model = self.session.get(ListingModel, listing_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving listing {listing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve listing: {e}") from e

    def get_many(self, listing_ids: Iterable[str]) -> Dict[str, Listing]:
        """Fetch several listings at once, keyed by id (missing ids are absent)."""
        ids = list(set(listing_ids))
        if not ids:
            return {}
        try:
            stmt = select(ListingModel).where(ListingModel.id.in_(ids))
            return {model.id: model.to_domain() for model in self.session.execute(stmt).scalars()}
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve listings: {e}") from e

    def get_active_with_mapped_skills(self, now: datetime) -> List[Listing]:
        """Active, unexpired listings with at least one mapped skill category."""
        try:
            stmt = (
                select(ListingModel)
                .where(
                    ListingModel.is_active.is_(True),
                    ListingModel.deadline >= to_storage(now),
                    _non_empty_set(ListingModel.mapped_skills),
                )
                .order_by(ListingModel.created_at.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving active listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve active listings: {e}") from e

    def mark_inactive(self, listing_id: str) -> None:
        """Mark a single listing inactive.

        Raises:
            RecordNotFoundError: If the listing does not exist
        """
        try:
            stmt = (
                update(ListingModel)
                .where(ListingModel.id == listing_id)
                .values(is_active=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Listing {listing_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error marking listing {listing_id} inactive: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark listing inactive: {e}") from e

    def deactivate_expired(self, now: datetime) -> int:
        """Mark every active listing whose deadline has passed inactive."""
        try:
            stmt = (
                update(ListingModel)
                .where(ListingModel.is_active.is_(True), ListingModel.deadline < to_storage(now))
                .values(is_active=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error deactivating expired listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to deactivate expired listings: {e}") from e

    def deactivate_missing(self, seen_slugs: Iterable[str]) -> int:
        """Mark every active listing whose slug is not in ``seen_slugs`` inactive.

        Used after a complete scan: a listing the API no longer returns has
        been withdrawn.
        """
        try:
            stmt = (
                update(ListingModel)
                .where(ListingModel.is_active.is_(True), ListingModel.slug.not_in(set(seen_slugs)))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error deactivating withdrawn listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to deactivate withdrawn listings: {e}") from e

    def get_stats(self) -> ListingStats:
        try:
            active = ListingModel.is_active.is_(True)
            total = self.session.scalar(select(func.count(ListingModel.id)))
            active_count = self.session.scalar(select(func.count(ListingModel.id)).where(active))
            bounties = self.session.scalar(
                select(func.count(ListingModel.id)).where(
                    active, ListingModel.type == ListingType.BOUNTY.value
                )
            )
            projects = self.session.scalar(
                select(func.count(ListingModel.id)).where(
                    active, ListingModel.type == ListingType.PROJECT.value
                )
            )
            average = self.session.scalar(select(func.avg(ListingModel.usd_value)).where(active))

            return ListingStats(
                total_listings=total or 0,
                active_listings=active_count or 0,
                bounties=bounties or 0,
                projects=projects or 0,
                average_usd_value=round(average or 0),
            )

        except SQLAlchemyError as e:
            logger.error(f"Error computing listing stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute listing stats: {e}") from e


class MatchRepository:
    """Repository for (user, listing) skill matches."""

    def __init__(self, session: Session):
        self.session = session

    def exists(self, user_id: int, listing_id: str) -> bool:
        try:
            stmt = select(MatchModel.id).where(
                MatchModel.user_id == user_id, MatchModel.listing_id == listing_id
            ).limit(1)
            return self.session.execute(stmt).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Error checking match ({user_id}, {listing_id}): {e}", exc_info=True)
            raise PersistenceError(f"Failed to check match: {e}") from e

    def existing_pairs(self) -> Set[Tuple[int, str]]:
        """All (user_id, listing_id) pairs that already have a match."""
        try:
            stmt = select(MatchModel.user_id, MatchModel.listing_id)
            return {(row.user_id, row.listing_id) for row in self.session.execute(stmt)}
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving match pairs: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve match pairs: {e}") from e

    def create(self, match: Match) -> Match:
        """Insert a match.

        Raises:
            DataIntegrityError: If a match for the pair already exists
        """
        try:
            if match.created_at is None:
                match = match.model_copy(update={"created_at": utc_now()})
            model = MatchModel.from_domain(match)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.debug(
                f"Duplicate match ({match.user_id}, {match.listing_id}) rejected by storage"
            )
            raise DataIntegrityError(
                f"Match for user {match.user_id} and listing {match.listing_id} already exists"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating match: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create match: {e}") from e

    def get_active(self) -> List[Match]:
        """Active matches, oldest first."""
        try:
            stmt = (
                select(MatchModel)
                .where(MatchModel.is_active.is_(True))
                .order_by(MatchModel.created_at.asc(), MatchModel.id.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving active matches: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve active matches: {e}") from e

    def get_pending_notification(self, now: datetime) -> List[Match]:
        """Active matches without a notification whose listing is still open.

        Ordered oldest match first.
        """
        try:
            notified = (
                select(NotificationModel.id)
                .where(
                    NotificationModel.user_id == MatchModel.user_id,
                    NotificationModel.listing_id == MatchModel.listing_id,
                )
                .exists()
            )
            stmt = (
                select(MatchModel)
                .join(ListingModel, ListingModel.id == MatchModel.listing_id)
                .where(
                    MatchModel.is_active.is_(True),
                    ListingModel.is_active.is_(True),
                    ListingModel.deadline >= to_storage(now),
                    ~notified,
                )
                .order_by(MatchModel.created_at.asc(), MatchModel.id.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving pending matches: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve pending matches: {e}") from e

    def remove_duplicates(self) -> int:
        """Keep the most recent match of each (user, listing) group; delete the rest."""
        try:
            groups = self.session.execute(
                select(MatchModel.user_id, MatchModel.listing_id)
                .group_by(MatchModel.user_id, MatchModel.listing_id)
                .having(func.count(MatchModel.id) > 1)
            ).all()

            removed = 0
            for user_id, listing_id in groups:
                ids = self.session.execute(
                    select(MatchModel.id)
                    .where(MatchModel.user_id == user_id, MatchModel.listing_id == listing_id)
                    .order_by(MatchModel.created_at.desc(), MatchModel.id.desc())
                ).scalars().all()
                stale = ids[1:]
                result = self.session.execute(delete(MatchModel).where(MatchModel.id.in_(stale)))
                removed += result.rowcount

            self.session.flush()
            return removed

        except SQLAlchemyError as e:
            logger.error(f"Error removing duplicate matches: {e}", exc_info=True)
            raise PersistenceError(f"Failed to remove duplicate matches: {e}") from e

    def get_stats(self, now: datetime) -> MatchingStats:
        """Match counts plus notifications sent since UTC midnight of ``now``."""
        try:
            active = MatchModel.is_active.is_(True)
            midnight = datetime.combine(ensure_utc(now).date(), time.min, tzinfo=timezone.utc)

            total = self.session.scalar(select(func.count(MatchModel.id)))
            active_count = self.session.scalar(select(func.count(MatchModel.id)).where(active))
            users = self.session.scalar(
                select(func.count(func.distinct(MatchModel.user_id))).where(active)
            )
            sent_today = NotificationRepository(self.session).count_since(midnight)

            return MatchingStats(
                total_matches=total or 0,
                active_matches=active_count or 0,
                notifications_sent_today=sent_today,
                users_with_matches=users or 0,
            )

        except SQLAlchemyError as e:
            logger.error(f"Error computing matching stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute matching stats: {e}") from e


class NotificationRepository:
    """Repository for sent skill-match notifications."""

    def __init__(self, session: Session):
        self.session = session

    def exists(self, user_id: int, listing_id: str) -> bool:
        try:
            stmt = select(NotificationModel.id).where(
                NotificationModel.user_id == user_id,
                NotificationModel.listing_id == listing_id,
            ).limit(1)
            return self.session.execute(stmt).first() is not None
        except SQLAlchemyError as e:
            logger.error(
                f"Error checking notification ({user_id}, {listing_id}): {e}", exc_info=True
            )
            raise PersistenceError(f"Failed to check notification: {e}") from e

    def create(self, notification: Notification) -> Notification:
        """Record a sent notification.

        Raises:
            DataIntegrityError: If the pair was already notified
        """
        try:
            model = NotificationModel.from_domain(notification)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            logger.debug(
                f"Duplicate notification ({notification.user_id}, {notification.listing_id}) "
                "rejected by storage"
            )
            raise DataIntegrityError(
                f"User {notification.user_id} already notified about {notification.listing_id}"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error recording notification: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record notification: {e}") from e

    def notified_since(self, user_id: int, since: datetime) -> bool:
        """True if the user received any notification at or after ``since``."""
        try:
            stmt = select(NotificationModel.id).where(
                NotificationModel.user_id == user_id,
                NotificationModel.sent_at >= to_storage(since),
            ).limit(1)
            return self.session.execute(stmt).first() is not None
        except SQLAlchemyError as e:
            logger.error(f"Error checking recent notifications for {user_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to check recent notifications: {e}") from e

    def count_since(self, since: datetime) -> int:
        try:
            count = self.session.scalar(
                select(func.count(NotificationModel.id)).where(
                    NotificationModel.sent_at >= to_storage(since)
                )
            )
            return count or 0
        except SQLAlchemyError as e:
            logger.error(f"Error counting notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count notifications: {e}") from e

    def clear_all(self) -> int:
        """Delete every notification record. Test reset only."""
        try:
            result = self.session.execute(delete(NotificationModel))
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error clearing notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to clear notifications: {e}") from e


class ReminderRepository:
    """Repository for recurring listing reminders."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, reminder: Reminder) -> Reminder:
        """Insert a reminder subscription.

        Raises:
            DataIntegrityError: If the user already has a reminder for the listing
        """
        try:
            if reminder.created_at is None:
                reminder = reminder.model_copy(update={"created_at": utc_now()})
            model = ReminderModel.from_domain(reminder)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            raise DataIntegrityError(
                f"Reminder for user {reminder.user_id} and listing {reminder.listing_id} "
                "already exists"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating reminder: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create reminder: {e}") from e

    def _get_model(self, user_id: int, listing_id: str) -> Optional[ReminderModel]:
        stmt = select(ReminderModel).where(
            ReminderModel.user_id == user_id, ReminderModel.listing_id == listing_id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, user_id: int, listing_id: str) -> Optional[Reminder]:
        try:
            model = self._get_model(user_id, listing_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving reminder ({user_id}, {listing_id}): {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve reminder: {e}") from e

    def exists(self, user_id: int, listing_id: str) -> bool:
        return self.get(user_id, listing_id) is not None

    def get_active(self) -> List[Reminder]:
        """Active reminders, oldest subscription first."""
        try:
            stmt = (
                select(ReminderModel)
                .where(ReminderModel.is_active.is_(True))
                .order_by(ReminderModel.created_at.asc(), ReminderModel.id.asc())
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving active reminders: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve active reminders: {e}") from e

    def update_last_sent(self, reminder_id: int, sent_at: datetime) -> None:
        """Advance ``last_sent_at``.

        Raises:
            RecordNotFoundError: If the reminder does not exist
        """
        try:
            result = self.session.execute(
                update(ReminderModel)
                .where(ReminderModel.id == reminder_id)
                .values(last_sent_at=to_storage(sent_at))
            )
            self.session.flush()
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Reminder {reminder_id} not found")

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating reminder {reminder_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update reminder: {e}") from e

    def _set_active(self, user_id: int, listing_id: str, is_active: bool) -> bool:
        try:
            result = self.session.execute(
                update(ReminderModel)
                .where(
                    ReminderModel.user_id == user_id,
                    ReminderModel.listing_id == listing_id,
                    ReminderModel.is_active.is_(not is_active),
                )
                .values(is_active=is_active)
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error updating reminder ({user_id}, {listing_id}): {e}", exc_info=True)
            raise PersistenceError(f"Failed to update reminder: {e}") from e

    def deactivate(self, user_id: int, listing_id: str) -> bool:
        """Returns False if the user had no active reminder for the listing."""
        return self._set_active(user_id, listing_id, False)

    def reactivate(self, user_id: int, listing_id: str, interval_hours: int) -> Reminder:
        """Re-enable an existing reminder with a fresh interval and send history.

        Raises:
            RecordNotFoundError: If the reminder does not exist
        """
        try:
            model = self._get_model(user_id, listing_id)
            if model is None:
                raise RecordNotFoundError(f"Reminder ({user_id}, {listing_id}) not found")
            model.is_active = True
            model.interval_hours = interval_hours
            model.last_sent_at = None
            self.session.flush()
            return model.to_domain()

        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error reactivating reminder: {e}", exc_info=True)
            raise PersistenceError(f"Failed to reactivate reminder: {e}") from e

    def deactivate_for_closed_listings(self, now: datetime) -> int:
        """Deactivate active reminders whose listing is inactive or past its deadline."""
        try:
            closed = select(ListingModel.id).where(
                (ListingModel.is_active.is_(False)) | (ListingModel.deadline < to_storage(now))
            )
            result = self.session.execute(
                update(ReminderModel)
                .where(ReminderModel.is_active.is_(True), ReminderModel.listing_id.in_(closed))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            self.session.flush()
            return result.rowcount

        except SQLAlchemyError as e:
            logger.error(f"Error deactivating expired reminders: {e}", exc_info=True)
            raise PersistenceError(f"Failed to deactivate expired reminders: {e}") from e

    def get_stats(self, now: datetime) -> ReminderStats:
        try:
            active_reminders = self.get_active()
            total = self.session.scalar(select(func.count(ReminderModel.id)))
            return ReminderStats(
                total_reminders=total or 0,
                active_reminders=len(active_reminders),
                reminders_ready_to_send=sum(1 for r in active_reminders if r.is_due(now)),
                users_with_reminders=len({r.user_id for r in active_reminders}),
            )
        except SQLAlchemyError as e:
            logger.error(f"Error computing reminder stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute reminder stats: {e}") from e
