"""Skill-overlap matching between users and open listings.

A user matches a listing when their declared expertise categories intersect
the listing's mapped skill categories; the score is the size of the overlap.
Matches are created once per (user, listing) and never rewritten, so a score
reflects the overlap at first-match time.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from listing_notifier.domain.models import Match
from listing_notifier.logging import get_logger
from listing_notifier.persistence import (
    ListingRepository,
    MatchRepository,
    PersistenceError,
    UserRepository,
    get_session,
)
from listing_notifier.utils.timestamps import utc_now

from .models import MatchRunStats

logger = get_logger(__name__, component="matching")


class MatchEngine:
    """Computes and records (user, listing) matches.

    Args:
        session_factory: Context manager factory yielding a SQLAlchemy session
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        session_factory: Callable[[], AbstractContextManager] = get_session,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def compute_matches(self, now: Optional[datetime] = None) -> MatchRunStats:
        """Record a match for every new overlapping (user, open listing) pair.

        Existing matches are left untouched. Storage failures are logged and
        reported through ``MatchRunStats.error``.
        """
        now = now or self._clock()
        stats = MatchRunStats()

        try:
            with self._session_factory() as session:
                self._compute(session, now, stats)
        except PersistenceError as e:
            stats.error = str(e)
            logger.warning(
                f"Match computation failed: {e}",
                extra={"event": "matching.compute.failed", "error_type": type(e).__name__},
            )
            return stats

        logger.info(
            f"Matching completed: {stats.created} new, {stats.existing} existing "
            f"({stats.users_considered} users x {stats.listings_considered} listings)",
            extra={
                "event": "matching.compute.completed",
                "users": stats.users_considered,
                "listings": stats.listings_considered,
                "candidates": stats.candidates,
                "matches_created": stats.created,
                "matches_existing": stats.existing,
            },
        )
        return stats

    def _compute(self, session: Session, now: datetime, stats: MatchRunStats) -> None:
        users = UserRepository(session).get_users_with_expertise()
        listings = ListingRepository(session).get_active_with_mapped_skills(now)
        matches = MatchRepository(session)

        stats.users_considered = len(users)
        stats.listings_considered = len(listings)

        for user in users:
            for listing in listings:
                overlap = user.expertise & listing.mapped_skills
                if not overlap:
                    continue

                stats.candidates += 1
                if matches.exists(user.id, listing.id):
                    stats.existing += 1
                    continue

                matches.create(
                    Match(
                        user_id=user.id,
                        listing_id=listing.id,
                        score=len(overlap),
                        created_at=now,
                    )
                )
                stats.created += 1
                logger.debug(
                    f"Matched user {user.id} with listing {listing.id}",
                    extra={
                        "event": "matching.match.created",
                        "user_id": user.id,
                        "listing_id": listing.id,
                        "overlap": overlap,
                    },
                )

    def remove_duplicate_matches(self) -> int:
        """Repair pass: keep the newest match per (user, listing), delete the rest."""
        try:
            with self._session_factory() as session:
                removed = MatchRepository(session).remove_duplicates()
        except PersistenceError as e:
            logger.warning(
                f"Duplicate match cleanup failed: {e}",
                extra={"event": "matching.dedupe.failed", "error_type": type(e).__name__},
            )
            return 0

        if removed:
            logger.warning(
                f"Removed {removed} duplicate match(es)",
                extra={"event": "matching.dedupe.removed", "removed": removed},
            )
        return removed
