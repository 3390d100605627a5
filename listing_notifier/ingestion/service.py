"""Listing ingestion: fetch open listings, map their skills, upsert them.

Details are fetched in small concurrent batches with a pause between
batches. A failed tab or detail fetch is logged and skipped; whatever was
fetched is still stored.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError
from sqlalchemy.orm import Session

from listing_notifier.config.models import ListingsConfig
from listing_notifier.domain.models import Listing
from listing_notifier.logging import get_logger
from listing_notifier.matching.skills import map_skills_to_categories
from listing_notifier.persistence import ListingRepository, PersistenceError, get_session
from listing_notifier.utils.timestamps import parse_iso_datetime, utc_now

from .client import TABS, ListingsClient
from .exceptions import IngestionError, ListingsResponseError
from .models import IngestionResult

logger = get_logger(__name__, component="ingestion")


def parse_listing(details: Dict[str, Any], now: datetime) -> Listing:
    """Build a Listing from a details payload.

    Raises:
        ListingsResponseError: If required fields are missing or invalid
    """
    deadline = parse_iso_datetime(details.get("deadline"))
    if deadline is None:
        raise ListingsResponseError(f"Listing {details.get('id')!r} has no valid deadline")

    sponsor = details.get("sponsor") or {}
    try:
        return Listing(
            id=str(details.get("id") or ""),
            title=details.get("title") or "",
            slug=details.get("slug") or "",
            deadline=deadline,
            usd_value=float(details.get("usdValue") or 0),
            token=details.get("token"),
            type=details.get("type") or "",
            compensation_type=details.get("compensationType"),
            sponsor_name=sponsor.get("name"),
            mapped_skills=map_skills_to_categories(details.get("skills") or []),
            is_active=deadline >= now,
            last_fetched_at=now,
        )
    except (ValidationError, TypeError, ValueError) as e:
        raise ListingsResponseError(f"Invalid listing {details.get('id')!r}: {e}") from e


class ListingIngestor:
    """Runs one scan of the listings API into storage.

    Args:
        client: Listings API client
        config: Detail batch size and delay
        session_factory: Context manager factory yielding a SQLAlchemy session
        clock: Returns the current aware UTC datetime
        sleep: Called with seconds between detail batches
    """

    def __init__(
        self,
        client: ListingsClient,
        config: Optional[ListingsConfig] = None,
        session_factory: Callable[[], AbstractContextManager] = get_session,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.config = config or client.config
        self._session_factory = session_factory
        self._clock = clock
        self._sleep = sleep

    def fetch_all_details(self, summaries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Fetch details for each summary in batches; failed fetches are dropped."""
        batch_size = self.config.detail_batch_size
        slugs = [s.get("slug") for s in summaries if s.get("slug")]
        details: List[Dict[str, Any]] = []

        for start in range(0, len(slugs), batch_size):
            batch = slugs[start : start + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="listing-details") as pool:
                results = list(pool.map(self._fetch_details_or_none, batch))
            details.extend(d for d in results if d is not None)

            if start + batch_size < len(slugs):
                self._sleep(self.config.detail_batch_delay)

        return details

    def _fetch_details_or_none(self, slug: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.fetch_listing_details(slug)
        except IngestionError as e:
            logger.warning(
                f"Skipping listing {slug}: {e}",
                extra={"event": "ingestion.details.failed", "slug": slug, "error_type": type(e).__name__},
            )
            return None

    def run_once(self, now: Optional[datetime] = None) -> IngestionResult:
        """Fetch both tabs, upsert parsed listings and deactivate closed ones.

        Listings past their deadline are always deactivated. Listings the API
        stopped returning are deactivated only when every tab was fetched, so
        an outage never closes everything.
        """
        now = now or self._clock()
        result = IngestionResult()
        listings: List[Listing] = []
        seen_slugs: Set[str] = set()
        complete = True

        for tab in TABS:
            try:
                summaries = self.client.fetch_listings(tab)
            except IngestionError as e:
                complete = False
                result.errors.append(f"{tab}: {e}")
                logger.warning(
                    f"Fetching {tab} failed: {e}",
                    extra={"event": "ingestion.tab.failed", "tab": tab, "error_type": type(e).__name__},
                )
                continue

            result.fetched += len(summaries)
            seen_slugs.update(s["slug"] for s in summaries if s.get("slug"))
            details = self.fetch_all_details(summaries)
            result.detailed += len(details)

            for item in details:
                try:
                    listings.append(parse_listing(item, now))
                except ListingsResponseError as e:
                    result.skipped += 1
                    logger.warning(str(e), extra={"event": "ingestion.listing.invalid"})

        try:
            with self._session_factory() as session:
                repo = ListingRepository(session)
                for listing in listings:
                    self._store(session, repo, listing, result)
                result.deactivated = repo.deactivate_expired(now)
                if complete:
                    result.withdrawn = repo.deactivate_missing(seen_slugs)
        except PersistenceError as e:
            result.upserted = 0
            result.errors.append(f"storage: {e}")
            logger.warning(
                f"Storing listings failed: {e}",
                extra={"event": "ingestion.store.failed", "error_type": type(e).__name__},
            )

        logger.info(
            f"Scan completed: {result.fetched} fetched, {result.upserted} stored, "
            f"{result.deactivated} expired, {result.withdrawn} withdrawn",
            extra={
                "event": "ingestion.scan.completed",
                "fetched": result.fetched,
                "detailed": result.detailed,
                "upserted": result.upserted,
                "failed": result.failed,
                "skipped": result.skipped,
                "deactivated": result.deactivated,
                "withdrawn": result.withdrawn,
                "errors": len(result.errors),
            },
        )
        return result

    def _store(self, session: Session, repo: ListingRepository, listing: Listing, result: IngestionResult) -> None:
        # One savepoint per listing: a bad row is rolled back on its own
        try:
            with session.begin_nested():
                repo.upsert(listing)
        except PersistenceError as e:
            result.failed += 1
            result.errors.append(f"{listing.id}: {e}")
            logger.warning(
                f"Storing listing {listing.id} failed: {e}",
                extra={
                    "event": "ingestion.listing.store_failed",
                    "listing_id": listing.id,
                    "error_type": type(e).__name__,
                },
            )
            return
        result.upserted += 1
