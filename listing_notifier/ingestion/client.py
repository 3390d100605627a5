"""HTTP client for the listings API.

Two endpoints are used: the public list endpoint (one call per tab) and the
site's per-listing data route, which carries skills and the USD value.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from listing_notifier.config.models import ListingsConfig
from listing_notifier.logging import get_logger

from .exceptions import ListingsHTTPError, ListingsResponseError, ListingsTimeoutError

logger = get_logger(__name__, component="ingestion")

TABS = ("bounties", "projects")


class ListingsClient:
    """Fetches listing summaries and details over a shared requests session."""

    LIST_PATH = "/api/listings"
    DETAILS_PATH = "/_next/data/{build_id}/listing/{slug}.json"

    def __init__(self, config: Optional[ListingsConfig] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or ListingsConfig()
        self.timeout = self.config.http_request_timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": self.config.user_agent})

    def fetch_listings(self, tab: str) -> List[Dict[str, Any]]:
        """Open listings for one tab ("bounties" or "projects"), oldest deadline first.

        Raises:
            ValueError: If ``tab`` is unknown
            IngestionError: On HTTP, timeout or response errors
        """
        if tab not in TABS:
            raise ValueError(f"Unknown listings tab: {tab!r}")

        url = f"{self.config.base_url}{self.LIST_PATH}"
        params = {
            "context": "all",
            "tab": tab,
            "category": "All",
            "status": "open",
            "sortBy": "Date",
            "order": "asc",
        }
        data = self._get_json(url, params=params)

        if not isinstance(data, list):
            raise ListingsResponseError(f"Expected a JSON array from {url}, got {type(data).__name__}")

        logger.info(
            f"Fetched {len(data)} {tab}",
            extra={"event": "ingestion.fetch.listings", "tab": tab, "count": len(data)},
        )
        return data

    def fetch_listing_details(self, slug: str) -> Dict[str, Any]:
        """Detailed listing payload (``pageProps.bounty``) for a slug.

        Raises:
            IngestionError: On HTTP, timeout or response errors
        """
        path = self.DETAILS_PATH.format(build_id=self.config.build_id, slug=slug)
        url = f"{self.config.base_url}{path}"
        data = self._get_json(url, params={"slug": slug})

        try:
            details = data["pageProps"]["bounty"]
        except (KeyError, TypeError) as e:
            raise ListingsResponseError(f"Listing details for {slug} lack pageProps.bounty") from e

        if not isinstance(details, dict):
            raise ListingsResponseError(f"Listing details for {slug} are not an object")
        return details

    def close(self) -> None:
        self._session.close()

    def _get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        try:
            logger.debug(
                f"HTTP GET {url}",
                extra={"event": "ingestion.fetch.request", "url": url, "timeout": self.timeout},
            )
            response = self._session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {self.timeout} seconds",
                extra={"event": "ingestion.fetch.retryable_error", "error_type": "Timeout", "url": url},
            )
            raise ListingsTimeoutError(
                f"Request to {url} timed out after {self.timeout} seconds", url=url
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(
                f"Request to {url} failed: {e}",
                extra={"event": "ingestion.fetch.error", "error_type": type(e).__name__, "url": url},
            )
            raise ListingsHTTPError(f"Request to {url} failed: {e}", status_code=0, url=url) from e

        if response.status_code >= 400:
            is_retryable = response.status_code >= 500
            logger.log(
                logging.WARNING if is_retryable else logging.ERROR,
                f"HTTP {response.status_code} error from {url}",
                extra={
                    "event": "ingestion.fetch.retryable_error" if is_retryable else "ingestion.fetch.error",
                    "status_code": response.status_code,
                    "url": url,
                },
            )
            raise ListingsHTTPError(
                f"HTTP {response.status_code}: {response.reason}",
                status_code=response.status_code,
                url=url,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ListingsResponseError(f"Failed to parse JSON response from {url}: {e}") from e
