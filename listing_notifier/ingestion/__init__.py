"""Listing ingestion from the listings API."""

from .client import TABS, ListingsClient
from .exceptions import IngestionError, ListingsHTTPError, ListingsResponseError, ListingsTimeoutError
from .models import IngestionResult
from .service import ListingIngestor, parse_listing

__all__ = [
    "ListingsClient",
    "ListingIngestor",
    "IngestionResult",
    "parse_listing",
    "TABS",
    "IngestionError",
    "ListingsHTTPError",
    "ListingsResponseError",
    "ListingsTimeoutError",
]
