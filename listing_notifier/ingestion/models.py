"""Result types for listing ingestion."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class IngestionResult:
    """Counts from one scan of the listings API.

    Attributes:
        fetched: Listing summaries returned by the list endpoints
        detailed: Summaries whose details were fetched
        upserted: Listings written to storage
        failed: Listings whose write failed and was rolled back on its own
        skipped: Details that could not be parsed into a listing
        deactivated: Listings marked inactive because their deadline passed
        withdrawn: Listings marked inactive because the API no longer returns them
        errors: Human-readable failures (one per failed tab, listing write or storage error)
    """

    fetched: int = 0
    detailed: int = 0
    upserted: int = 0
    failed: int = 0
    skipped: int = 0
    deactivated: int = 0
    withdrawn: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def had_errors(self) -> bool:
        return bool(self.errors)
