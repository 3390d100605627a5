"""Result types for the match engine."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class MatchRunStats:
    """Counts from one ``compute_matches`` pass.

    Attributes:
        users_considered: Users with at least one expertise category
        listings_considered: Open listings with mapped skill categories
        candidates: (user, listing) pairs with a non-empty overlap
        created: Matches written in this pass
        existing: Candidates skipped because a match was already recorded
        error: Storage error that cut the pass short, if any
    """

    users_considered: int = 0
    listings_considered: int = 0
    candidates: int = 0
    created: int = 0
    existing: int = 0
    error: Optional[str] = None
