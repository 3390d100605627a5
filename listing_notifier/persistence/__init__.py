"""Persistence layer: engine/session lifecycle, repositories and exceptions.

Example:
    >>> from listing_notifier.persistence import init_database, get_session, ListingRepository
    >>> init_database("sqlite:///./data/listing_notifier.db")
    >>> with get_session() as session:
    ...     listing = ListingRepository(session).get("abc123")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    ListingRepository,
    MatchRepository,
    NotificationRepository,
    ReminderRepository,
    UserRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "UserRepository",
    "ListingRepository",
    "MatchRepository",
    "NotificationRepository",
    "ReminderRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
