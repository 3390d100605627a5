"""Persistence layer exceptions.

Every repository error derives from PersistenceError so that scheduler
components can catch storage failures with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""


class DatabaseConnectionError(PersistenceError):
    """Raised when the engine cannot be created, validated or used before init."""


class RecordNotFoundError(PersistenceError):
    """Raised when an update targets a record that does not exist.

    Optional lookups return None instead.
    """


class DataIntegrityError(PersistenceError):
    """Raised on constraint violations, most often a duplicate (user, listing) pair."""
