"""Test helper utilities for Listing Notifier tests."""

from .factories import (
    BASE_TIME,
    create_test_listing,
    create_test_user,
    store_listing,
    store_match,
    store_reminder,
    store_user,
)
from .fakes import FakeClock, RecordingMessenger

__all__ = [
    "BASE_TIME",
    "FakeClock",
    "RecordingMessenger",
    "create_test_listing",
    "create_test_user",
    "store_listing",
    "store_match",
    "store_reminder",
    "store_user",
]
