"""Shared pytest fixtures."""

import logging

import pytest

from listing_notifier.logging.config import configure_logging


@pytest.fixture(autouse=True)
def structured_logging():
    """Run every test with the production handler at INFO so structured extras are built."""
    configure_logging(level="INFO", format_type="key-value", environment="test")
    yield
    logging.getLogger().handlers.clear()
