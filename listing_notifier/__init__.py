"""Listing Notifier: skill-matched listing alerts and reminders over Telegram."""

__version__ = "0.1.0"
