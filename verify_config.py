#!/usr/bin/env python3
"""Validate a configuration file against the application schema.

Usage: python verify_config.py [path]   (default: config.example.yaml)
"""

import sys
from pathlib import Path

import yaml

from listing_notifier.config import AppConfig, validate_config_file


def summarize(config_file: Path) -> None:
    with open(config_file, "r") as f:
        config = AppConfig.model_validate(yaml.safe_load(f) or {})

    delivery = config.delivery
    print(
        f"  - Delivery: {delivery.batch_size} per batch every {delivery.batch_processing_delay}, "
        f"max {delivery.max_retries} retries"
    )
    print(
        f"  - Scan interval: {config.schedule.scan_interval.development} (development), "
        f"{config.schedule.scan_interval.production} (production)"
    )
    print(
        f"  - Process interval: {config.schedule.process_interval.development} (development), "
        f"{config.schedule.process_interval.production} (production)"
    )
    print(f"  - Reminder interval: {config.reminders.default_interval_hours}h")
    print(f"  - Notification cutoff: {config.notifications.cutoff_window}")


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("config.example.yaml")
    if not path.exists():
        print(f"✗ {path} not found")
        sys.exit(1)
    if not validate_config_file(path):
        sys.exit(1)
    summarize(path)
    sys.exit(0)
