"""Soft checks on raw configuration that produce warnings, not errors."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for settings that are valid but probably unintended.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    delivery = config_dict.get("delivery", {})
    if isinstance(delivery, dict):
        if delivery.get("max_retries") == 0:
            warning_messages.append(
                "delivery.max_retries is 0: any transient send failure drops the message"
            )
        rate_limit = delivery.get("rate_limit_per_second")
        if isinstance(rate_limit, int) and rate_limit > 30:
            warning_messages.append(
                f"delivery.rate_limit_per_second={rate_limit} exceeds the Telegram broadcast limit of 30/s"
            )

    notifications = config_dict.get("notifications", {})
    if isinstance(notifications, dict):
        cutoff = notifications.get("cutoff_window")
        if isinstance(cutoff, str) and cutoff.strip().upper() in ("0S", "PT0S", "0M", "0H"):
            warning_messages.append(
                "notifications.cutoff_window is disabled: users may get one notification per process tick"
            )

    schedule = config_dict.get("schedule", {})
    if isinstance(schedule, dict):
        for key in ("scan_interval", "process_interval"):
            interval = schedule.get(key, {})
            if isinstance(interval, dict):
                production = interval.get("production")
                if isinstance(production, str) and production.strip().lower() in ("10s", "30s", "1m"):
                    warning_messages.append(
                        f"Short production {key} ({production}) may hit upstream rate limits"
                    )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
