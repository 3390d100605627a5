"""Configuration management for the listing notifier."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, validate_config_file
from .models import (
    AppConfig,
    DeliveryConfig,
    Environment,
    ListingsConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    NotificationsConfig,
    RemindersConfig,
    ScheduleConfig,
    TickInterval,
)

__all__ = [
    # Loader functions
    "load_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "DeliveryConfig",
    "RemindersConfig",
    "NotificationsConfig",
    "ScheduleConfig",
    "TickInterval",
    "ListingsConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "Environment",
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
