"""Environment variable loading and validation."""

import os
from typing import Optional

from .exceptions import ConfigurationError
from .models import Environment

DEFAULT_DATABASE_URL = "sqlite:///./data/listing_notifier.db"
DEFAULT_LISTING_IMAGE_URL = "https://bob-intern-cdn.vercel.app/listing.png"


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        telegram_bot_token: str,
        environment: Optional[str] = None,
        log_level: Optional[str] = None,
        database_url: Optional[str] = None,
        listing_image_url: Optional[str] = None,
    ):
        self.telegram_bot_token = telegram_bot_token
        self.environment = environment or Environment.DEVELOPMENT.value
        self.log_level = log_level
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.listing_image_url = listing_image_url or DEFAULT_LISTING_IMAGE_URL

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION.value


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Required:
    - TELEGRAM_BOT_TOKEN: Bot API token

    Optional:
    - ENVIRONMENT: development (default) or production
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/listing_notifier.db)
    - LISTING_IMAGE_URL: Fallback thumbnail for listing messages

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If required variables are missing or invalid
    """
    errors = []

    telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
    environment = os.getenv("ENVIRONMENT")
    log_level = os.getenv("LOG_LEVEL")
    database_url = os.getenv("DATABASE_URL")
    listing_image_url = os.getenv("LISTING_IMAGE_URL")

    if not telegram_bot_token:
        errors.append("Missing required environment variable: TELEGRAM_BOT_TOKEN")
    elif ":" not in telegram_bot_token:
        errors.append("Invalid TELEGRAM_BOT_TOKEN: expected '<bot id>:<secret>' format")

    if environment:
        environment = environment.strip().lower()
        valid_environments = [e.value for e in Environment]
        if environment not in valid_environments:
            errors.append(
                f"Invalid ENVIRONMENT: '{environment}'. Must be one of: {', '.join(valid_environments)}"
            )

    if log_level:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level.upper() not in valid_levels:
            errors.append(
                f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(valid_levels)}"
            )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your bot token",
                "Ensure all required environment variables are set",
            ],
        )

    return EnvironmentConfig(
        telegram_bot_token=telegram_bot_token,
        environment=environment,
        log_level=log_level.upper() if log_level else None,
        database_url=database_url,
        listing_image_url=listing_image_url,
    )
