"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class Environment(str, Enum):
    """Deployment environments with distinct tick periods."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _validated_duration(value: str, min_seconds: float, max_seconds: float, label: str) -> str:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, min_seconds=min_seconds, max_seconds=max_seconds, label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class DeliveryConfig(BaseModel):
    """Outbound delivery queue settings."""

    rate_limit_per_second: int = Field(
        30, ge=1, le=1000, description="Upper bound on messages sent per second"
    )
    batch_size: int = Field(25, ge=1, le=1000, description="Messages taken from the queue per drain iteration")
    retry_delay: str = Field("5s", description="Base delay for exponential retry backoff")
    max_retries: int = Field(3, ge=0, le=10, description="Retries before a message is dropped")
    batch_processing_delay: str = Field("1s", description="Pause between drain iterations")
    send_timeout: int = Field(30, ge=5, le=300, description="HTTP timeout for a single send (seconds)")

    @field_validator("retry_delay")
    @classmethod
    def validate_retry_delay(cls, v: str) -> str:
        return _validated_duration(v, 1, 3600, "retry_delay")

    @field_validator("batch_processing_delay")
    @classmethod
    def validate_batch_processing_delay(cls, v: str) -> str:
        return _validated_duration(v, 0.1, 60, "batch_processing_delay")

    @property
    def retry_delay_seconds(self) -> float:
        return parse_duration(self.retry_delay)

    @property
    def batch_processing_delay_seconds(self) -> float:
        return parse_duration(self.batch_processing_delay)

    @model_validator(mode="after")
    def validate_rate_cap(self):
        """A full batch every batch_processing_delay must stay under the rate cap."""
        per_second = self.batch_size / self.batch_processing_delay_seconds
        if per_second > self.rate_limit_per_second:
            raise ValueError(
                f"batch_size={self.batch_size} every {self.batch_processing_delay} "
                f"is {per_second:.1f} messages/s, above rate_limit_per_second="
                f"{self.rate_limit_per_second}"
            )
        return self


class RemindersConfig(BaseModel):
    """Reminder subscription defaults."""

    default_interval_hours: int = Field(
        12, ge=1, le=720, description="Hours between reminders for a new subscription"
    )


class NotificationsConfig(BaseModel):
    """Skill-match notification settings."""

    cutoff_window: str = Field(
        "1h",
        description="Skip users notified within this window ('0s' disables the check)",
    )
    message_type: str = Field("skill_match", min_length=1)

    @field_validator("cutoff_window")
    @classmethod
    def validate_cutoff_window(cls, v: str) -> str:
        try:
            parse_duration(v, allow_zero=True)
        except DurationParseError as e:
            raise ValueError(str(e)) from e
        return v

    @property
    def cutoff_window_seconds(self) -> float:
        return parse_duration(self.cutoff_window, allow_zero=True)


class TickInterval(BaseModel):
    """A tick period with separate development and production values."""

    development: str = Field("1m")
    production: str = Field("30m")

    @field_validator("development", "production")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        return _validated_duration(v, 10, 86400, "Tick interval")

    def seconds_for(self, environment: str) -> int:
        """Return the interval in seconds for the given environment name."""
        if environment == Environment.PRODUCTION.value:
            return int(parse_duration(self.production))
        return int(parse_duration(self.development))


class ScheduleConfig(BaseModel):
    """Periods of the two independent ticks."""

    scan_interval: TickInterval = Field(
        default_factory=lambda: TickInterval(development="1m", production="30m")
    )
    process_interval: TickInterval = Field(
        default_factory=lambda: TickInterval(development="1m", production="10m")
    )


class ListingsConfig(BaseModel):
    """Listings API client settings."""

    base_url: str = Field("https://earn.superteam.fun", min_length=1)
    http_request_timeout: int = Field(30, ge=5, le=300)
    detail_batch_size: int = Field(10, ge=1, le=100)
    detail_batch_delay: float = Field(1.0, ge=0, le=60)
    user_agent: str = Field("ListingNotifier/1.0", min_length=1)
    build_id: str = Field(
        "tk8ooPatDrYLChDJ6Am_l",
        min_length=1,
        description="Site build id used in the listing details data route",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        stripped = v.strip().rstrip("/")
        if not stripped.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return stripped


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(LogFormat.KEY_VALUE, description="Log output format (json or key-value)")

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the listing notifier."""

    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    reminders: RemindersConfig = Field(default_factory=RemindersConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    listings: ListingsConfig = Field(default_factory=ListingsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Filled in by the CLI once the environment is known
    scan_interval_seconds: Optional[int] = None
    process_interval_seconds: Optional[int] = None

    def resolve_intervals(self, environment: str) -> None:
        """Compute the tick periods for the running environment."""
        self.scan_interval_seconds = self.schedule.scan_interval.seconds_for(environment)
        self.process_interval_seconds = self.schedule.process_interval.seconds_for(environment)
