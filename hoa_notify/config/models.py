"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


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


class QueueSettings(BaseModel):
    """Worker and retry policy for one logical queue."""

    concurrency: int = Field(5, ge=1, le=100, description="Celery worker concurrency for this queue")
    attempts: int = Field(3, ge=1, le=10, description="Attempts before a job is marked failed")
    backoff_delay: int = Field(
        2, ge=1, le=600, description="Base delay in seconds for exponential backoff"
    )
    remove_on_complete: int = Field(
        100, ge=0, description="Completed jobs kept in history (0 = keep none)"
    )
    remove_on_fail: int = Field(50, ge=0, description="Failed jobs kept in history")


class QueuesConfig(BaseModel):
    """Settings for the immediate, bulk and scheduled queues."""

    immediate: QueueSettings = Field(
        default_factory=lambda: QueueSettings(
            concurrency=5, attempts=3, backoff_delay=2, remove_on_complete=100, remove_on_fail=50
        )
    )
    bulk: QueueSettings = Field(
        default_factory=lambda: QueueSettings(
            concurrency=2, attempts=2, backoff_delay=5, remove_on_complete=50, remove_on_fail=25
        )
    )
    scheduled: QueueSettings = Field(
        default_factory=lambda: QueueSettings(
            concurrency=10, attempts=3, backoff_delay=1, remove_on_complete=200, remove_on_fail=100
        )
    )
    poll_interval: float = Field(
        0.5,
        gt=0.0,
        le=60.0,
        description="Seconds between sweeps that promote due jobs and re-dispatch lost ones",
    )
    stall_timeout: float = Field(
        300.0, gt=0.0, description="Seconds a job may stay active before it is reported stalled"
    )


class BulkConfig(BaseModel):
    """Batching behaviour of the bulk queue."""

    batch_size: int = Field(10, ge=1, le=1000, description="Notifications per sub-batch")
    batch_delay: float = Field(0.1, ge=0.0, le=60.0, description="Pause between batches (seconds)")


class RateLimit(BaseModel):
    """Hourly and daily send ceilings for one template or channel."""

    hourly: int = Field(..., ge=1)
    daily: int = Field(..., ge=1)


class HoursWindow(BaseModel):
    """Local-time window [start, end) in which sends are allowed."""

    start: int = Field(..., ge=0, le=23)
    end: int = Field(..., ge=1, le=24)

    @model_validator(mode="after")
    def validate_order(self):
        """Ensure the window is not empty."""
        if self.start >= self.end:
            raise ValueError(f"Hours window start ({self.start}) must be before end ({self.end})")
        return self


class ComplianceConfig(BaseModel):
    """Compliance gate settings."""

    timezone: str = Field("UTC", description="IANA timezone used for business-hours checks")
    rate_limits: Dict[str, RateLimit] = Field(
        default_factory=dict,
        description="Per-template (or per-channel) overrides of the built-in rate limit table",
    )
    sms_hours: HoursWindow = Field(default_factory=lambda: HoursWindow(start=9, end=18))
    email_hours: HoursWindow = Field(default_factory=lambda: HoursWindow(start=8, end=20))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA timezone names."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: '{v}'") from e
        return v


class SenderConfig(BaseModel):
    """Sender identity injected into outgoing email data."""

    name: str = Field("HOA Connect", min_length=1)
    address: Optional[str] = Field(None, description="Postal address shown in email footers")
    unsubscribe_base_url: Optional[str] = Field(
        None, description="Base URL for one-click unsubscribe links"
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Strip whitespace from the sender name."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Sender name cannot be empty")
        return stripped


class LedgerConfig(BaseModel):
    """Delivery ledger retention."""

    retention_days: int = Field(90, ge=1, le=3650)
    max_retry_count: int = Field(3, ge=0, le=10)


class MaintenanceConfig(BaseModel):
    """Periodic maintenance jobs run by the scheduler."""

    enabled: bool = Field(True)
    redeliver_interval: str = Field("15m")
    clean_interval: str = Field("1h")
    prune_interval: str = Field("24h")
    queue_grace: str = Field("24h", description="Age after which finished jobs are purged")
    redeliver_limit: int = Field(100, ge=1, le=10000)

    @field_validator("redeliver_interval", "clean_interval", "prune_interval", "queue_grace")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        """Validate that intervals parse and lie between one minute and seven days."""
        try:
            validate_duration_range(parse_duration(v), label="Maintenance interval")
        except DurationParseError as e:
            raise ValueError(str(e)) from e
        return v

    @property
    def redeliver_interval_seconds(self) -> int:
        return parse_duration(self.redeliver_interval)

    @property
    def clean_interval_seconds(self) -> int:
        return parse_duration(self.clean_interval)

    @property
    def prune_interval_seconds(self) -> int:
        return parse_duration(self.prune_interval)

    @property
    def queue_grace_seconds(self) -> int:
        return parse_duration(self.queue_grace)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the notification service."""

    queues: QueuesConfig = Field(default_factory=QueuesConfig)
    bulk: BulkConfig = Field(default_factory=BulkConfig)
    compliance: ComplianceConfig = Field(default_factory=ComplianceConfig)
    sender: SenderConfig = Field(default_factory=SenderConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def rate_limit_overrides(self) -> Dict[str, Dict[str, int]]:
        """Rate limit overrides as plain dicts keyed by template or channel."""
        return {name: limit.model_dump() for name, limit in self.compliance.rate_limits.items()}
