"""Configuration management module for the HOA notification service."""

from .duration import DurationParseError, parse_duration
from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, parse_config_dict, validate_config_file
from .models import (
    AppConfig,
    BulkConfig,
    ComplianceConfig,
    HoursWindow,
    LedgerConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    MaintenanceConfig,
    QueueSettings,
    QueuesConfig,
    RateLimit,
    SenderConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "parse_config_dict",
    "validate_config_file",
    "load_environment_config",
    "parse_duration",
    # Configuration models
    "AppConfig",
    "QueuesConfig",
    "QueueSettings",
    "BulkConfig",
    "ComplianceConfig",
    "RateLimit",
    "HoursWindow",
    "SenderConfig",
    "LedgerConfig",
    "MaintenanceConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
    "DurationParseError",
]
