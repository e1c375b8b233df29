"""Configuration loader for the HOA notification service."""

import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_for_warnings, emit_warnings

_DEFAULT_LOCATIONS = [Path("config.yaml"), Path("config") / "config.yaml"]


def load_config(config_path: Optional[Path] = None) -> tuple[AppConfig, EnvironmentConfig]:
    """
    Load and validate configuration from YAML file and environment variables.

    Config file lookup:
    1. Use provided config_path if given (must exist)
    2. Try config.yaml in current directory
    3. Try ./config/config.yaml
    4. Fall back to built-in defaults with a warning

    Args:
        config_path: Optional path to configuration file

    Returns:
        Tuple of (AppConfig, EnvironmentConfig) with validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or an explicit file is missing
    """
    config_file = _find_config_file(config_path)

    if config_file is None:
        warnings.warn(
            "No config.yaml found; using built-in defaults", UserWarning, stacklevel=2
        )
        config_dict: Dict[str, Any] = {}
    else:
        config_dict = _read_yaml(config_file)
        if not config_dict:
            warnings.warn(
                f"Configuration file {config_file} is empty; using built-in defaults",
                UserWarning,
                stacklevel=2,
            )
            config_dict = {}

    app_config = parse_config_dict(config_dict)

    # Environment errors are already ConfigurationError
    env_config = load_environment_config()

    return app_config, env_config


def parse_config_dict(config_dict: Dict[str, Any]) -> AppConfig:
    """
    Validate a raw configuration mapping into an AppConfig.

    Non-fatal issues are emitted as warnings before validation.

    Raises:
        ConfigurationError: If pydantic validation fails
    """
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration root must be a mapping",
            errors=[f"Got {type(config_dict).__name__}"],
            suggestions=["Review config.example.yaml for correct format"],
        )

    config_warnings = check_for_warnings(config_dict)
    if config_warnings:
        emit_warnings(config_warnings)

    try:
        return AppConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            "Configuration validation failed",
            errors=[_describe_error(error) for error in e.errors()],
            suggestions=[
                "Review config.example.yaml for correct format",
                "Check that durations look like '15m', '1h' or 'PT30S'",
                "Verify field types match the expected schema",
            ],
        ) from e


_SCALAR_TYPES = {"string_type", "int_type", "int_parsing", "bool_type", "bool_parsing", "float_type", "dict_type"}


def _describe_error(error: Dict[str, Any]) -> str:
    """One readable line per pydantic error, e.g. "bulk -> batch_size: ..."."""
    where = " -> ".join(str(part) for part in error["loc"])
    kind = error["type"]
    if kind == "missing":
        return f"Missing required field: {where}"
    if kind in _SCALAR_TYPES:
        expected = kind.split("_")[0]
        return f"Invalid type for '{where}': expected {expected}, got {error.get('input')!r}"
    return f"{where}: {error['msg']}"


def _read_yaml(config_file: Path) -> Any:
    try:
        with open(config_file, "r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[
                f"Ensure {config_file} is readable",
                "Check file permissions",
            ],
        ) from e


def _find_config_file(config_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find configuration file using fallback logic.

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Path to configuration file, or None when no default location exists

    Raises:
        ConfigurationError: If an explicit path does not exist
    """
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[
                    f"Ensure {config_path} exists",
                    "Check the path and try again",
                ],
            )
        return config_path

    for candidate in _DEFAULT_LOCATIONS:
        if candidate.exists():
            return candidate

    return None


def validate_config_file(config_path: Path) -> bool:
    """
    Validate a configuration file without loading environment variables.

    Useful for pre-deployment validation.

    Args:
        config_path: Path to configuration file

    Returns:
        True if valid, False otherwise (errors printed)
    """
    try:
        parse_config_dict(_read_yaml(config_path) or {})
        print(f"✓ Configuration file {config_path} is valid")
        return True
    except ConfigurationError as e:
        print(f"✗ Configuration validation failed:\n{e}")
        return False
