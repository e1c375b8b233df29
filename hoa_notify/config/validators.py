"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for potential issues and return warnings.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    # Rate limits where the hourly ceiling can never be reached
    compliance = config_dict.get("compliance", {})
    if isinstance(compliance, dict):
        rate_limits = compliance.get("rate_limits", {})
        if isinstance(rate_limits, dict):
            for name, limit in rate_limits.items():
                if not isinstance(limit, dict):
                    continue
                hourly = limit.get("hourly")
                daily = limit.get("daily")
                if isinstance(hourly, int) and isinstance(daily, int) and hourly > daily:
                    warning_messages.append(
                        f"Rate limit for '{name}' has hourly ({hourly}) above daily ({daily}); "
                        "the daily limit will always apply first"
                    )

    bulk = config_dict.get("bulk", {})
    if isinstance(bulk, dict):
        batch_size = bulk.get("batch_size", 10)
        if isinstance(batch_size, int) and batch_size > 100:
            warning_messages.append(
                f"Large bulk batch_size ({batch_size}) may trigger provider throttling"
            )

    queues = config_dict.get("queues", {})
    if isinstance(queues, dict):
        for queue_name in ("immediate", "bulk", "scheduled"):
            settings = queues.get(queue_name, {})
            if isinstance(settings, dict) and settings.get("attempts") == 1:
                warning_messages.append(
                    f"Queue '{queue_name}' has attempts=1; failed sends will not be retried"
                )

    sender = config_dict.get("sender", {})
    if not isinstance(sender, dict) or not sender.get("unsubscribe_base_url"):
        warning_messages.append(
            "sender.unsubscribe_base_url is not set; emails without an explicit "
            "unsubscribe_url will be blocked by the compliance gate"
        )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """
    Emit warning messages using Python's warnings module.

    Args:
        warning_messages: List of warning messages to emit
    """
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
