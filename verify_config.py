#!/usr/bin/env python3
"""Quick structural check of config.example.yaml without loading the service."""

import yaml
from pathlib import Path

KNOWN_SECTIONS = {
    "queues": dict,
    "bulk": dict,
    "compliance": dict,
    "sender": dict,
    "ledger": dict,
    "maintenance": dict,
    "logging": dict,
}
QUEUE_NAMES = ("immediate", "bulk", "scheduled")


def verify_config_structure(config_file: Path = Path("config.example.yaml")) -> bool:
    """Verify the example configuration has the expected sections and shapes."""
    if not config_file.exists():
        print(f"✗ {config_file} not found")
        return False

    try:
        with open(config_file, "r") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        print(f"✗ Failed to parse {config_file}: {e}")
        return False

    errors = []

    for key in config:
        if key not in KNOWN_SECTIONS:
            errors.append(f"Unknown top-level key: {key}")

    for key, expected_type in KNOWN_SECTIONS.items():
        if key in config and not isinstance(config[key], expected_type):
            errors.append(f"'{key}' must be of type {expected_type.__name__}")

    queues = config.get("queues", {})
    if isinstance(queues, dict):
        for name in QUEUE_NAMES:
            settings = queues.get(name)
            if settings is not None and not isinstance(settings, dict):
                errors.append(f"queues.{name} must be a mapping")

    compliance = config.get("compliance", {})
    if isinstance(compliance, dict):
        for window in ("sms_hours", "email_hours"):
            hours = compliance.get(window)
            if hours is None:
                continue
            if not isinstance(hours, dict) or "start" not in hours or "end" not in hours:
                errors.append(f"compliance.{window} needs start and end")
            elif hours["start"] >= hours["end"]:
                errors.append(f"compliance.{window} start must be before end")
        for name, limit in (compliance.get("rate_limits") or {}).items():
            if not isinstance(limit, dict) or not {"hourly", "daily"} <= set(limit):
                errors.append(f"compliance.rate_limits.{name} needs hourly and daily")

    sender = config.get("sender", {})
    if isinstance(sender, dict) and not sender.get("unsubscribe_base_url"):
        errors.append("sender.unsubscribe_base_url is required for compliant email")

    if errors:
        print(f"✗ {config_file} validation failed:")
        for error in errors:
            print(f"  - {error}")
        return False

    print(f"✓ {config_file} structure is valid")
    print(f"  - Timezone: {compliance.get('timezone', 'UTC')}")
    print(f"  - {len(compliance.get('rate_limits') or {})} rate limit overrides")
    print(f"  - Bulk batch size: {config.get('bulk', {}).get('batch_size', 10)}")
    return True


if __name__ == "__main__":
    import sys
    success = verify_config_structure()
    sys.exit(0 if success else 1)
