"""Job priorities derived from the notification template (1 runs first)."""

from typing import Dict, Optional

PRIORITY_MAP: Dict[str, int] = {
    # High
    "emergency_alert": 1,
    "emergency_alert_sms": 1,
    "security_notification": 2,
    "urgent_request": 3,
    # Medium
    "request_notification": 4,
    "board_notification": 5,
    "form_reminder": 6,
    # Low
    "community_announcement": 7,
    "newsletter": 8,
    "marketing": 9,
    "general": 10,
}

DEFAULT_PRIORITY = 5


def job_priority(template: Optional[str]) -> int:
    """Priority for a template name, 5 when the template is not listed."""
    return PRIORITY_MAP.get(template or "", DEFAULT_PRIORITY)
