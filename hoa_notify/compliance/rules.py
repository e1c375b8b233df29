"""Rule tables and pure checks used by the compliance gate."""

from typing import Dict, List, Mapping, Optional

from ..domain.models import Channel

# Per-channel ceilings when a template has no entry of its own
DEFAULT_RATE_LIMITS: Dict[str, Dict[str, int]] = {
    Channel.EMAIL.value: {"hourly": 10, "daily": 50},
    Channel.SMS.value: {"hourly": 5, "daily": 20},
}

TEMPLATE_RATE_LIMITS: Dict[str, Dict[str, int]] = {
    # Urgent
    "emergency_alert": {"hourly": 20, "daily": 100},
    "emergency_alert_sms": {"hourly": 20, "daily": 100},
    "security_notification": {"hourly": 15, "daily": 75},
    # Marketing
    "community_announcement": {"hourly": 2, "daily": 5},
    "newsletter": {"hourly": 1, "daily": 2},
    # Transactional
    "request_notification": {"hourly": 8, "daily": 30},
    "board_notification": {"hourly": 6, "daily": 25},
    "form_reminder": {"hourly": 3, "daily": 10},
}

FALLBACK_RATE_LIMIT: Dict[str, int] = {"hourly": 5, "daily": 20}

URGENT_TEMPLATES = frozenset({"emergency_alert", "emergency_alert_sms", "security_notification"})
MARKETING_TEMPLATES = frozenset({"community_announcement", "newsletter"})

MAX_SUBJECT_LENGTH = 78
MAX_SMS_LENGTH = 160
OPT_OUT_PHRASES = ("stop", "opt out")


def resolve_rate_limit(
    channel: str,
    template: Optional[str],
    overrides: Optional[Mapping[str, Mapping[str, int]]] = None,
) -> Dict[str, int]:
    """Limits for a send: template entry, then channel default, then fallback.

    ``overrides`` (from configuration) may replace template or channel entries.

    Example:
        >>> resolve_rate_limit("email", "newsletter")
        {'hourly': 1, 'daily': 2}
        >>> resolve_rate_limit("sms", "unknown_template")
        {'hourly': 5, 'daily': 20}
    """
    overrides = overrides or {}
    if template:
        if template in overrides:
            return dict(overrides[template])
        if template in TEMPLATE_RATE_LIMITS:
            return dict(TEMPLATE_RATE_LIMITS[template])
    if channel in overrides:
        return dict(overrides[channel])
    if channel in DEFAULT_RATE_LIMITS:
        return dict(DEFAULT_RATE_LIMITS[channel])
    return dict(FALLBACK_RATE_LIMIT)


def email_content_issues(data: Mapping, subject: Optional[str]) -> List[str]:
    """CAN-SPAM style problems with an email's data and subject line."""
    issues = []
    if not data.get("unsubscribe_url"):
        issues.append("Missing unsubscribe URL")
    if not data.get("sender_name") or not data.get("sender_address"):
        issues.append("Missing sender identification")
    if subject and len(subject) > MAX_SUBJECT_LENGTH:
        issues.append(f"Subject line too long (>{MAX_SUBJECT_LENGTH} characters)")
    return issues


def sms_content_issues(body: str) -> List[str]:
    """TCPA style problems with an SMS body."""
    issues = []
    lowered = body.lower()
    if not any(phrase in lowered for phrase in OPT_OUT_PHRASES):
        issues.append("Missing opt-out instructions (STOP)")
    if len(body) > MAX_SMS_LENGTH:
        issues.append(f"SMS message too long (>{MAX_SMS_LENGTH} characters)")
    return issues


def in_window(hour: int, start: int, end: int) -> bool:
    return start <= hour < end
