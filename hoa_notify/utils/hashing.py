"""Deterministic hashing for outbound message idempotency."""

import hashlib
import re


def compute_idempotency_key(
    notification_id: str, channel: str, recipient: str, template: str
) -> str:
    """Compute the idempotency key carried by every outbound message.

    The key is a SHA256 hash of ``notification_id:channel:recipient:template``
    with the channel and template lowercased and the recipient normalized, so
    a retried job produces the same key as its first attempt.

    Args:
        notification_id: Notification identifier
        channel: email or sms
        recipient: Email address or phone number
        template: Template name

    Returns:
        Hexadecimal SHA256 digest (64 characters)
    """
    composite_key = ":".join(
        [
            notification_id.strip(),
            channel.lower().strip(),
            _normalize_recipient(recipient),
            template.lower().strip(),
        ]
    )
    return hash_string(composite_key)


def _normalize_recipient(recipient: str) -> str:
    normalized = recipient.strip().lower()
    if "@" not in normalized:
        # Phone numbers: ignore formatting characters
        normalized = re.sub(r"[^\d+]", "", normalized)
    return normalized


def hash_string(value: str) -> str:
    """Compute SHA256 hash of a string value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
