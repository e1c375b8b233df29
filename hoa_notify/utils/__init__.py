"""Utility functions for hashing, contacts and time handling."""

from .contacts import format_e164, is_valid_email, is_valid_phone, mask_recipient
from .hashing import compute_idempotency_key, hash_string
from .timestamps import (
    Clock,
    coerce_timestamp,
    ensure_utc,
    format_timestamp,
    local_hour,
    parse_iso_datetime,
    to_storage,
    unix_to_timestamp,
    utc_now,
)

__all__ = [
    # Hashing
    "compute_idempotency_key",
    "hash_string",
    # Contacts
    "format_e164",
    "is_valid_email",
    "is_valid_phone",
    "mask_recipient",
    # Timestamps
    "Clock",
    "utc_now",
    "ensure_utc",
    "parse_iso_datetime",
    "format_timestamp",
    "to_storage",
    "coerce_timestamp",
    "unix_to_timestamp",
    "local_hour",
]
