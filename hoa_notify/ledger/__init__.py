"""Delivery ledger and provider webhook processing.

Example usage:
    >>> from hoa_notify.ledger import DeliveryLedger, WebhookProcessor
    >>> ledger = DeliveryLedger(database)
    >>> ledger.update_status("SM123", "delivered")
"""

from .tracker import RETRYABLE_STATUSES, DeliveryLedger
from .webhooks import STOP_KEYWORDS, WebhookBatchResult, WebhookProcessor

__all__ = [
    "DeliveryLedger",
    "RETRYABLE_STATUSES",
    "WebhookProcessor",
    "WebhookBatchResult",
    "STOP_KEYWORDS",
]
