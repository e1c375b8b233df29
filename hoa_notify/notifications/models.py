"""Result types and exceptions for the notification gateway."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationValidationError(NotificationError):
    """A notification is missing required fields or has a malformed recipient.

    Attributes:
        problems: Every validation problem found, in check order
    """

    def __init__(self, problems: List[str]):
        super().__init__("; ".join(problems))
        self.problems = problems


@dataclass
class SendResult:
    """Outcome of one logical send.

    Attributes:
        success: True only when the provider accepted the message
        status: sent, failed, blocked or invalid
        provider: Provider name of the channel adapter, when one was chosen
        provider_id: Provider message id on success
        error: Failure description for failed and invalid sends
        reason: Compliance denial reason for blocked sends
        notification_id: Id of the notification that was sent
        delivery_id: Ledger record id when a record was written
        retryable: Whether a failed send may succeed on a later attempt
    """

    success: bool
    status: str  # "sent", "failed", "blocked", "invalid"
    provider: Optional[str] = None
    provider_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    notification_id: Optional[str] = None
    delivery_id: Optional[int] = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict form, used as a job result."""
        return asdict(self)

    @property
    def is_blocked(self) -> bool:
        return self.status == "blocked"

    @property
    def is_invalid(self) -> bool:
        return self.status == "invalid"
