"""Core domain models for notifications, deliveries and compliance.

This module defines the data structures shared by every layer:
- Notification: a logical "send this" request (ephemeral)
- DeliveryRecord / DeliveryEvent: the durable delivery ledger
- OptOut, NotificationPreferences, UserContact: compliance inputs
- ComplianceViolation: audit trail of blocked sends
- TemplateSource: stored template text
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.timestamps import ensure_utc


class Channel(str, Enum):
    """Delivery channels."""

    EMAIL = "email"
    SMS = "sms"


class OptOutScope(str, Enum):
    """Channels an opt-out applies to."""

    EMAIL = "email"
    SMS = "sms"
    ALL = "all"


class DeliveryStatus(str, Enum):
    """Canonical, provider-agnostic delivery status vocabulary."""

    SENT = "sent"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    FAILED = "failed"
    DEFERRED = "deferred"
    OPENED = "opened"
    CLICKED = "clicked"
    UNSUBSCRIBED = "unsubscribed"
    SPAM = "spam"
    RETRY = "retry"
    UNKNOWN = "unknown"


# Progress order used to ignore out-of-order webhooks. A status never
# replaces one with a higher rank.
STATUS_RANK: Dict[str, int] = {
    DeliveryStatus.UNKNOWN.value: 0,
    DeliveryStatus.RETRY.value: 1,
    DeliveryStatus.SENT.value: 1,
    DeliveryStatus.DEFERRED.value: 2,
    DeliveryStatus.FAILED.value: 3,
    DeliveryStatus.BOUNCED.value: 3,
    DeliveryStatus.DELIVERED.value: 3,
    DeliveryStatus.OPENED.value: 4,
    DeliveryStatus.CLICKED.value: 5,
    DeliveryStatus.UNSUBSCRIBED.value: 6,
    DeliveryStatus.SPAM.value: 6,
}


def _new_id() -> str:
    return uuid.uuid4().hex


def _stringify_id(v: Any) -> Optional[str]:
    if v is None:
        return None
    text = str(v).strip()
    return text or None


class Attachment(BaseModel):
    """Email attachment with base64 content."""

    content: str = Field(..., description="Base64 encoded file content")
    filename: str = Field(..., min_length=1)
    type: str = Field("application/octet-stream", description="MIME type")


class Notification(BaseModel):
    """A request to deliver one templated message to one recipient.

    ``type`` is kept as a plain string so that malformed requests reach the
    gateway's validation step (which reports them as ``invalid``) instead of
    failing at construction time.
    """

    id: str = Field(default_factory=_new_id)
    type: str = Field(..., description="email or sms")
    recipient: str = Field(..., description="Email address or phone number")
    template: str = Field(..., description="Template name")
    data: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = Field(None)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[Attachment] = Field(default_factory=list)

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> Optional[str]:
        return _stringify_id(v)

    @field_validator("type", "recipient", "template", mode="before")
    @classmethod
    def strip_strings(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @property
    def channel(self) -> Optional[Channel]:
        """Channel enum for ``type``, or None when it is not a known channel."""
        try:
            return Channel(self.type)
        except ValueError:
            return None


class DeliveryRecord(BaseModel):
    """One recorded send attempt.

    Created by the gateway; every later change (webhook status, retry marks)
    goes through the delivery ledger.
    """

    id: Optional[int] = Field(None, description="Database identifier")
    notification_id: str
    user_id: Optional[str] = None
    type: Channel
    recipient: str
    template: Optional[str] = None
    status: DeliveryStatus
    provider: Optional[str] = None
    provider_id: Optional[str] = None
    sent_at: datetime
    delivered_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @field_validator("sent_at", "delivered_at", "updated_at")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware and in UTC."""
        return ensure_utc(v)

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> Optional[str]:
        return _stringify_id(v)

    @property
    def retry_count(self) -> int:
        return int(self.metadata.get("retry_count", 0) or 0)


class DeliveryEvent(BaseModel):
    """A provider status event applied to a delivery record."""

    id: Optional[int] = None
    provider_id: str
    status: DeliveryStatus
    occurred_at: datetime
    reason: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"use_enum_values": True}

    @field_validator("occurred_at")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware and in UTC."""
        return ensure_utc(v)


class OptOut(BaseModel):
    """A recorded unsubscribe. Never deleted; the most recent one wins."""

    id: Optional[int] = None
    user_id: str
    type: OptOutScope
    reason: Optional[str] = None
    source: str = "manual"
    occurred_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"use_enum_values": True}

    @field_validator("occurred_at")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware and in UTC."""
        return ensure_utc(v)

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> str:
        normalized = _stringify_id(v)
        if normalized is None:
            raise ValueError("user_id is required")
        return normalized


class NotificationPreferences(BaseModel):
    """Per-user channel toggles and optional template allow-list."""

    user_id: str
    email_enabled: bool = True
    sms_enabled: bool = True
    notification_types: Optional[List[str]] = Field(
        None, description="Allowed template names; None allows all"
    )

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> str:
        return str(v).strip()

    def channel_enabled(self, channel: str) -> bool:
        if channel == Channel.EMAIL.value:
            return self.email_enabled
        if channel == Channel.SMS.value:
            return self.sms_enabled
        return False


class UserContact(BaseModel):
    """Contact details used to resolve inbound SMS senders to users."""

    user_id: str
    phone: Optional[str] = Field(None, description="E.164 phone number")
    email: Optional[str] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> str:
        return str(v).strip()


class ComplianceViolation(BaseModel):
    """Audit entry written when the compliance gate blocks a send."""

    id: Optional[int] = None
    user_id: Optional[str] = None
    type: str
    template: Optional[str] = None
    violation_type: str
    reason: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware and in UTC."""
        return ensure_utc(v)

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> Optional[str]:
        return _stringify_id(v)


class TemplateSource(BaseModel):
    """Raw template text for one (channel, name) pair."""

    channel: Channel
    name: str = Field(..., min_length=1)
    subject: Optional[str] = None
    html: Optional[str] = None
    text: str

    model_config = {"use_enum_values": True}


class DeliveryFilter(BaseModel):
    """Optional filters for ledger history and statistics queries."""

    user_id: Optional[str] = None
    type: Optional[Channel] = None
    template: Optional[str] = None
    status: Optional[DeliveryStatus] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @field_validator("start", "end")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware and in UTC."""
        return ensure_utc(v)

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> Optional[str]:
        return _stringify_id(v)
