"""Domain models for the HOA notification service."""

from .models import (
    STATUS_RANK,
    Attachment,
    Channel,
    ComplianceViolation,
    DeliveryEvent,
    DeliveryFilter,
    DeliveryRecord,
    DeliveryStatus,
    Notification,
    NotificationPreferences,
    OptOut,
    OptOutScope,
    TemplateSource,
    UserContact,
)
from .jobs import Job, JobState

__all__ = [
    "Attachment",
    "Channel",
    "ComplianceViolation",
    "DeliveryEvent",
    "DeliveryFilter",
    "DeliveryRecord",
    "DeliveryStatus",
    "Job",
    "JobState",
    "Notification",
    "NotificationPreferences",
    "OptOut",
    "OptOutScope",
    "STATUS_RANK",
    "TemplateSource",
    "UserContact",
]
