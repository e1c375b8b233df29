"""Notification gateway turning a send request into a tracked delivery.

This module provides:
- NotificationGateway: validate, render, compliance check, send, record
- SendResult: outcome of one logical send
- NotificationError / NotificationValidationError: gateway exceptions
"""

from .gateway import NotificationGateway
from .models import NotificationError, NotificationValidationError, SendResult

__all__ = [
    "NotificationGateway",
    "SendResult",
    "NotificationError",
    "NotificationValidationError",
]
