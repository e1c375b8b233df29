"""Custom exceptions for channel adapters."""

from typing import Optional


class AdapterError(Exception):
    """Base exception for all channel adapter errors."""

    pass


class AdapterConfigurationError(AdapterError):
    """Adapter cannot be built from the given settings.

    Raised at startup (missing or half-set credentials), never during a send.
    """

    pass


class ChannelNotConfiguredError(AdapterConfigurationError):
    """No adapter is registered for the requested channel."""

    def __init__(self, channel: str) -> None:
        super().__init__(f"No channel adapter configured for '{channel}'")
        self.channel = channel


class ChannelDeliveryError(AdapterError):
    """The provider refused or failed to accept a message.

    Attributes:
        provider: Provider name (sendgrid, twilio, smtp)
        status_code: HTTP status when the failure came from an HTTP API
        retryable: Whether a later attempt may succeed (5xx, timeouts)
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable
