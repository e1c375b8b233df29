"""Channel adapters wrapping third-party email and SMS providers.

The notification core consumes only the contract:
    adapter.send(OutboundMessage) -> provider_id

Build the configured set at startup:
    from hoa_notify.adapters import build_channel_adapters
    adapters = build_channel_adapters(env_config)
"""

from .base import ChannelAdapter, HTTPChannelAdapter, OutboundMessage
from .exceptions import (
    AdapterConfigurationError,
    AdapterError,
    ChannelDeliveryError,
    ChannelNotConfiguredError,
)
from .factory import build_channel_adapters
from .sendgrid import (
    SENDGRID_STATUS_MAP,
    SendGridAdapter,
    map_sendgrid_status,
    normalize_sendgrid_message_id,
)
from .smtp import SMTPAdapter
from .twilio import TWILIO_STATUS_MAP, TwilioAdapter, map_twilio_status

__all__ = [
    # Contract and factory
    "ChannelAdapter",
    "HTTPChannelAdapter",
    "OutboundMessage",
    "build_channel_adapters",
    # Adapters
    "SendGridAdapter",
    "SMTPAdapter",
    "TwilioAdapter",
    # Status mapping
    "SENDGRID_STATUS_MAP",
    "TWILIO_STATUS_MAP",
    "map_sendgrid_status",
    "map_twilio_status",
    "normalize_sendgrid_message_id",
    # Exceptions
    "AdapterError",
    "AdapterConfigurationError",
    "ChannelDeliveryError",
    "ChannelNotConfiguredError",
]
