"""Twilio Programmable Messaging adapter."""

from typing import Any, Dict, Optional

from ..domain.models import Channel, DeliveryStatus
from ..logging import get_logger
from ..utils.contacts import mask_recipient
from .base import HTTPChannelAdapter, OutboundMessage
from .exceptions import AdapterConfigurationError, ChannelDeliveryError

logger = get_logger(__name__, component="adapter")

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

# Twilio MessageStatus values to canonical statuses
TWILIO_STATUS_MAP: Dict[str, str] = {
    "delivered": DeliveryStatus.DELIVERED.value,
    "failed": DeliveryStatus.FAILED.value,
    "undelivered": DeliveryStatus.FAILED.value,
    "sent": DeliveryStatus.SENT.value,
    "received": DeliveryStatus.DELIVERED.value,
}


def map_twilio_status(status: Optional[str]) -> str:
    """Canonical status for a Twilio MessageStatus (``unknown`` if unmapped)."""
    return TWILIO_STATUS_MAP.get((status or "").strip().lower(), DeliveryStatus.UNKNOWN.value)


class TwilioAdapter(HTTPChannelAdapter):
    """SMS delivery through the Twilio REST API."""

    provider_name = "twilio"
    channel = Channel.SMS

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: Optional[str] = None,
        messaging_service_sid: Optional[str] = None,
        status_callback_url: Optional[str] = None,
        api_base: str = TWILIO_API_BASE,
        timeout: int = 30,
    ) -> None:
        if not account_sid or not auth_token:
            raise AdapterConfigurationError(
                "TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN are required for the Twilio adapter"
            )
        if not from_number and not messaging_service_sid:
            raise AdapterConfigurationError(
                "Either TWILIO_PHONE_NUMBER or TWILIO_MESSAGING_SERVICE_SID must be set"
            )
        super().__init__(timeout=timeout)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.status_callback_url = status_callback_url
        self.messages_url = f"{api_base}/Accounts/{account_sid}/Messages.json"

    def build_form(self, message: OutboundMessage) -> Dict[str, Any]:
        """Form fields of the Messages create request."""
        form: Dict[str, Any] = {"To": message.to, "Body": message.text}
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid
        else:
            form["From"] = self.from_number
        if self.status_callback_url:
            form["StatusCallback"] = self.status_callback_url
        return form

    def send(self, message: OutboundMessage) -> str:
        response = self._post(
            self.messages_url,
            recipient=message.to,
            form_data=self.build_form(message),
            auth=(self.account_sid, self.auth_token),
        )
        try:
            sid = response.json().get("sid")
        except ValueError as e:
            raise ChannelDeliveryError(
                f"Failed to parse Twilio response: {e}",
                provider=self.provider_name,
                status_code=response.status_code,
                retryable=False,
            ) from e
        if not sid:
            raise ChannelDeliveryError(
                "Twilio accepted the message but returned no sid",
                provider=self.provider_name,
                status_code=response.status_code,
                retryable=False,
            )

        logger.info(
            "SMS accepted by Twilio",
            extra={
                "event": "adapter.send.accepted",
                "provider": self.provider_name,
                "provider_id": sid,
                "recipient": mask_recipient(message.to),
            },
        )
        return sid
