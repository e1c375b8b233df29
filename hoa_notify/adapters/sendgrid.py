"""SendGrid v3 Mail Send adapter."""

from typing import Any, Dict, Optional

from ..domain.models import Channel, DeliveryStatus
from ..logging import get_logger
from ..utils.contacts import mask_recipient
from .base import HTTPChannelAdapter, OutboundMessage
from .exceptions import AdapterConfigurationError, ChannelDeliveryError

logger = get_logger(__name__, component="adapter")

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

# SendGrid event webhook names to canonical statuses
SENDGRID_STATUS_MAP: Dict[str, str] = {
    "delivered": DeliveryStatus.DELIVERED.value,
    "bounce": DeliveryStatus.BOUNCED.value,
    "dropped": DeliveryStatus.FAILED.value,
    "deferred": DeliveryStatus.DEFERRED.value,
    "processed": DeliveryStatus.SENT.value,
    "open": DeliveryStatus.OPENED.value,
    "click": DeliveryStatus.CLICKED.value,
    "unsubscribe": DeliveryStatus.UNSUBSCRIBED.value,
    "spamreport": DeliveryStatus.SPAM.value,
}


# Suppression (unsubscribe) group per template; anything else uses group 1
UNSUBSCRIBE_GROUPS: Dict[str, int] = {
    "request_notification": 1,
    "board_notification": 2,
    "form_reminder": 3,
    "community_announcement": 4,
}
DEFAULT_UNSUBSCRIBE_GROUP = 1


def unsubscribe_group(template: Optional[str]) -> int:
    return UNSUBSCRIBE_GROUPS.get(template or "", DEFAULT_UNSUBSCRIBE_GROUP)


def map_sendgrid_status(event: Optional[str]) -> str:
    """Canonical status for a SendGrid event name (``unknown`` if unmapped)."""
    return SENDGRID_STATUS_MAP.get((event or "").strip().lower(), DeliveryStatus.UNKNOWN.value)


def normalize_sendgrid_message_id(sg_message_id: Optional[str]) -> Optional[str]:
    """Strip the ``.filter...`` suffix that event webhooks append.

    The Mail Send response header ``X-Message-Id`` carries only the prefix.

    Example:
        >>> normalize_sendgrid_message_id("abc123.filter0001.16.5FA.0")
        'abc123'
    """
    if not sg_message_id:
        return None
    return sg_message_id.split(".", 1)[0].strip() or None


class SendGridAdapter(HTTPChannelAdapter):
    """Email delivery through the SendGrid HTTP API."""

    provider_name = "sendgrid"
    channel = Channel.EMAIL

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        api_url: str = SENDGRID_API_URL,
        timeout: int = 30,
    ) -> None:
        if not api_key:
            raise AdapterConfigurationError("SENDGRID_API_KEY is required for the SendGrid adapter")
        super().__init__(timeout=timeout)
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.api_url = api_url

    def build_payload(self, message: OutboundMessage) -> Dict[str, Any]:
        """Mail Send request body for ``message``."""
        content = []
        # text/plain must precede text/html
        if message.text:
            content.append({"type": "text/plain", "value": message.text})
        if message.html:
            content.append({"type": "text/html", "value": message.html})

        payload: Dict[str, Any] = {
            "personalizations": [
                {
                    "to": [{"email": message.to}],
                    "custom_args": message.tracking_args(),
                }
            ],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject or "",
            "content": content,
            "asm": {"group_id": unsubscribe_group(message.template)},
        }
        if message.attachments:
            payload["attachments"] = [
                {
                    "content": attachment.content,
                    "filename": attachment.filename,
                    "type": attachment.type,
                    "disposition": "attachment",
                }
                for attachment in message.attachments
            ]
        return payload

    def send(self, message: OutboundMessage) -> str:
        response = self._post(
            self.api_url,
            recipient=message.to,
            json_data=self.build_payload(message),
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        message_id = response.headers.get("X-Message-Id")
        if not message_id:
            raise ChannelDeliveryError(
                "SendGrid accepted the message but returned no X-Message-Id",
                provider=self.provider_name,
                status_code=response.status_code,
                retryable=False,
            )

        logger.info(
            "Email accepted by SendGrid",
            extra={
                "event": "adapter.send.accepted",
                "provider": self.provider_name,
                "provider_id": message_id,
                "recipient": mask_recipient(message.to),
            },
        )
        return message_id
