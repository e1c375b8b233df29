"""Channel adapter contract and shared HTTP handling.

The notification core depends only on :class:`ChannelAdapter`:
``send(OutboundMessage) -> provider_id``. Provider vocabularies (request
payloads, webhook status names) stay inside the concrete adapters.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field

from ..domain.models import Attachment, Channel
from ..logging import get_logger
from ..utils.contacts import mask_recipient
from .exceptions import AdapterConfigurationError, ChannelDeliveryError

logger = get_logger(__name__, component="adapter")


class OutboundMessage(BaseModel):
    """A fully rendered message ready for a provider."""

    channel: Channel
    to: str
    text: str
    subject: Optional[str] = None
    html: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    idempotency_key: str
    notification_id: str
    template: str
    user_id: Optional[str] = None

    model_config = {"use_enum_values": True}

    def tracking_args(self) -> Dict[str, str]:
        """String-valued identifiers echoed back by provider webhooks."""
        args = {
            "notification_id": self.notification_id,
            "template": self.template,
            "idempotency_key": self.idempotency_key,
        }
        if self.user_id:
            args["user_id"] = self.user_id
        return args


class ChannelAdapter(ABC):
    """Boundary object wrapping one provider's send API."""

    #: Provider name recorded on delivery records
    provider_name: str = ""
    #: Channel this adapter delivers
    channel: Channel

    @abstractmethod
    def send(self, message: OutboundMessage) -> str:
        """Hand ``message`` to the provider.

        Returns:
            Provider message id used to correlate webhooks

        Raises:
            ChannelDeliveryError: If the provider does not accept the message
        """


class HTTPChannelAdapter(ChannelAdapter):
    """Adapter for providers reached over a JSON HTTP API."""

    def __init__(self, timeout: int = 30, user_agent: str = "HOANotify/1.0") -> None:
        """
        Args:
            timeout: HTTP request timeout in seconds (5-300)
            user_agent: User-Agent header for requests

        Raises:
            AdapterConfigurationError: If timeout is outside valid range
        """
        if not 5 <= timeout <= 300:
            raise AdapterConfigurationError(
                f"Timeout must be between 5 and 300 seconds, got: {timeout}"
            )
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": user_agent})

    def close(self) -> None:
        self._session.close()

    def _post(
        self,
        url: str,
        recipient: str,
        json_data: Optional[Dict[str, Any]] = None,
        form_data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[tuple] = None,
    ) -> requests.Response:
        """POST to the provider and translate failures.

        4xx responses are permanent (``retryable=False``); 5xx, timeouts and
        connection errors are retryable.

        Raises:
            ChannelDeliveryError: On any transport or HTTP failure
        """
        try:
            response = self._session.post(
                url,
                json=json_data,
                data=form_data,
                headers=headers,
                auth=auth,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"{self.provider_name} request timed out after {self.timeout} seconds",
                extra={
                    "event": "adapter.send.timeout",
                    "provider": self.provider_name,
                    "recipient": mask_recipient(recipient),
                },
            )
            raise ChannelDeliveryError(
                f"{self.provider_name} request timed out after {self.timeout} seconds",
                provider=self.provider_name,
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(
                f"{self.provider_name} request failed: {e}",
                extra={
                    "event": "adapter.send.error",
                    "provider": self.provider_name,
                    "error_type": type(e).__name__,
                },
            )
            raise ChannelDeliveryError(
                f"{self.provider_name} request failed: {e}", provider=self.provider_name
            ) from e

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code == 429
            logger.log(
                logging.WARNING if retryable else logging.ERROR,
                f"HTTP {response.status_code} from {self.provider_name}",
                extra={
                    "event": "adapter.send.rejected",
                    "provider": self.provider_name,
                    "status_code": response.status_code,
                    "recipient": mask_recipient(recipient),
                },
            )
            raise ChannelDeliveryError(
                f"{self.provider_name} returned HTTP {response.status_code}: {_error_detail(response)}",
                provider=self.provider_name,
                status_code=response.status_code,
                retryable=retryable,
            )

        return response


def _error_detail(response: requests.Response) -> str:
    """Best-effort provider error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or response.reason or "").strip()[:200]
    if isinstance(body, dict):
        if "errors" in body and body["errors"]:
            first = body["errors"][0]
            return first.get("message", str(first)) if isinstance(first, dict) else str(first)
        if "message" in body:
            return str(body["message"])
    return str(body)[:200]
