"""In-memory channel adapter for tests and local dry runs.

Records every outbound message instead of calling a provider, so gateway
and queue tests can assert on exactly what would have been sent.
"""

import itertools
from typing import List, Optional

from hoa_notify.adapters.base import ChannelAdapter, OutboundMessage
from hoa_notify.adapters.exceptions import ChannelDeliveryError
from hoa_notify.domain.models import Channel


class RecordingAdapter(ChannelAdapter):
    """Adapter that stores sent messages and returns sequential provider ids.

    Attributes:
        sent: Every message accepted, in send order
        failures: Errors to raise on the next sends (consumed FIFO)
    """

    def __init__(self, channel: Channel, provider_name: Optional[str] = None):
        self.channel = channel
        self.provider_name = provider_name or f"fake-{channel.value}"
        self.sent: List[OutboundMessage] = []
        self.failures: List[ChannelDeliveryError] = []
        self._ids = itertools.count(1)

    def fail_next(self, message: str = "provider unavailable", retryable: bool = True,
                  status_code: Optional[int] = None, times: int = 1) -> None:
        """Queue ``times`` delivery failures before sends succeed again."""
        for _ in range(times):
            self.failures.append(
                ChannelDeliveryError(
                    message,
                    provider=self.provider_name,
                    status_code=status_code,
                    retryable=retryable,
                )
            )

    def send(self, message: OutboundMessage) -> str:
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(message)
        return f"{self.channel.value}-msg-{next(self._ids)}"


def build_fake_adapters() -> dict:
    """One recording adapter per channel, keyed like the real factory output."""
    return {
        Channel.EMAIL.value: RecordingAdapter(Channel.EMAIL),
        Channel.SMS.value: RecordingAdapter(Channel.SMS),
    }
