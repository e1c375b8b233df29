"""Notification gateway orchestrating one logical send.

A send goes through these steps:
1. Validate the notification (type, recipient, template, data)
2. Enrich data with sender identity and the unsubscribe link
3. Render the named template for the channel
4. Ask the compliance gate (unless compliance is bypassed)
5. Hand the rendered message to the channel adapter
6. Record the attempt in the delivery ledger (unless compliance is bypassed)

Steps 3 to 6 run under a lock per (user, channel), so two concurrent sends
for the same user cannot both pass the rate limit check in this process.
"""

import threading
import weakref
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from ..adapters.base import ChannelAdapter, OutboundMessage
from ..adapters.exceptions import ChannelDeliveryError, ChannelNotConfiguredError
from ..compliance.gate import ComplianceGate
from ..config.models import SenderConfig
from ..domain.models import Channel, DeliveryRecord, DeliveryStatus, Notification
from ..ledger.tracker import DeliveryLedger
from ..logging import get_logger
from ..logging.context import log_context
from ..templates.exceptions import NotificationTemplateError
from ..templates.renderer import RenderedMessage, TemplateRenderer
from ..utils.contacts import format_e164, is_valid_email, is_valid_phone, mask_recipient
from ..utils.hashing import compute_idempotency_key
from ..utils.timestamps import Clock, utc_now
from .models import NotificationValidationError, SendResult

logger = get_logger(__name__, component="gateway")

_CHANNELS = frozenset(channel.value for channel in Channel)


class NotificationGateway:
    """Sends one notification through render, compliance, adapter and ledger."""

    def __init__(
        self,
        renderer: TemplateRenderer,
        gate: ComplianceGate,
        ledger: DeliveryLedger,
        adapters: Mapping[str, ChannelAdapter],
        sender: Optional[SenderConfig] = None,
        bypass_compliance: bool = False,
        clock: Clock = utc_now,
    ):
        """
        Args:
            renderer: Template renderer
            gate: Compliance gate consulted before every send
            ledger: Delivery ledger receiving one record per attempt
            adapters: Channel adapters keyed by channel ("email", "sms")
            sender: Sender identity merged into template data
            bypass_compliance: Skip the gate and the ledger (demo mode)
            clock: Returns the current UTC time
        """
        self.renderer = renderer
        self.gate = gate
        self.ledger = ledger
        self.adapters = dict(adapters)
        self.sender = sender or SenderConfig()
        self.bypass_compliance = bypass_compliance
        self.clock = clock

        # Entries vanish once no in-flight send holds the lock
        self._locks: Dict[Tuple[str, str], threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

        if bypass_compliance:
            logger.warning(
                "Compliance checks and delivery tracking are bypassed",
                extra={"event": "gateway.bypass_enabled"},
            )

    def validate(self, notification: Notification) -> None:
        """Check required fields and recipient format.

        Raises:
            NotificationValidationError: Listing every problem found
        """
        problems: List[str] = []
        if notification.type not in _CHANNELS:
            problems.append(f"Invalid notification type: '{notification.type}'")
        if not notification.recipient:
            problems.append("Recipient is required")
        if not notification.template:
            problems.append("Template is required")
        if notification.data is None:
            problems.append("Data is required")

        if notification.recipient:
            if notification.type == Channel.EMAIL.value and not is_valid_email(notification.recipient):
                problems.append(f"Invalid email address: '{notification.recipient}'")
            if notification.type == Channel.SMS.value and not is_valid_phone(notification.recipient):
                problems.append(f"Invalid phone number: '{notification.recipient}'")

        if problems:
            raise NotificationValidationError(problems)

    def send(self, notification: Notification) -> SendResult:
        """Send one notification.

        Validation failures, compliance blocks and provider failures are
        reported in the result. Only configuration faults and ledger write
        failures raise.

        Raises:
            ChannelNotConfiguredError: If no adapter serves the channel
            PersistenceError: If the delivery record cannot be written
        """
        with log_context(notification_id=notification.id, template=notification.template):
            try:
                self.validate(notification)
            except NotificationValidationError as e:
                logger.warning(
                    f"Invalid notification: {e}",
                    extra={"event": "gateway.send.invalid", "problems": e.problems},
                )
                return SendResult(
                    success=False,
                    status="invalid",
                    error=str(e),
                    notification_id=notification.id,
                )

            adapter = self.adapters.get(notification.type)
            if adapter is None:
                raise ChannelNotConfiguredError(notification.type)

            prepared = self._prepare(notification)
            with self._lock_for(prepared):
                return self._send_locked(prepared, adapter)

    def _prepare(self, notification: Notification) -> Notification:
        recipient = notification.recipient
        if notification.type == Channel.SMS.value:
            recipient = format_e164(recipient)
        return notification.model_copy(
            update={"recipient": recipient, "data": self._enrich(notification)}
        )

    def _enrich(self, notification: Notification) -> Dict[str, Any]:
        """Caller data plus sender identity; caller-supplied keys win."""
        data = dict(notification.data)
        data.setdefault("sender_name", self.sender.name)
        if self.sender.address:
            data.setdefault("sender_address", self.sender.address)
        if self.sender.unsubscribe_base_url:
            data.setdefault("unsubscribe_url", self._unsubscribe_url(notification))
        return data

    def _unsubscribe_url(self, notification: Notification) -> str:
        params = {"type": notification.type}
        if notification.user_id:
            params["user_id"] = notification.user_id
        else:
            params["recipient"] = notification.recipient
        base = self.sender.unsubscribe_base_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode(params)}"

    def _lock_for(self, notification: Notification) -> threading.Lock:
        key = (notification.user_id or notification.recipient, notification.type)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _send_locked(self, notification: Notification, adapter: ChannelAdapter) -> SendResult:
        provider = adapter.provider_name
        idempotency_key = compute_idempotency_key(
            notification.id, notification.type, notification.recipient, notification.template
        )

        try:
            rendered = self.renderer.render(notification.type, notification.template, notification.data)
        except NotificationTemplateError as e:
            logger.error(
                f"Template rendering failed: {e}",
                extra={"event": "gateway.send.render_failed"},
            )
            result = SendResult(
                success=False,
                status="failed",
                provider=provider,
                error=f"Template rendering failed: {e}",
                notification_id=notification.id,
            )
            return self._record(notification, result, idempotency_key)

        if not self.bypass_compliance:
            decision = self.gate.evaluate(notification, rendered)
            if not decision.allowed:
                self.gate.record_violations(notification, decision)
                logger.info(
                    f"Notification blocked: {decision.reason}",
                    extra={
                        "event": "gateway.send.blocked",
                        "recipient": mask_recipient(notification.recipient),
                    },
                )
                return SendResult(
                    success=False,
                    status="blocked",
                    provider=provider,
                    reason=decision.reason,
                    notification_id=notification.id,
                )

        message = self._build_message(notification, rendered, idempotency_key)
        try:
            provider_id = adapter.send(message)
        except ChannelDeliveryError as e:
            logger.error(
                f"Delivery via {provider} failed: {e}",
                extra={
                    "event": "gateway.send.failed",
                    "provider": provider,
                    "retryable": e.retryable,
                    "recipient": mask_recipient(notification.recipient),
                },
            )
            result = SendResult(
                success=False,
                status="failed",
                provider=provider,
                error=str(e),
                notification_id=notification.id,
                retryable=e.retryable,
            )
        except Exception as e:
            logger.error(
                f"Unexpected error from {provider} adapter: {e}",
                exc_info=True,
                extra={"event": "gateway.send.error", "provider": provider},
            )
            result = SendResult(
                success=False,
                status="failed",
                provider=provider,
                error=f"{type(e).__name__}: {e}",
                notification_id=notification.id,
                retryable=True,
            )
        else:
            logger.info(
                f"Notification sent via {provider}",
                extra={
                    "event": "gateway.send.sent",
                    "provider": provider,
                    "provider_id": provider_id,
                    "recipient": mask_recipient(notification.recipient),
                },
            )
            result = SendResult(
                success=True,
                status="sent",
                provider=provider,
                provider_id=provider_id,
                notification_id=notification.id,
            )

        return self._record(notification, result, idempotency_key)

    def _build_message(
        self, notification: Notification, rendered: RenderedMessage, idempotency_key: str
    ) -> OutboundMessage:
        return OutboundMessage(
            channel=notification.type,
            to=notification.recipient,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            attachments=notification.attachments,
            idempotency_key=idempotency_key,
            notification_id=notification.id,
            template=notification.template,
            user_id=notification.user_id,
        )

    def _record(
        self, notification: Notification, result: SendResult, idempotency_key: str
    ) -> SendResult:
        """Write the attempt to the ledger; skipped when compliance is bypassed."""
        if self.bypass_compliance:
            return result

        caller_data = {
            key: value
            for key, value in notification.data.items()
            if key not in ("sender_name", "sender_address", "unsubscribe_url")
        }
        record = self.ledger.record(
            DeliveryRecord(
                notification_id=notification.id,
                user_id=notification.user_id,
                type=notification.type,
                recipient=notification.recipient,
                template=notification.template,
                status=DeliveryStatus.SENT if result.success else DeliveryStatus.FAILED,
                provider=result.provider,
                provider_id=result.provider_id,
                sent_at=self.clock(),
                error_message=result.error,
                metadata={
                    **notification.metadata,
                    "retry_count": int(notification.metadata.get("retry_count", 0) or 0),
                    "idempotency_key": idempotency_key,
                    "data": caller_data,
                },
            )
        )
        result.delivery_id = record.id
        return result
