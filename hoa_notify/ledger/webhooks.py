"""Translate provider webhooks into ledger updates and opt-outs.

Each event in a batch is applied on its own: a malformed or failing event is
reported in the batch result and never prevents the remaining events from
being applied.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from ..adapters.sendgrid import map_sendgrid_status, normalize_sendgrid_message_id
from ..adapters.twilio import map_twilio_status
from ..compliance.gate import ComplianceGate
from ..logging import get_logger
from ..utils.contacts import mask_recipient
from ..utils.timestamps import coerce_timestamp
from .tracker import DeliveryLedger

logger = get_logger(__name__, component="webhooks")

STOP_KEYWORDS = frozenset({"STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "END", "QUIT"})

_SENDGRID_METADATA_FIELDS = ("useragent", "ip", "url")


class WebhookBatchResult(BaseModel):
    """Outcome of applying one webhook request."""

    received: int = 0
    updated: int = 0
    unmatched: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class WebhookProcessor:
    """Entry points called by the HTTP router for provider callbacks."""

    def __init__(self, ledger: DeliveryLedger, gate: ComplianceGate):
        self.ledger = ledger
        self.gate = gate

    def handle_email_events(
        self, events: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]
    ) -> WebhookBatchResult:
        """Apply a SendGrid event webhook payload (a list or a single event)."""
        if isinstance(events, Mapping):
            events = [events]

        result = WebhookBatchResult(received=len(events))
        for index, event in enumerate(events):
            try:
                matched = self._apply_sendgrid_event(event)
            except Exception as e:
                logger.error(
                    f"Failed to apply email event {index}: {e}",
                    exc_info=True,
                    extra={"event": "webhook.email.error", "index": index},
                )
                result.errors.append({"index": index, "error": str(e)})
                continue
            if matched:
                result.updated += 1
            else:
                result.unmatched += 1

        logger.info(
            f"Processed {result.received} email events",
            extra={
                "event": "webhook.email.processed",
                "received": result.received,
                "updated": result.updated,
                "unmatched": result.unmatched,
                "errors": len(result.errors),
            },
        )
        return result

    def _apply_sendgrid_event(self, event: Mapping[str, Any]) -> bool:
        provider_id = normalize_sendgrid_message_id(event.get("sg_message_id"))
        if provider_id is None:
            raise ValueError("Event has no sg_message_id")

        event_name = event.get("event")
        metadata: Dict[str, Any] = {"sendgrid_event": event_name}
        for field in _SENDGRID_METADATA_FIELDS:
            if event.get(field):
                metadata[field] = event[field]

        record = self.ledger.update_status(
            provider_id,
            map_sendgrid_status(event_name),
            timestamp=coerce_timestamp(event.get("timestamp")),
            reason=event.get("reason"),
            metadata=metadata,
        )
        return record is not None

    def handle_sms_status(self, payload: Mapping[str, Any]) -> WebhookBatchResult:
        """Apply a Twilio status callback (``MessageSid``, ``MessageStatus``...)."""
        result = WebhookBatchResult(received=1)
        try:
            sid = (payload.get("MessageSid") or "").strip()
            if not sid:
                raise ValueError("Status callback has no MessageSid")

            twilio_status = payload.get("MessageStatus")
            error_code = payload.get("ErrorCode")
            reason = payload.get("ErrorMessage") or (f"Twilio error {error_code}" if error_code else None)
            metadata: Dict[str, Any] = {"twilio_status": twilio_status}
            if error_code:
                metadata["error_code"] = str(error_code)

            record = self.ledger.update_status(
                sid,
                map_twilio_status(twilio_status),
                reason=reason,
                metadata=metadata,
            )
        except Exception as e:
            logger.error(
                f"Failed to apply SMS status callback: {e}",
                exc_info=True,
                extra={"event": "webhook.sms.error"},
            )
            result.errors.append({"index": 0, "error": str(e)})
            return result

        if record is None:
            result.unmatched = 1
        else:
            result.updated = 1
        return result

    def handle_inbound_sms(self, from_number: str, body: Optional[str]) -> Optional[str]:
        """Route an inbound SMS; STOP keywords record an opt-out.

        Returns:
            The opted-out user id, or None when nothing was recorded
        """
        keyword = (body or "").strip().upper()
        if keyword not in STOP_KEYWORDS:
            logger.info(
                "Inbound SMS ignored",
                extra={"event": "webhook.inbound_sms.ignored", "phone": mask_recipient(from_number)},
            )
            return None
        return self.gate.process_sms_stop(from_number, body or "")
