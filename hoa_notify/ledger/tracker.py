"""Delivery ledger: recorded send attempts and their webhook-driven status.

The gateway inserts one record per send attempt. Afterwards only the ledger
changes a record: provider webhooks move its status forward, and the
maintenance scheduler marks failed records for retry.
"""

from collections import defaultdict
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from ..domain.models import (
    STATUS_RANK,
    DeliveryEvent,
    DeliveryFilter,
    DeliveryRecord,
    DeliveryStatus,
)
from ..logging import get_logger
from ..persistence.database import Database
from ..persistence.repositories import DeliveryEventRepository, DeliveryRepository
from ..utils.contacts import mask_recipient
from ..utils.timestamps import Clock, format_timestamp, parse_iso_datetime, utc_now

logger = get_logger(__name__, component="ledger")

StatusListener = Callable[[DeliveryRecord, str], None]

RETRYABLE_STATUSES = (DeliveryStatus.FAILED.value, DeliveryStatus.BOUNCED.value)

# Statuses implying the message reached the recipient
_DELIVERED = frozenset(
    {DeliveryStatus.DELIVERED.value, DeliveryStatus.OPENED.value, DeliveryStatus.CLICKED.value}
)
_OPENED = frozenset({DeliveryStatus.OPENED.value, DeliveryStatus.CLICKED.value})
_FAILED = frozenset(RETRYABLE_STATUSES)

_RETRY_WINDOW = timedelta(hours=24)
_DAILY_WINDOW = timedelta(days=30)


def _percent(numerator: int, denominator: int) -> float:
    return round(numerator / denominator * 100, 2) if denominator else 0.0


class DeliveryLedger:
    """Durable record of delivery attempts, status history and statistics."""

    def __init__(self, database: Database, clock: Clock = utc_now, max_retry_count: int = 3):
        self.database = database
        self.clock = clock
        self.max_retry_count = max_retry_count
        self._listeners: List[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> None:
        """Call ``listener(record, status)`` after every applied status update."""
        self._listeners.append(listener)

    def record(self, delivery: DeliveryRecord) -> DeliveryRecord:
        """Insert a new delivery record.

        Raises:
            PersistenceError: If the write fails
        """
        with self.database.session() as session:
            stored = DeliveryRepository(session).add(delivery)

        logger.info(
            f"Delivery tracked: {stored.type} to {mask_recipient(stored.recipient)} - {stored.status}",
            extra={
                "event": "ledger.delivery.recorded",
                "delivery_id": stored.id,
                "notification_id": stored.notification_id,
                "status": stored.status,
                "provider": stored.provider,
            },
        )
        return stored

    def update_status(
        self,
        provider_id: str,
        status: str,
        timestamp=None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[DeliveryRecord]:
        """Apply a provider status event to the record with ``provider_id``.

        The event is appended to the record's history unless an identical one
        was already applied: same status and time, or same status alone when
        the provider sent no ``timestamp``. A status ranked below the
        current one is kept in the history but does not overwrite the record,
        so webhooks arriving out of order never move a record backwards.

        Returns:
            The updated record, or None if no record carries ``provider_id``
        """
        status = DeliveryStatus(status).value
        occurred_at = timestamp or self.clock()

        with self.database.session() as session:
            deliveries = DeliveryRepository(session)
            record = deliveries.get_by_provider_id(provider_id)
            if record is None:
                logger.warning(
                    f"No delivery found for provider ID: {provider_id}",
                    extra={"event": "ledger.update.unmatched", "provider_id": provider_id},
                )
                return None

            inserted = DeliveryEventRepository(session).add_if_new(
                DeliveryEvent(
                    provider_id=provider_id,
                    status=status,
                    occurred_at=occurred_at,
                    reason=reason,
                    payload=metadata or {},
                ),
                match_time=timestamp is not None,
            )
            if not inserted:
                logger.debug(
                    f"Duplicate {status} event for {provider_id} ignored",
                    extra={"event": "ledger.update.duplicate", "provider_id": provider_id},
                )
                return record

            previous = record.status
            if STATUS_RANK[status] >= STATUS_RANK.get(previous, 0):
                record.status = status
            if status == DeliveryStatus.DELIVERED.value or (
                status in _OPENED and record.delivered_at is None
            ):
                record.delivered_at = occurred_at
            if reason:
                record.error_message = reason
            if metadata:
                record.metadata = {**record.metadata, **metadata}
            record.updated_at = self.clock()
            record = deliveries.save(record)

        logger.info(
            f"Delivery status updated: {provider_id} -> {record.status}",
            extra={
                "event": "ledger.update.applied",
                "provider_id": provider_id,
                "previous_status": previous,
                "reported_status": status,
                "status": record.status,
            },
        )
        self._notify(record, status)
        return record

    def _notify(self, record: DeliveryRecord, status: str) -> None:
        for listener in self._listeners:
            try:
                listener(record, status)
            except Exception as e:
                logger.error(
                    f"Delivery listener failed: {e}",
                    exc_info=True,
                    extra={"event": "ledger.listener.error", "delivery_id": record.id},
                )

    def get_record(self, record_id: int) -> Optional[DeliveryRecord]:
        with self.database.session() as session:
            return DeliveryRepository(session).get(record_id)

    def get_events(self, provider_id: str) -> List[DeliveryEvent]:
        """Status history of one message, oldest first."""
        with self.database.session() as session:
            return DeliveryEventRepository(session).list_for(provider_id)

    def get_stats(self, filters: Optional[DeliveryFilter] = None) -> Dict[str, Any]:
        """Aggregate delivery statistics.

        Returns:
            Dictionary with:
            - overall: count and average delivery seconds per (type, status)
            - daily: per-day counts for the last 30 days
            - rates: per-type delivery, open and click rates (percent)
            - summary: total sent, delivered and failed
        """
        since = self.clock() - _DAILY_WINDOW
        with self.database.session() as session:
            deliveries = DeliveryRepository(session)
            status_rows = deliveries.status_counts(filters)
            timings = deliveries.delivery_times(filters)
            daily_rows = deliveries.daily_counts(since, filters=filters)

        durations = defaultdict(list)
        for kind, status, sent_at, delivered_at in timings:
            sent, delivered = parse_iso_datetime(sent_at), parse_iso_datetime(delivered_at)
            if sent and delivered:
                durations[(kind, status)].append((delivered - sent).total_seconds())

        overall = []
        for kind, status, count in sorted(status_rows):
            samples = durations.get((kind, status))
            overall.append(
                {
                    "type": kind,
                    "status": status,
                    "count": count,
                    "avg_delivery_seconds": round(sum(samples) / len(samples), 2) if samples else None,
                }
            )

        totals: Dict[str, Dict[str, int]] = defaultdict(
            lambda: {"total_sent": 0, "delivered": 0, "failed": 0, "opened": 0, "clicked": 0}
        )
        for kind, status, count in status_rows:
            row = totals[kind]
            row["total_sent"] += count
            if status in _DELIVERED:
                row["delivered"] += count
            if status in _FAILED:
                row["failed"] += count
            if status in _OPENED:
                row["opened"] += count
            if status == DeliveryStatus.CLICKED.value:
                row["clicked"] += count

        rates = []
        for kind in sorted(totals):
            row = totals[kind]
            is_email = kind == "email"
            rates.append(
                {
                    "type": kind,
                    **row,
                    "delivery_rate": _percent(row["delivered"], row["total_sent"]),
                    "open_rate": (
                        _percent(row["opened"], row["delivered"])
                        if is_email and row["delivered"]
                        else None
                    ),
                    "click_rate": (
                        _percent(row["clicked"], row["opened"]) if is_email and row["opened"] else None
                    ),
                }
            )

        return {
            "overall": overall,
            "daily": [
                {"date": day, "type": kind, "status": status, "count": count}
                for day, kind, status, count in daily_rows
            ],
            "rates": rates,
            "summary": {
                "total_sent": sum(row["total_sent"] for row in totals.values()),
                "total_delivered": sum(row["delivered"] for row in totals.values()),
                "total_failed": sum(row["failed"] for row in totals.values()),
            },
        }

    def get_history(
        self, filters: Optional[DeliveryFilter] = None, limit: int = 100, offset: int = 0
    ) -> List[DeliveryRecord]:
        """Delivery records matching ``filters``, newest first."""
        with self.database.session() as session:
            return DeliveryRepository(session).list(filters, limit=limit, offset=offset)

    def get_failed_candidates(self, limit: int = 100) -> List[DeliveryRecord]:
        """Failed or bounced records of the last 24h still under the retry cap, oldest first."""
        with self.database.session() as session:
            return DeliveryRepository(session).failed_since(
                RETRYABLE_STATUSES,
                self.clock() - _RETRY_WINDOW,
                max_retry_count=self.max_retry_count,
                limit=limit,
            )

    def mark_for_retry(self, record_id: int) -> Optional[DeliveryRecord]:
        """Set status ``retry``, bump ``retry_count`` and stamp ``retry_at``.

        Returns:
            The updated record, or None if ``record_id`` does not exist
        """
        now = self.clock()
        with self.database.session() as session:
            deliveries = DeliveryRepository(session)
            record = deliveries.get(record_id)
            if record is None:
                return None
            record.status = DeliveryStatus.RETRY.value
            record.metadata = {
                **record.metadata,
                "retry_count": record.retry_count + 1,
                "retry_at": format_timestamp(now),
            }
            record.updated_at = now
            record = deliveries.save(record)

        logger.info(
            f"Delivery marked for retry: {record_id}",
            extra={
                "event": "ledger.retry.marked",
                "delivery_id": record_id,
                "retry_count": record.retry_count,
            },
        )
        return record

    def cleanup(self, days_to_keep: int = 90) -> int:
        """Hard-delete records (and their events) older than ``days_to_keep``.

        Returns:
            Number of delivery records deleted
        """
        cutoff = self.clock() - timedelta(days=days_to_keep)
        with self.database.session() as session:
            records, events = DeliveryRepository(session).delete_before(cutoff)

        logger.info(
            f"Cleaned up {records} old delivery records",
            extra={
                "event": "ledger.cleanup.completed",
                "records_deleted": records,
                "events_deleted": events,
                "days_to_keep": days_to_keep,
            },
        )
        return records
