"""Query interface the compliance gate evaluates against."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from ..domain.models import ComplianceViolation, NotificationPreferences, OptOut, OptOutScope
from ..persistence.database import Database
from ..persistence.repositories import (
    ComplianceViolationRepository,
    DeliveryRepository,
    OptOutRepository,
    PreferencesRepository,
    UserContactRepository,
)


class ComplianceStore(ABC):
    """Reads and appends the gate needs; implemented over the database."""

    @abstractmethod
    def latest_opt_out(self, user_id: str, channel: str) -> Optional[OptOut]:
        """Most recent opt-out covering ``channel`` (or ``all``)."""

    @abstractmethod
    def count_sent(
        self, channel: str, since: datetime, user_id: Optional[str], recipient: str
    ) -> int:
        """Deliveries of ``channel`` since ``since`` for a user (else a recipient)."""

    @abstractmethod
    def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]:
        pass

    @abstractmethod
    def find_user_by_phone(self, phone: str) -> Optional[str]:
        pass

    @abstractmethod
    def add_opt_out(self, opt_out: OptOut) -> int:
        pass

    @abstractmethod
    def add_violation(self, violation: ComplianceViolation) -> int:
        pass

    @abstractmethod
    def opt_out_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, str, int]]:
        """(day, type, source, count)."""

    @abstractmethod
    def delivery_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, str, int]]:
        """(day, type, status, count)."""

    @abstractmethod
    def violation_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, int]]:
        """(day, violation_type, count)."""


class SqlComplianceStore(ComplianceStore):
    """:class:`ComplianceStore` backed by the shared :class:`Database`."""

    def __init__(self, database: Database):
        self.database = database

    def latest_opt_out(self, user_id: str, channel: str) -> Optional[OptOut]:
        with self.database.session() as session:
            return OptOutRepository(session).latest(user_id, [channel, OptOutScope.ALL.value])

    def count_sent(
        self, channel: str, since: datetime, user_id: Optional[str], recipient: str
    ) -> int:
        with self.database.session() as session:
            return DeliveryRepository(session).count_since(
                channel, since, user_id=user_id, recipient=recipient
            )

    def get_preferences(self, user_id: str) -> Optional[NotificationPreferences]:
        with self.database.session() as session:
            return PreferencesRepository(session).get(user_id)

    def find_user_by_phone(self, phone: str) -> Optional[str]:
        with self.database.session() as session:
            contact = UserContactRepository(session).get_by_phone(phone)
            return contact.user_id if contact else None

    def add_opt_out(self, opt_out: OptOut) -> int:
        with self.database.session() as session:
            return OptOutRepository(session).add(opt_out)

    def add_violation(self, violation: ComplianceViolation) -> int:
        with self.database.session() as session:
            return ComplianceViolationRepository(session).add(violation)

    def opt_out_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, str, int]]:
        with self.database.session() as session:
            return OptOutRepository(session).daily_counts(start, end)

    def delivery_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, str, int]]:
        with self.database.session() as session:
            return DeliveryRepository(session).daily_counts(start, until=end)

    def violation_counts(self, start: datetime, end: datetime) -> List[Tuple[str, str, int]]:
        with self.database.session() as session:
            return ComplianceViolationRepository(session).daily_counts(start, end)
