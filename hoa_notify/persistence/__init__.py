"""Persistence layer: SQLAlchemy engine, ORM schema and repositories.

Example usage:
    >>> from hoa_notify.persistence import Database, DeliveryRepository
    >>> database = Database("sqlite:///./data/hoa_notify.db")
    >>> with database.session() as session:
    ...     record = DeliveryRepository(session).get_by_provider_id("SM123")
"""

from .database import Database, redact_url
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    ComplianceViolationRepository,
    DeliveryEventRepository,
    DeliveryRepository,
    JobRepository,
    OptOutRepository,
    PreferencesRepository,
    TemplateRepository,
    UserContactRepository,
)

__all__ = [
    "Database",
    "redact_url",
    # Repositories
    "ComplianceViolationRepository",
    "DeliveryEventRepository",
    "DeliveryRepository",
    "JobRepository",
    "OptOutRepository",
    "PreferencesRepository",
    "TemplateRepository",
    "UserContactRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
