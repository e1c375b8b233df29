"""Database connection and session management.

A :class:`Database` owns one SQLAlchemy engine and session factory. It is
built once by the service container and shared by the compliance gate, the
delivery ledger and the template store, so all of them draw from the same
connection pool.
"""

import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..logging import get_logger
from .exceptions import DatabaseConnectionError
from .schema import create_schema

logger = get_logger(__name__, component="database")

MEMORY_URL = "sqlite:///:memory:"


class Database:
    """Engine, session factory and transaction scope for the service."""

    def __init__(self, database_url: str, pool_size: int = 20, echo: bool = False):
        """Create the engine, validate the connection and create the schema.

        Args:
            database_url: SQLAlchemy URL (e.g. "sqlite:///./data/hoa_notify.db")
            pool_size: Maximum pooled connections for server databases
            echo: Log SQL statements

        Raises:
            DatabaseConnectionError: If initialization fails
        """
        if not database_url or not isinstance(database_url, str):
            raise DatabaseConnectionError("Database URL must be a non-empty string")

        self.database_url = database_url
        logger.info(
            "Initializing database",
            extra={"event": "database.initializing", "database_url": redact_url(database_url)},
        )

        try:
            self.engine = _create_engine(database_url, pool_size, echo)
            _validate_connection(self.engine)
            # SQLite allows one writer; bulk sends write from several threads
            self._serialize = threading.RLock() if database_url.startswith("sqlite") else nullcontext()
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=True,
                expire_on_commit=False,
            )
            create_schema(self.engine)
        except DatabaseConnectionError:
            raise
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseConnectionError(f"Failed to initialize database: {e}") from e

        logger.info(
            "Database initialized successfully",
            extra={"event": "database.initialised", "database_url": redact_url(database_url)},
        )

    @classmethod
    def in_memory(cls) -> "Database":
        """Private in-memory SQLite database (tests, one-shot runs)."""
        return cls(MEMORY_URL)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transaction scope: commit on success, roll back on exception.

        Example:
            >>> with database.session() as session:
            ...     DeliveryRepository(session).get_by_provider_id("abc")
        """
        if self._session_factory is None:
            raise DatabaseConnectionError("Database has been closed")

        with self._serialize:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception as e:
                session.rollback()
                logger.warning(
                    f"Database session rolled back due to exception: {e}",
                    extra={
                        "event": "database.session.rolled_back",
                        "error_type": type(e).__name__,
                    },
                )
                raise
            finally:
                session.close()

    def close(self) -> None:
        """Dispose of pooled connections."""
        if self._session_factory is None:
            return
        self.engine.dispose()
        self._session_factory = None
        logger.info("Database connections closed", extra={"event": "database.closed"})


def _create_engine(database_url: str, pool_size: int, echo: bool) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            pool_pre_ping=True,
            pool_size=pool_size,
        )

    if _is_memory_url(database_url):
        # One shared connection, otherwise each checkout sees an empty database
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_file = Path(database_url.replace("sqlite:///", "", 1))
        if not db_file.parent.exists():
            logger.info(f"Creating database directory: {db_file.parent}")
            db_file.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            database_url,
            echo=echo,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _enable_wal(engine)
    return engine


def _enable_wal(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


def _validate_connection(engine: Engine) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        raise DatabaseConnectionError(f"Failed to validate database connection: {e}") from e


def redact_url(url: Optional[str]) -> str:
    """Hide the password of a database URL for logging.

    Example:
        >>> redact_url("postgresql://hoa:secret@db:5432/hoa")
        'postgresql://hoa:***@db:5432/hoa'
    """
    if not url or url.startswith("sqlite"):
        return url or ""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def _is_memory_url(database_url: str) -> bool:
    return database_url in (MEMORY_URL, "sqlite://")
