"""Construction of the notification services from validated configuration.

Every service is built exactly once here and handed to its collaborators
through constructor arguments; nothing below this module reaches for a
global instance.
"""

import threading
from typing import Mapping, Optional

from celery import Celery

from .adapters import ChannelAdapter, build_channel_adapters
from .compliance import ComplianceGate, SqlComplianceStore
from .config.environment import EnvironmentConfig
from .config.models import AppConfig
from .jobs import Broker, JobScheduler, create_celery_app
from .ledger import DeliveryLedger, WebhookProcessor
from .logging import get_logger
from .notifications import NotificationGateway
from .persistence import Database
from .scheduler import MaintenanceScheduler
from .templates import SqlTemplateStore, TemplateRenderer
from .utils.timestamps import Clock, utc_now

logger = get_logger(__name__, component="container")


class ServiceContainer:
    """Holds the wired services of one running process.

    Example:
        >>> app_config, env_config = load_config()
        >>> services = ServiceContainer(app_config, env_config)
        >>> services.gateway.send(notification)
        >>> services.close()
    """

    def __init__(
        self,
        app_config: AppConfig,
        env_config: EnvironmentConfig,
        clock: Clock = utc_now,
        adapters: Optional[Mapping[str, ChannelAdapter]] = None,
        database: Optional[Database] = None,
        celery_app: Optional[Celery] = None,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            app_config: Validated file configuration
            env_config: Environment configuration (database, providers)
            clock: Returns the current UTC time; shared by every service
            adapters: Channel adapters to use instead of building them from
                the environment
            database: Database to use instead of opening ``DATABASE_URL``
            celery_app: Celery app to use instead of connecting to
                ``CELERY_BROKER_URL``
            shutdown_event: Event set when the maintenance scheduler stops
        """
        self.app_config = app_config
        self.env_config = env_config
        self.clock = clock

        self.database = database or Database(
            env_config.database_url, pool_size=env_config.db_pool_max
        )

        self.renderer = TemplateRenderer(SqlTemplateStore(self.database))

        compliance = app_config.compliance
        self.gate = ComplianceGate(
            SqlComplianceStore(self.database),
            clock=clock,
            timezone=compliance.timezone,
            rate_limit_overrides=app_config.rate_limit_overrides(),
            sms_hours=(compliance.sms_hours.start, compliance.sms_hours.end),
            email_hours=(compliance.email_hours.start, compliance.email_hours.end),
        )

        self.ledger = DeliveryLedger(
            self.database,
            clock=clock,
            max_retry_count=app_config.ledger.max_retry_count,
        )

        self.adapters = dict(adapters) if adapters is not None else build_channel_adapters(env_config)

        self.gateway = NotificationGateway(
            renderer=self.renderer,
            gate=self.gate,
            ledger=self.ledger,
            adapters=self.adapters,
            sender=app_config.sender,
            bypass_compliance=env_config.bypass_compliance,
            clock=clock,
        )

        self.celery_app = celery_app or create_celery_app(
            env_config.celery_broker_url, always_eager=env_config.celery_always_eager
        )
        self.broker = Broker(
            self.celery_app,
            self.database,
            clock=clock,
            poll_interval=app_config.queues.poll_interval,
            stall_timeout=app_config.queues.stall_timeout,
        )
        self.jobs = JobScheduler(
            self.broker,
            self.gateway,
            queues=app_config.queues,
            bulk=app_config.bulk,
            clock=clock,
        )

        self.webhooks = WebhookProcessor(self.ledger, self.gate)

        self.maintenance = MaintenanceScheduler(
            self.ledger,
            self.jobs,
            maintenance=app_config.maintenance,
            ledger_config=app_config.ledger,
            shutdown_event=shutdown_event,
        )

        logger.info(
            "Services initialized",
            extra={
                "event": "services.initialized",
                "channels": sorted(self.adapters),
                "bypass_compliance": env_config.bypass_compliance,
            },
        )

    def start(self) -> None:
        """Start the queue recovery sweep and, when enabled, the maintenance jobs."""
        self.jobs.start()
        if self.app_config.maintenance.enabled:
            self.maintenance.start()

    def close(self, wait: bool = True) -> None:
        """Stop background threads and dispose of the database engine."""
        if self.maintenance.is_running():
            self.maintenance.shutdown(wait=False)
        self.jobs.close(wait=wait)
        self.database.close()
        logger.info("Services closed", extra={"event": "services.closed"})
