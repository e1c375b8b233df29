"""Command line entry point for the HOA notification service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import sys
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional, Tuple

from hoa_notify.config.environment import EnvironmentConfig
from hoa_notify.config.exceptions import ConfigurationError
from hoa_notify.config.loader import load_config
from hoa_notify.config.models import AppConfig
from hoa_notify.container import ServiceContainer
from hoa_notify.domain.models import DeliveryFilter, Notification
from hoa_notify.jobs.scheduler import IMMEDIATE_QUEUE, QUEUE_NAMES
from hoa_notify.logging import get_logger
from hoa_notify.logging.config import configure_logging
from hoa_notify.logging.context import log_context
from hoa_notify.scheduler import CLEAN_JOB, PRUNE_JOB

logger = get_logger(__name__, component="cli")

_COMMANDS_WITHOUT_SERVICES = {"check-config"}


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config.yaml.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hoa-notify",
        description="HOA notification service - compliant email and SMS delivery",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    worker = subparsers.add_parser(
        "worker", help="Process the job queues and run maintenance until stopped"
    )
    worker.add_argument(
        "--queue",
        default=None,
        choices=list(QUEUE_NAMES),
        help="Consume only this queue (default: all queues)",
    )

    send = subparsers.add_parser("send", help="Send one notification")
    send.add_argument("--type", required=True, choices=["email", "sms"], help="Channel")
    send.add_argument("--to", required=True, dest="recipient", help="Email address or phone number")
    send.add_argument("--template", required=True, help="Template name")
    send.add_argument("--data", default="{}", help="Template data as a JSON object")
    send.add_argument("--user-id", default=None, help="Recipient user id")
    send.add_argument(
        "--queue",
        action="store_true",
        help="Route the send through the immediate queue (with retries) and drain it",
    )

    stats = subparsers.add_parser("stats", help="Show delivery statistics")
    stats.add_argument("--days", type=int, default=7, help="Look-back window in days (default: 7)")
    stats.add_argument("--user-id", default=None)
    stats.add_argument("--type", default=None, choices=["email", "sms"])
    stats.add_argument("--template", default=None)

    subparsers.add_parser("queue-stats", help="Show job counts per queue")

    cleanup = subparsers.add_parser("cleanup", help="Prune old delivery records and finished jobs")
    cleanup.add_argument(
        "--days",
        type=int,
        default=None,
        help="Delivery records to keep, in days (default: ledger.retention_days)",
    )

    subparsers.add_parser("check-config", help="Validate configuration and exit")
    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _parse_data(raw: str) -> dict:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--data is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("--data must be a JSON object")
    return data


def run_worker(
    services: ServiceContainer, shutdown_event: threading.Event, queue: Optional[str] = None
) -> int:
    """Start maintenance and a Celery worker on the job queues; block until it stops.

    The Celery worker installs its own SIGINT/SIGTERM handlers and returns
    after a warm shutdown.
    """
    services.start()
    logger.info(
        f"Worker started on {queue or 'all queues'}. Press Ctrl+C to stop",
        extra={"event": "service.worker.started", "queue": queue},
    )

    try:
        services.jobs.run_worker(queue)
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"},
        )
    finally:
        shutdown_event.set()
    return 0


def run_send(services: ServiceContainer, args: argparse.Namespace) -> int:
    try:
        data = _parse_data(args.data)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    notification = Notification(
        type=args.type,
        recipient=args.recipient,
        template=args.template,
        data=data,
        user_id=args.user_id,
    )

    with log_context(notification_id=notification.id):
        if args.queue:
            job = services.jobs.enqueue(notification)
            services.jobs.run_pending(IMMEDIATE_QUEUE)
            job = services.jobs.broker.get_job(job.id) or job
            summary = job.summary()
            summary["result"] = job.result
            _print_json(summary)
            return 0 if job.state.value == "completed" else 1

        result = services.gateway.send(notification)
        _print_json(result.to_dict())
        return 0 if result.success else 1


def run_stats(services: ServiceContainer, args: argparse.Namespace) -> int:
    filters = DeliveryFilter(
        user_id=args.user_id,
        type=args.type,
        template=args.template,
        start=services.clock() - timedelta(days=args.days),
    )
    _print_json(services.ledger.get_stats(filters))
    return 0


def run_queue_stats(services: ServiceContainer) -> int:
    _print_json(services.jobs.get_stats())
    return 0


def run_cleanup(services: ServiceContainer, args: argparse.Namespace) -> int:
    if args.days is not None:
        deleted = services.ledger.cleanup(days_to_keep=args.days)
    else:
        deleted = services.maintenance.trigger_now(PRUNE_JOB)
    cleaned = services.maintenance.trigger_now(CLEAN_JOB)
    _print_json({"deleted_records": deleted, "cleaned_jobs": cleaned})
    return 0


def run_check_config(app_config: AppConfig, env_config: EnvironmentConfig) -> int:
    print("✓ Configuration is valid")
    print(f"  Email channel: {'configured' if env_config.email_configured else 'not configured'}")
    print(f"  SMS channel: {'configured' if env_config.sms_configured else 'not configured'}")
    print(f"  Compliance timezone: {app_config.compliance.timezone}")
    if env_config.bypass_compliance:
        print("  Warning: compliance checks and delivery tracking are bypassed")
    return 0


def dispatch(
    args: argparse.Namespace,
    services: ServiceContainer,
    shutdown_event: threading.Event,
) -> int:
    if args.command == "worker":
        return run_worker(services, shutdown_event, args.queue)
    if args.command == "send":
        return run_send(services, args)
    if args.command == "stats":
        return run_stats(services, args)
    if args.command == "queue-stats":
        return run_queue_stats(services)
    if args.command == "cleanup":
        return run_cleanup(services, args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the HOA notification service.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    services: Optional[ServiceContainer] = None
    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "HOA notification service starting",
            extra={
                "event": "service.starting",
                "command": args.command,
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
            },
        )

        if args.command in _COMMANDS_WITHOUT_SERVICES:
            return run_check_config(app_config, env_config)

        shutdown_event = threading.Event()
        services = ServiceContainer(app_config, env_config, shutdown_event=shutdown_event)
        return dispatch(args, services, shutdown_event)

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            extra={
                "event": "service.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1
    finally:
        if services is not None:
            services.close(wait=False)
            logger.info(
                "HOA notification service stopped",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )


if __name__ == "__main__":
    sys.exit(main())
