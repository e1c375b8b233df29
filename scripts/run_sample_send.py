#!/usr/bin/env python3
"""Sample send harness for end-to-end validation.

Wires the full service container against a throwaway SQLite database and
in-memory channel adapters, then sends one notification per default
template, runs a bulk job and prints the resulting delivery statistics.
No provider is contacted.

Usage:
    python scripts/run_sample_send.py
    python scripts/run_sample_send.py --config config.example.yaml --database /tmp/sample.db
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from hoa_notify.config.loader import load_config
from hoa_notify.container import ServiceContainer
from hoa_notify.domain.models import Notification
from hoa_notify.logging.config import configure_logging
from tests.helpers.fake_adapter import build_fake_adapters

SAMPLE_DATA = {
    "homeowner_name": "Dana Whitfield",
    "recipient_name": "Dana Whitfield",
    "neighbor_name": "Priya Raman",
    "board_member_name": "Luis Ortega",
    "request_title": "Backyard fence replacement",
    "request_type": "Architectural",
    "property_address": "14 Juniper Ct",
    "homeowner_address": "14 Juniper Ct",
    "neighbor_address": "16 Juniper Ct",
    "old_status": "submitted",
    "new_status": "approved",
    "form_title": "Annual pool pass renewal",
    "form_url": "https://hoa.example.com/forms/pool",
    "login_url": "https://hoa.example.com/login",
    "voting_url": "https://hoa.example.com/votes/42",
    "approval_url": "https://hoa.example.com/approvals/42",
    "review_url": "https://hoa.example.com/review/42",
    "alert_title": "Water main break",
    "message": "Water is shut off on Juniper Ct until 6pm.",
    "subject": "Spring landscaping schedule",
    "community_name": "Sunset Ridge",
    "management_name": "Front Range Management",
    "test_message": "This is a sample notification.",
    "votes_cast": 2,
}


def print_header(title: str):
    """Print a formatted section header."""
    width = 80
    print("\n" + "=" * width)
    print(f" {title}")
    print("=" * width + "\n")


def print_table(rows):
    """Print (label, value) rows as a boxed two-column table."""
    label_width = max(len(label) for label, _ in rows)
    print("┌" + "─" * (label_width + 2) + "┬" + "─" * 22 + "┐")
    for label, value in rows:
        print(f"│ {label:<{label_width}} │ {str(value):<20} │")
    print("└" + "─" * (label_width + 2) + "┴" + "─" * 22 + "┘")


def main():
    """Main entry point for the sample send harness."""
    parser = argparse.ArgumentParser(
        description="Run sample sends through the full pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.example.yaml"),
        help="Path to configuration file (default: config.example.yaml)",
    )
    parser.add_argument(
        "--database",
        type=Path,
        default=Path("data/sample_send.db"),
        help="Path to SQLite database (default: data/sample_send.db)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: WARNING)",
    )
    args = parser.parse_args()

    load_dotenv()
    print_header("HOA Notify - Sample Send Harness")

    if not args.config.exists():
        print(f"❌ Error: Configuration file not found: {args.config}")
        return 1

    app_config, env_config = load_config(args.config)
    env_config.database_url = f"sqlite:///{args.database.absolute()}"
    env_config.celery_broker_url = "memory://"
    configure_logging(
        level=args.log_level,
        format_type=app_config.logging.format,
        environment="validation",
    )

    # Mid-afternoon in the community timezone keeps SMS inside its window
    clock_time = datetime.now(timezone.utc).replace(hour=21, minute=0, second=0, microsecond=0)
    adapters = build_fake_adapters()
    services = ServiceContainer(
        app_config, env_config, clock=lambda: clock_time, adapters=adapters
    )

    try:
        data = dict(SAMPLE_DATA, timestamp=clock_time.isoformat(), due_date=clock_time + timedelta(days=7))
        outcomes = {}
        for channel, names in services.renderer.available_templates().items():
            recipient = "dana@example.com" if channel == "email" else "+13035550142"
            for name in names:
                result = services.gateway.send(
                    Notification(type=channel, recipient=recipient, template=name, data=data, user_id="101")
                )
                outcomes[f"{channel}/{name}"] = result.status

        print_header("Per-Template Outcome")
        print_table(sorted(outcomes.items()))

        bulk = [
            Notification(
                type="email",
                recipient=f"owner{i}@example.com",
                template="form_distribution",
                data=data,
                user_id=str(200 + i),
            )
            for i in range(12)
        ]
        services.jobs.enqueue_bulk(bulk)
        services.jobs.run_pending()

        stats = services.ledger.get_stats()
        print_header("Delivery Ledger")
        print_table(
            [
                ("Total Sent", stats["summary"]["total_sent"]),
                ("Total Failed", stats["summary"]["total_failed"]),
                ("Email Messages Captured", len(adapters["email"].sent)),
                ("SMS Messages Captured", len(adapters["sms"].sent)),
            ]
        )

        print("\n" + "-" * 80)
        print(f"Database: {args.database.absolute()}")
        print(f"To clean up: rm {args.database.absolute()}")
        print("-" * 80 + "\n")
        return 0
    finally:
        services.close(wait=False)


if __name__ == "__main__":
    sys.exit(main())
