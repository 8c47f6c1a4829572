#!/usr/bin/env python

# src/snapshot_exporter/cli.py

"""
Operator CLI. ``snapshot-exporter plan`` validates the exporter configuration
from the environment and shows the RDS event subscriptions it needs.
"""

import argparse
import json
import re
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import AppConfig
from .events import SubscriptionSpec
from .exceptions import ConfigurationError
from .routing import route


def _subscription_name(db_name: str, spec: SubscriptionSpec) -> str:
    """RDS subscription names allow letters, digits and hyphens only."""
    raw = f"{db_name}-{spec.source_type.value}-{spec.event_category.value}"
    return re.sub(r"[^a-zA-Z0-9-]+", "-", raw).strip("-")


def _plan(args: argparse.Namespace, console: Console) -> int:
    try:
        config = AppConfig.load_from_env()
    except ConfigurationError as e:
        console.print("\n[bold red]❌ CONFIGURATION INVALID[/bold red]\n")
        console.print(Panel(str(e), title="Configuration Error", border_style="red"))
        return 2

    subscriptions = sorted(
        route(config.notification_kinds),
        key=lambda s: (s.source_type.value, s.event_category.value),
    )

    if args.json:
        plan = {
            "db_name": config.db_name,
            "notification_kinds": [
                {
                    "event_id": kind.event_id.value,
                    "snapshot_type": kind.expected_snapshot_type.value,
                    "resource_kind": kind.info.resource_kind.value,
                }
                for kind in config.notification_kinds
            ],
            "subscriptions": [
                {
                    "source_type": s.source_type.value,
                    "event_category": s.event_category.value,
                }
                for s in subscriptions
            ],
        }
        if args.topic_arn:
            plan["event_subscriptions"] = [
                s.to_event_subscription_kwargs(
                    _subscription_name(config.db_name, s), args.topic_arn
                )
                for s in subscriptions
            ]
        console.print_json(json.dumps(plan))
        return 0

    kinds_table = Table(title=f"Notification kinds for '{config.db_name}'")
    kinds_table.add_column("Event ID", style="cyan")
    kinds_table.add_column("Snapshot type")
    kinds_table.add_column("Resource kind")
    for kind in config.notification_kinds:
        kinds_table.add_row(
            kind.event_id.value,
            kind.expected_snapshot_type.value,
            kind.info.resource_kind.value,
        )

    subs_table = Table(title="RDS event subscriptions")
    subs_table.add_column("Source type", style="green")
    subs_table.add_column("Event category")
    subs_table.add_column("Subscription name")
    for spec in subscriptions:
        subs_table.add_row(
            spec.source_type.value,
            spec.event_category.value,
            _subscription_name(config.db_name, spec),
        )

    console.print(kinds_table)
    console.print(subs_table)
    console.print("[bold green]✅ Configuration valid.[/bold green]")
    return 0


def main(argv: list[str] | None = None, console: Console | None = None) -> int:
    """Main entry point for the operator CLI."""
    parser = argparse.ArgumentParser(
        prog="snapshot-exporter",
        description="Operator tooling for the RDS snapshot exporter.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser(
        "plan", help="Validate configuration and show the routed subscriptions."
    )
    plan_parser.add_argument(
        "--json", action="store_true", help="Print the plan as JSON."
    )
    plan_parser.add_argument(
        "--topic-arn",
        help=(
            "SNS topic ARN. With --json, adds ready-to-use "
            "rds.create_event_subscription arguments to the plan."
        ),
    )
    plan_parser.set_defaults(func=_plan)

    args = parser.parse_args(argv)
    return args.func(args, console or Console())


if __name__ == "__main__":
    sys.exit(main())
