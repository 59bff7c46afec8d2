#!/usr/bin/env python3
"""
Budget Tracker CLI

Command-line access to budget operations against the configured PostgreSQL
database and alert transport.

Usage:
    python -m budget_service init-db
    python -m budget_service create USER CATEGORY AMOUNT [--period MONTHLY] [--threshold 80]
    python -m budget_service increment BUDGET_ID DELTA
    python -m budget_service edit BUDGET_ID [--amount X] [--threshold Y]
    python -m budget_service show BUDGET_ID
    python -m budget_service list USER [--page 1] [--limit 10]
    python -m budget_service deactivate BUDGET_ID
    python -m budget_service health
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from tabulate import tabulate

from budget_tracker import BudgetCoordinator, BudgetRecord, BudgetTrackerError, ConnectionManager
from budget_service.config import (
    ConfigurationError,
    get_config,
    get_database_url,
    get_pool_settings,
)
from budget_service.db.schema import ensure_schema

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(default_level: str = "INFO") -> None:
    """Setup structured JSON logging to stderr (stdout is for command output)."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())

    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    handler.setLevel(log_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)


def print_header(title: str) -> None:
    """Print formatted header."""
    print("\n" + "=" * 80)
    print(f"  {title}")
    print("=" * 80 + "\n")


def format_currency(amount: Any) -> str:
    return f"{amount:.2f}"


def print_budget(record: BudgetRecord) -> None:
    """Print one budget as a two-column table."""
    data = record.to_dict()
    rows = [
        ["ID", data["id"]],
        ["User", data["user_id"]],
        ["Category", data["category"]],
        ["Period", data["period"]],
        ["Amount", data["amount"]],
        ["Spent", data["spent"]],
        ["Remaining", data["remaining"]],
        ["Alert Threshold", f"{data['alert_threshold']}%"],
        ["Last Alert", data["last_alert_sent_at"] or "-"],
        ["Active", "Yes" if data["is_active"] else "No"],
        ["Updated", data["updated_at"] or "-"],
    ]
    print(tabulate(rows, tablefmt="simple"))


# =============================================================================
# Commands
# =============================================================================


async def cmd_create(args: argparse.Namespace, coordinator: BudgetCoordinator) -> None:
    """Create a budget."""
    record = await coordinator.create(
        args.user_id, args.category, args.amount, args.period, args.threshold
    )
    print_header("Budget Created")
    print_budget(record)


async def cmd_increment(args: argparse.Namespace, coordinator: BudgetCoordinator) -> None:
    """Record spend against a budget."""
    record = await coordinator.increment(args.budget_id, args.delta)
    print_header("Spend Recorded")
    print_budget(record)


async def cmd_edit(args: argparse.Namespace, coordinator: BudgetCoordinator) -> None:
    """Change amount and/or alert threshold."""
    record = await coordinator.edit(args.budget_id, args.amount, args.threshold)
    print_header("Budget Updated")
    print_budget(record)


async def cmd_show(args: argparse.Namespace, coordinator: BudgetCoordinator) -> None:
    record = await coordinator.get(args.budget_id)
    print_header(f"Budget: {record.category}")
    print_budget(record)


async def cmd_list(args: argparse.Namespace, coordinator: BudgetCoordinator) -> None:
    """List a user's active budgets, newest first."""
    records = await coordinator.list_for_user(args.user_id, args.page, args.limit)
    print_header(f"Budgets for {args.user_id} (page {args.page})")

    if not records:
        print("No active budgets")
        return

    rows = [
        [
            r.id,
            r.category,
            r.period.value,
            format_currency(r.amount),
            format_currency(r.spent),
            format_currency(r.remaining),
            f"{r.alert_threshold:.0f}%",
        ]
        for r in records
    ]
    print(
        tabulate(
            rows,
            headers=["ID", "Category", "Period", "Amount", "Spent", "Remaining", "Threshold"],
            tablefmt="grid",
        )
    )


async def cmd_deactivate(args: argparse.Namespace, coordinator: BudgetCoordinator) -> None:
    record = await coordinator.deactivate(args.budget_id)
    print(f"✓ Budget {record.id} deactivated")


async def cmd_health(args: argparse.Namespace, coordinator: BudgetCoordinator) -> None:
    """Check store reachability."""
    healthy = await coordinator.health_check()
    print(f"Store: {'✓ healthy' if healthy else '✗ unreachable'}")
    if not healthy:
        raise SystemExit(1)


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create the budgets table and indexes."""
    ensure_schema()
    print("✓ Budgets schema ready")


# =============================================================================
# Entry Point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Budget Tracker CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m budget_service init-db
  python -m budget_service create user-1 Groceries 500 --period MONTHLY --threshold 80
  python -m budget_service increment <budget-id> 42.10
  python -m budget_service edit <budget-id> --amount 600
  python -m budget_service list user-1 --limit 20
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    parser_init = subparsers.add_parser("init-db", help="Create the budgets schema")
    parser_init.set_defaults(sync_func=cmd_init_db)

    parser_create = subparsers.add_parser("create", help="Create a budget")
    parser_create.add_argument("user_id")
    parser_create.add_argument("category")
    parser_create.add_argument("amount")
    parser_create.add_argument(
        "--period",
        default="MONTHLY",
        choices=["MONTHLY", "QUARTERLY", "YEARLY"],
        help="Budget period (default: MONTHLY)",
    )
    parser_create.add_argument(
        "--threshold", default="80", help="Alert threshold percentage (default: 80)"
    )
    parser_create.set_defaults(func=cmd_create)

    parser_increment = subparsers.add_parser("increment", help="Record spend")
    parser_increment.add_argument("budget_id")
    parser_increment.add_argument("delta")
    parser_increment.set_defaults(func=cmd_increment)

    parser_edit = subparsers.add_parser("edit", help="Change amount or threshold")
    parser_edit.add_argument("budget_id")
    parser_edit.add_argument("--amount", help="New budget amount")
    parser_edit.add_argument("--threshold", help="New alert threshold percentage")
    parser_edit.set_defaults(func=cmd_edit)

    parser_show = subparsers.add_parser("show", help="Show one budget")
    parser_show.add_argument("budget_id")
    parser_show.set_defaults(func=cmd_show)

    parser_list = subparsers.add_parser("list", help="List a user's active budgets")
    parser_list.add_argument("user_id")
    parser_list.add_argument("--page", type=int, default=1)
    parser_list.add_argument("--limit", type=int, default=10)
    parser_list.set_defaults(func=cmd_list)

    parser_deactivate = subparsers.add_parser("deactivate", help="Soft-delete a budget")
    parser_deactivate.add_argument("budget_id")
    parser_deactivate.set_defaults(func=cmd_deactivate)

    parser_health = subparsers.add_parser("health", help="Check store health")
    parser_health.set_defaults(func=cmd_health)

    return parser


def run_command(
    args: argparse.Namespace,
    coordinator_factory: Callable[[], BudgetCoordinator] = BudgetCoordinator.from_config,
) -> None:
    """Run one parsed command inside an initialized connection pool."""
    manager = ConnectionManager(get_database_url())
    manager.initialize(**get_pool_settings())
    try:
        if hasattr(args, "sync_func"):
            args.sync_func(args)
            return

        command: Callable[..., Awaitable[None]] = args.func
        asyncio.run(command(args, coordinator_factory()))
    finally:
        manager.close()


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func") and not hasattr(args, "sync_func"):
        parser.print_help()
        sys.exit(1)

    try:
        config = get_config()
    except ConfigurationError as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.get("logging", {}).get("level", "INFO"))

    try:
        run_command(args)
    except (BudgetTrackerError, ConfigurationError) as e:
        print(f"\n❌ Error: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Unexpected error in command {args.command}")
        print(f"\n❌ Error: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
