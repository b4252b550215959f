"""
Weekly Payout Run -- Scheduled Job.

This module provides the weekly cron job that:

1. Groups every unreserved EARNED commission by technician and creates one
   SCHEDULED payout per technician, dated for the configured payout weekday.
2. Settles each payout in its own transaction, debiting the technician's
   wallet and marking the linked commissions PAID.

A payout that fails an integrity check is logged and left SCHEDULED for an
operator; the rest of the batch still settles.

Intended to run once per week via Celery Beat, AWS EventBridge, or a similar
scheduler.

Usage with a simple cron runner::

    python -m src.jobs.weeklyPayout             # create and settle
    python -m src.jobs.weeklyPayout --create-only
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date
from typing import Optional

from src.core.database import SessionFactory
from src.services.payoutBatchProcessor import WeeklyCycleReport, run_weekly_cycle
from src.services.workOrderStateMachine import SYSTEM_ACTOR

logger = logging.getLogger(__name__)


async def run_weekly_payout(
    *,
    session_factory: SessionFactory | None = None,
    settle: bool = True,
    today: Optional[date] = None,
) -> WeeklyCycleReport:
    """Create this week's batch as the platform and optionally settle it."""
    logger.info("Starting weekly payout run (settle=%s)", settle)
    report = await run_weekly_cycle(
        SYSTEM_ACTOR,
        session_factory=session_factory,
        process=settle,
        today=today,
    )
    if report.failed:
        logger.error(
            "Weekly payout run left %d payouts unsettled: %s",
            len(report.failed),
            sorted(report.failed),
        )
    return report


async def _cli_main(argv: Optional[list[str]] = None) -> None:
    """Entry point for running the weekly payout from the command line."""
    parser = argparse.ArgumentParser(description="Create and settle the weekly payout batch.")
    parser.add_argument(
        "--create-only",
        action="store_true",
        help="create the SCHEDULED payouts without settling them",
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="batch date (YYYY-MM-DD), defaults to today",
    )
    args = parser.parse_args(argv)

    report = await run_weekly_payout(settle=not args.create_only, today=args.date)
    print(  # noqa: T201
        f"Weekly payout: {len(report.batch.payouts)} payouts, "
        f"total {report.batch.total_amount}, "
        f"{len(report.completed)} settled, {len(report.failed)} failed"
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
