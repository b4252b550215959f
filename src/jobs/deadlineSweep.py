"""
Response Deadline Sweep -- Scheduled Job.

Expires every ASSIGNED work order whose persisted response deadline has
passed. The API process normally does this itself; run the sweep from cron
when the in-process scheduler is disabled
(``DEADLINE_SCHEDULER_ENABLED=false``).

Usage::

    python -m src.jobs.deadlineSweep
"""

from __future__ import annotations

import asyncio
import logging

from src.core.database import SessionFactory
from src.services.deadlineScheduler import ReconcileReport, ResponseDeadlineScheduler

logger = logging.getLogger(__name__)


async def run_deadline_sweep(
    session_factory: SessionFactory | None = None,
) -> ReconcileReport:
    scheduler = ResponseDeadlineScheduler(session_factory, start_timers=False)
    report = await scheduler.reconcile()
    logger.info(
        "Deadline sweep: %d expired, %d pending, %d failed",
        len(report.expired),
        len(report.restored),
        len(report.failed),
    )
    return report


async def _cli_main() -> None:
    report = await run_deadline_sweep()
    print(  # noqa: T201
        f"Deadline sweep completed: expired={report.expired} failed={report.failed}"
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
