"""
Response Deadline Scheduler
===========================

In-process timer registry that forces a technician to accept or decline an
assignment within a bounded window.

For every ASSIGNED work order the registry holds one ``ResponseDeadline``
with two one-shot asyncio timers:

  - a *warning* at ``deadline - warning lead`` that reminds the technician,
    if the order is still ASSIGNED to them;
  - an *expiry* at ``deadline`` that calls ``handle_expiry``, which returns
    the order to dispatch exactly like a decline with a timeout reason.

The deadline is also persisted on ``WorkOrder.response_deadline_at`` so
``rebuild``/``reconcile`` can restore or expire entries after a restart.
Expiry uses a conditional update keyed on the expected status, technician
and elapsed deadline, so a concurrent accept and an expiry can never both
win.  A background loop (same start/stop shape as the other periodic tasks)
runs ``reconcile`` as a safety net.

Usage (integrated into the FastAPI app lifespan)::

    scheduler = get_scheduler()
    await scheduler.start()
    ...
    await scheduler.shutdown()

A single scheduler owner per deployment is assumed.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from src.core.clock import Clock, ensure_aware, utcnow
from src.core.config import settings
from src.core.database import SessionFactory, session_scope
from src.models.work_order import WorkOrder, WorkOrderStatus
from src.services import notificationService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry records
# ---------------------------------------------------------------------------

@dataclass
class ResponseDeadline:
    work_order_id: int
    technician_id: Optional[int]
    deadline: datetime
    warning_at: Optional[datetime]
    needs_reconcile: bool = False
    warning_task: Optional[asyncio.Task] = field(default=None, repr=False)
    expiry_task: Optional[asyncio.Task] = field(default=None, repr=False)


@dataclass(frozen=True)
class RemainingTime:
    expired: bool
    minutes: int
    deadline: datetime


@dataclass(frozen=True)
class DeadlineSnapshot:
    work_order_id: int
    technician_id: Optional[int]
    deadline: datetime
    warning_at: Optional[datetime]
    expired: bool
    minutes_remaining: int
    needs_reconcile: bool


@dataclass(frozen=True)
class ReconcileReport:
    expired: list[int]
    restored: list[int]
    already_handled: list[int]
    failed: list[int]


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class ResponseDeadlineScheduler:

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        *,
        clock: Clock = utcnow,
        response_minutes: int | None = None,
        warning_minutes: int | None = None,
        retry_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
        reconcile_interval_seconds: int | None = None,
        start_timers: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.response_minutes = response_minutes or settings.response_time_minutes
        self.warning_minutes = (
            warning_minutes if warning_minutes is not None else settings.warning_time_minutes
        )
        self.retry_attempts = max(1, retry_attempts or settings.expiry_retry_attempts)
        self.retry_backoff_seconds = (
            retry_backoff_seconds
            if retry_backoff_seconds is not None
            else settings.expiry_retry_backoff_seconds
        )
        self.reconcile_interval_seconds = (
            reconcile_interval_seconds or settings.reconcile_interval_seconds
        )
        self.start_timers = start_timers

        self._entries: dict[int, ResponseDeadline] = {}
        # work order id -> technician whose window ran out
        self._expired_for: dict[int, Optional[int]] = {}
        self._loop_task: asyncio.Task | None = None
        self._running = False

    # -- clock ------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def compute_deadline(self, minutes: int | None = None) -> datetime:
        return self.now() + timedelta(minutes=minutes or self.response_minutes)

    # -- registry ---------------------------------------------------------

    def set_deadline(
        self,
        work_order_id: int,
        minutes: int | None = None,
        *,
        deadline: datetime | None = None,
        technician_id: int | None = None,
    ) -> datetime:
        """Register (or replace) the response deadline for a work order.

        Returns the absolute deadline.
        """
        self.clear_deadline(work_order_id)
        self._expired_for.pop(work_order_id, None)

        now = self.now()
        deadline = ensure_aware(deadline) if deadline else self.compute_deadline(minutes)
        warning_at: Optional[datetime] = deadline - timedelta(minutes=self.warning_minutes)
        if warning_at <= now:
            warning_at = None

        entry = ResponseDeadline(
            work_order_id=work_order_id,
            technician_id=technician_id,
            deadline=deadline,
            warning_at=warning_at,
        )
        self._entries[work_order_id] = entry

        if self.start_timers:
            self._arm(entry)

        logger.info(
            "Response deadline set: wo=%s technician=%s deadline=%s",
            work_order_id,
            technician_id,
            deadline.isoformat(),
        )
        return deadline

    def clear_deadline(self, work_order_id: int) -> bool:
        """Cancel pending timers and drop the entry. Unknown ids are a no-op."""
        entry = self._entries.pop(work_order_id, None)
        if entry is None:
            return False

        current = _current_task()
        for task in (entry.warning_task, entry.expiry_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        logger.info("Response deadline cleared: wo=%s", work_order_id)
        return True

    def mark_expired(self, work_order_id: int, technician_id: Optional[int]) -> None:
        self._expired_for[work_order_id] = technician_id
        self.clear_deadline(work_order_id)

    def forget(self, work_order_id: int) -> None:
        """Drop everything held for a work order that left the dispatch flow."""
        self.clear_deadline(work_order_id)
        if self._expired_for.pop(work_order_id, None) is not None:
            logger.debug("Timeout record dropped: wo=%s", work_order_id)

    def expired_for(self, work_order_id: int, technician_id: int) -> bool:
        """True if ``technician_id`` lost this work order to a response timeout."""
        return (
            work_order_id in self._expired_for
            and self._expired_for[work_order_id] == technician_id
        )

    def get(self, work_order_id: int) -> Optional[ResponseDeadline]:
        return self._entries.get(work_order_id)

    def remaining_time(self, work_order_id: int) -> Optional[RemainingTime]:
        entry = self._entries.get(work_order_id)
        if entry is None:
            return None
        return self._remaining(entry, self.now())

    def list_active(self) -> list[DeadlineSnapshot]:
        now = self.now()
        snapshots = []
        for entry in sorted(self._entries.values(), key=lambda e: e.deadline):
            remaining = self._remaining(entry, now)
            snapshots.append(
                DeadlineSnapshot(
                    work_order_id=entry.work_order_id,
                    technician_id=entry.technician_id,
                    deadline=entry.deadline,
                    warning_at=entry.warning_at,
                    expired=remaining.expired,
                    minutes_remaining=remaining.minutes,
                    needs_reconcile=entry.needs_reconcile,
                )
            )
        return snapshots

    @staticmethod
    def _remaining(entry: ResponseDeadline, now: datetime) -> RemainingTime:
        seconds = (entry.deadline - now).total_seconds()
        if seconds <= 0:
            return RemainingTime(expired=True, minutes=0, deadline=entry.deadline)
        return RemainingTime(
            expired=False,
            minutes=math.ceil(seconds / 60),
            deadline=entry.deadline,
        )

    # -- timers -----------------------------------------------------------

    def _arm(self, entry: ResponseDeadline) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop; deadline for wo=%s left to reconcile",
                entry.work_order_id,
            )
            entry.needs_reconcile = True
            return

        wo_id = entry.work_order_id
        if entry.warning_at is not None:
            entry.warning_task = asyncio.create_task(
                self._fire_at(entry.warning_at, lambda: self.send_warning(wo_id)),
                name=f"wo-{wo_id}-warning",
            )
        entry.expiry_task = asyncio.create_task(
            self._fire_at(entry.deadline, lambda: self.handle_expiry(wo_id)),
            name=f"wo-{wo_id}-expiry",
        )

    async def _fire_at(
        self, when: datetime, callback: Callable[[], Awaitable[object]],
    ) -> None:
        delay = max(0.0, (when - self.now()).total_seconds())
        await asyncio.sleep(delay)
        try:
            await callback()
        except Exception:
            logger.exception("Deadline timer callback failed")

    # -- callbacks --------------------------------------------------------

    async def send_warning(self, work_order_id: int) -> bool:
        """Remind the technician, if the order is still waiting on them."""
        entry = self._entries.get(work_order_id)
        if entry is None:
            return False

        async with session_scope(self._session_factory) as db:
            wo = await db.get(WorkOrder, work_order_id)
            if (
                wo is None
                or wo.status != WorkOrderStatus.ASSIGNED
                or wo.technician_id != entry.technician_id
            ):
                logger.info("Skipping timeout warning for wo=%s: no longer awaiting response", work_order_id)
                return False
            remaining = self._remaining(entry, self.now())
            notificationService.notify_timeout_warning(db, wo, remaining.minutes)

        logger.info("Timeout warning sent: wo=%s technician=%s", work_order_id, entry.technician_id)
        return True

    async def handle_expiry(
        self, work_order_id: int, technician_id: int | None = None,
    ) -> Optional[WorkOrder]:
        """Return an unanswered work order to dispatch.

        No-op (returns None) when the order is no longer ASSIGNED to the
        technician the deadline was set for. Transient store failures are
        retried with exponential backoff; when retries run out the order
        stays ASSIGNED and the entry is flagged for ``reconcile``.
        """
        from src.services import workOrderService

        entry = self._entries.get(work_order_id)
        expected_technician = technician_id
        if expected_technician is None and entry is not None:
            expected_technician = entry.technician_id

        delay = self.retry_backoff_seconds
        wo: Optional[WorkOrder] = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                async with session_scope(self._session_factory) as db:
                    wo = await workOrderService.expire_response(
                        db,
                        work_order_id,
                        now=self.now(),
                        technician_id=expected_technician,
                    )
                break
            except (SQLAlchemyError, OSError):
                if attempt >= self.retry_attempts:
                    if entry is None:
                        entry = ResponseDeadline(
                            work_order_id=work_order_id,
                            technician_id=expected_technician,
                            deadline=self.now(),
                            warning_at=None,
                        )
                        self._entries[work_order_id] = entry
                    entry.needs_reconcile = True
                    logger.exception(
                        "Expiry of wo=%s failed after %d attempts; left ASSIGNED for reconcile",
                        work_order_id,
                        attempt,
                    )
                    return None
                logger.warning(
                    "Expiry of wo=%s failed (attempt %d/%d); retrying in %.1fs",
                    work_order_id,
                    attempt,
                    self.retry_attempts,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= 2

        if wo is None:
            logger.info("Expiry for wo=%s already handled", work_order_id)
            current = self._entries.get(work_order_id)
            if current is not None and current.deadline <= self.now():
                self.clear_deadline(work_order_id)
            return None

        self.mark_expired(work_order_id, expected_technician)
        return wo

    # -- recovery ---------------------------------------------------------

    async def reconcile(self) -> ReconcileReport:
        """Expire every elapsed deadline and restore persisted ones missing
        from the registry. Safe to run at any time and any number of times.
        """
        now = self.now()
        due: dict[int, Optional[int]] = {}
        restored: list[int] = []
        for entry in list(self._entries.values()):
            if entry.deadline <= now:
                due[entry.work_order_id] = entry.technician_id
            elif entry.needs_reconcile and self.start_timers:
                entry.needs_reconcile = False
                self._arm(entry)
                restored.append(entry.work_order_id)

        async with session_scope(self._session_factory) as db:
            result = await db.execute(
                select(
                    WorkOrder.id,
                    WorkOrder.technician_id,
                    WorkOrder.response_deadline_at,
                ).where(
                    WorkOrder.status == WorkOrderStatus.ASSIGNED,
                    WorkOrder.response_deadline_at.is_not(None),
                )
            )
            rows = result.all()

        for wo_id, technician_id, deadline in rows:
            if wo_id in self._entries:
                continue
            deadline = ensure_aware(deadline)
            if deadline <= now:
                due[wo_id] = technician_id
            else:
                self.set_deadline(wo_id, deadline=deadline, technician_id=technician_id)
                restored.append(wo_id)

        expired: list[int] = []
        handled: list[int] = []
        failed: list[int] = []
        for wo_id, technician_id in due.items():
            outcome = await self.handle_expiry(wo_id, technician_id)
            if outcome is not None:
                expired.append(wo_id)
            elif wo_id in self._entries and self._entries[wo_id].needs_reconcile:
                failed.append(wo_id)
            else:
                handled.append(wo_id)

        if expired or restored or failed:
            logger.info(
                "Deadline reconcile: expired=%s restored=%s failed=%s",
                expired,
                restored,
                failed,
            )
        return ReconcileReport(
            expired=expired,
            restored=restored,
            already_handled=handled,
            failed=failed,
        )

    async def rebuild(self) -> ReconcileReport:
        """Startup recovery: re-register persisted deadlines."""
        report = await self.reconcile()
        logger.info(
            "Deadline registry rebuilt: %d active, %d expired on startup",
            len(self._entries),
            len(report.expired),
        )
        return report

    # -- background loop --------------------------------------------------

    async def _run_loop(self) -> None:
        logger.info(
            "Deadline reconcile loop started (interval=%ds)",
            self.reconcile_interval_seconds,
        )
        while self._running:
            await asyncio.sleep(self.reconcile_interval_seconds)
            try:
                await self.reconcile()
            except Exception:
                logger.exception("Error in deadline reconcile loop")

    async def start(self) -> None:
        """Rebuild the registry and start the periodic reconcile loop."""
        if self._loop_task is not None:
            logger.warning("Deadline scheduler is already running")
            return

        await self.rebuild()
        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
            logger.info("Deadline reconcile loop stopped")

    async def shutdown(self) -> None:
        """Stop the loop and cancel every pending timer.

        Persisted deadlines are untouched, so the next ``rebuild`` restores them.
        """
        await self.stop()
        for wo_id in list(self._entries):
            self.clear_deadline(wo_id)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_scheduler: ResponseDeadlineScheduler | None = None


def get_scheduler() -> ResponseDeadlineScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = ResponseDeadlineScheduler()
    return _scheduler


def set_scheduler(
    scheduler: ResponseDeadlineScheduler | None,
) -> ResponseDeadlineScheduler | None:
    """Install ``scheduler`` as the process-wide instance. Returns the previous one."""
    global _scheduler
    previous = _scheduler
    _scheduler = scheduler
    return previous
