"""
Monthly Generation Scheduler

A process-wide background trigger that runs task generation for every
known user once per calendar month (by default on the 1st at 00:01).

DESIGN DECISION: The scheduler is a thin caller of
TaskGenerationEngine.generate_with_report, the same entry point the
manual trigger uses. It owns only timing and fault isolation:
- a failure (or timeout) for one user is logged and audited, and the
  run continues with the next user
- nothing is retried within a run; generation is idempotent, so the next
  scheduled or manual run completes whatever was missed
- several processes may run this scheduler at once; the task table's
  uniqueness constraint keeps the result correct

Lifecycle: start() inside a running event loop, stop() to cancel.
This is the only component besides the CLI that reads the clock.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from fintasks.audit import AuditLogger, create_correlation_id
from fintasks.config import get_settings
from fintasks.config.settings import SchedulerSettings
from fintasks.models.task import MonthToken
from fintasks.services.storage import ExpenseStoreInterface
from fintasks.tasks.generation import TaskGenerationEngine


logger = structlog.get_logger(__name__)


class ScheduledRunSummary(BaseModel):
    """What one scheduled run did."""

    month: MonthToken
    correlation_id: UUID
    users_processed: int = 0
    tasks_created: int = 0
    failed_users: dict[str, str] = Field(
        default_factory=dict,
        description="user_id -> error message for users whose generation failed"
    )


def next_run_after(now: datetime, day: int, hour: int, minute: int) -> datetime:
    """
    First trigger time strictly after now.

    day must exist in every month (1-28).
    """
    candidate = now.replace(day=day, hour=hour, minute=minute, second=0, microsecond=0)
    if candidate > now:
        return candidate
    following = MonthToken.from_date(now).next()
    return candidate.replace(year=following.year, month=following.month)


class MonthlyGenerationScheduler:
    """Fires monthly generation for all users."""

    def __init__(
        self,
        engine: TaskGenerationEngine,
        expense_store: ExpenseStoreInterface,
        settings: Optional[SchedulerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._engine = engine
        self._expenses = expense_store
        self._settings = settings or get_settings().scheduler
        self._audit_logger = audit_logger
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_run(self, now: Optional[datetime] = None) -> datetime:
        return next_run_after(
            now or self._clock(),
            self._settings.day_of_month,
            self._settings.hour,
            self._settings.minute,
        )

    async def run_once(self, now: Optional[datetime] = None) -> ScheduledRunSummary:
        """
        Generate "this month" for every known user.

        Raises:
            StorageError: If the list of users cannot be read
        """
        month = MonthToken.from_date(now or self._clock())
        correlation_id = create_correlation_id()
        log = logger.bind(month=str(month), correlation_id=str(correlation_id))

        user_ids = await self._expenses.list_user_ids()
        log.info("scheduled_run_started", user_count=len(user_ids))
        if self._audit_logger:
            await self._audit_logger.log_scheduled_run_started(
                month=str(month),
                user_count=len(user_ids),
                correlation_id=correlation_id,
            )

        summary = ScheduledRunSummary(month=month, correlation_id=correlation_id)
        timeout = self._settings.per_user_timeout_seconds

        for user_id in user_ids:
            try:
                report = await asyncio.wait_for(
                    self._engine.generate_with_report(
                        user_id,
                        month,
                        correlation_id=correlation_id,
                        is_user_action=False,
                    ),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                self._record_failure(summary, user_id, f"timed out after {timeout}s")
            except Exception as e:
                # One user's failure must not stop the others
                self._record_failure(summary, user_id, str(e) or type(e).__name__)
            else:
                summary.users_processed += 1
                summary.tasks_created += report.created_count
                log.info("scheduled_user_completed", user_id=user_id, created=report.created_count)
                continue

            if self._audit_logger:
                await self._audit_logger.log_scheduled_user_failed(
                    user_id=user_id,
                    month=str(month),
                    error_message=summary.failed_users[user_id],
                    correlation_id=correlation_id,
                )

        log.info(
            "scheduled_run_completed",
            users_processed=summary.users_processed,
            tasks_created=summary.tasks_created,
            failed_users=len(summary.failed_users),
        )
        if self._audit_logger:
            await self._audit_logger.log_scheduled_run_completed(
                month=str(month),
                tasks_created=summary.tasks_created,
                failed_users=sorted(summary.failed_users),
                correlation_id=correlation_id,
            )
        return summary

    def _record_failure(self, summary: ScheduledRunSummary, user_id: str, message: str) -> None:
        logger.error(
            "scheduled_user_failed",
            user_id=user_id,
            month=str(summary.month),
            error=message,
        )
        summary.failed_users[user_id] = message

    async def _run_guarded(self) -> None:
        try:
            await self.run_once()
        except Exception as e:
            logger.exception("scheduled_run_failed", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="scheduled_run_failed",
                    error_message=str(e),
                )

    async def _loop(self) -> None:
        if self._settings.run_on_startup:
            await self._run_guarded()

        while True:
            now = self._clock()
            next_run = self.next_run(now)
            delay = max((next_run - now).total_seconds(), 0.0)
            logger.info("scheduler_waiting", next_run=next_run.isoformat(), delay_seconds=delay)
            await self._sleep(delay)
            await self._run_guarded()

    def start(self) -> Optional[asyncio.Task]:
        """
        Start the background trigger on the running event loop.

        Returns the loop task, or None when the scheduler is disabled.
        """
        if not self._settings.enabled:
            logger.info("scheduler_disabled")
            return None
        if self.is_running:
            raise RuntimeError("Scheduler is already running")

        self._task = asyncio.create_task(self._loop(), name="fintasks-monthly-scheduler")
        logger.info(
            "scheduler_started",
            day_of_month=self._settings.day_of_month,
            hour=self._settings.hour,
            minute=self._settings.minute,
        )
        return self._task

    async def stop(self) -> None:
        """Cancel the background trigger and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("scheduler_stopped")
