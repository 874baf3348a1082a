"""
Monthly Task Generation Engine

Turns a user's active recurring expenses into financial tasks for one
target month.

GUARANTEES:
- Idempotent: at most one task per (expense, month). Running generation
  again for the same user and month creates nothing and raises nothing.
- Existing tasks are never touched. If an expense's amount or due day
  changed since its task was generated, the old task keeps its snapshot.
- Per-expense isolation: a storage failure or an unusable expense is
  recorded and the loop moves on. Only failing to list the expenses aborts the
  call.

The existence check is a fast path. The real guarantee is the storage
uniqueness constraint: when a concurrent generator (possibly another
process) wins the race, insert_task raises DuplicateError and the expense
counts as skipped.

The engine never reads the clock. Callers pass the target month.
"""

from datetime import date, datetime
from typing import Optional, Union
from uuid import UUID

import structlog

from fintasks.audit import AuditLogger, create_correlation_id
from fintasks.models.expense import Expense
from fintasks.models.task import (
    FinancialTask,
    GenerationFailure,
    GenerationReport,
    MonthToken,
    TaskStatus,
)
from fintasks.services.storage import (
    DuplicateError,
    ExpenseStoreInterface,
    StorageError,
    TaskRepositoryInterface,
)
from fintasks.tasks.dates import compute_due_date
from fintasks.validation import parse_target_month


logger = structlog.get_logger(__name__)

TargetMonth = Union[MonthToken, date, datetime, str]


def build_task(expense: Expense, month: MonthToken, user_id: str) -> FinancialTask:
    """Candidate task for an expense in a month; not yet persisted."""
    return FinancialTask(
        user_id=user_id,
        expense_id=expense.id,
        amount=expense.amount,
        status=TaskStatus.PENDING,
        generated_at=month.first_day,
        due_date=compute_due_date(expense.due_day, month),
    )


class TaskGenerationEngine:
    """
    Derives financial tasks from recurring expenses.

    Shared by the manual trigger and the monthly scheduler so the two
    paths cannot drift apart.
    """

    def __init__(
        self,
        expense_store: ExpenseStoreInterface,
        task_repository: TaskRepositoryInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._expenses = expense_store
        self._tasks = task_repository
        self._audit_logger = audit_logger

    async def generate(
        self,
        user_id: str,
        target_month: TargetMonth,
    ) -> list[FinancialTask]:
        """
        Generate the user's tasks for target_month.

        Returns:
            Only the tasks created by this call (existing ones are not returned)
        """
        report = await self.generate_with_report(user_id, target_month)
        return report.created

    async def generate_with_report(
        self,
        user_id: str,
        target_month: TargetMonth,
        correlation_id: Optional[UUID] = None,
        is_user_action: bool = True,
    ) -> GenerationReport:
        """
        Generate the user's tasks for target_month and describe what happened.

        Raises:
            InputValidationError: If target_month is missing or malformed
            StorageError: If the user's expenses cannot be listed
        """
        month = parse_target_month(target_month)
        correlation_id = correlation_id or create_correlation_id()
        log = logger.bind(user_id=user_id, month=str(month), correlation_id=str(correlation_id))

        try:
            expenses = await self._expenses.list_active_recurring_expenses(user_id)
        except StorageError as e:
            log.error("expense_listing_failed", error=str(e))
            raise

        report = GenerationReport(user_id=user_id, month=month)

        for expense in expenses:
            if not expense.generates_tasks:
                continue

            try:
                existing = await self._tasks.find_task(expense.id, month.first_day, user_id)
                if existing is not None:
                    report.skipped_expense_ids.append(expense.id)
                    continue
                created = await self._tasks.insert_task(build_task(expense, month, user_id))
            except DuplicateError:
                # Lost the race to a concurrent generator
                log.info("task_already_generated", expense_id=expense.id)
                report.skipped_expense_ids.append(expense.id)
                continue
            except (StorageError, ValueError) as e:
                # ValueError covers an expense that cannot form a valid task
                log.error("task_generation_failed", expense_id=expense.id, error=str(e))
                report.failures.append(GenerationFailure(expense_id=expense.id, error=str(e)))
                if self._audit_logger:
                    await self._audit_logger.log_task_generation_failed(
                        user_id=user_id,
                        month=str(month),
                        expense_id=expense.id,
                        error_message=str(e),
                        correlation_id=correlation_id,
                    )
                continue

            log.info(
                "task_generated",
                task_id=created.id,
                expense_id=expense.id,
                amount=str(created.amount),
                due_date=created.due_date.isoformat(),
            )
            report.created.append(created)

        log.info(
            "generation_completed",
            created=report.created_count,
            skipped=len(report.skipped_expense_ids),
            failed=len(report.failures),
        )

        if self._audit_logger:
            await self._audit_logger.log_tasks_generated(
                user_id=user_id,
                month=str(month),
                created_task_ids=[task.id for task in report.created],
                skipped_count=len(report.skipped_expense_ids),
                failed_count=len(report.failures),
                correlation_id=correlation_id,
                is_user_action=is_user_action,
            )

        return report
