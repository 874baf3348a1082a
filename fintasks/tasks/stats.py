"""
Dashboard Statistics

A read-only projection over expenses, tasks and categories.

GUARANTEES:
- No side effects; safe to run alongside generation and status updates
- Task counts only consider tasks generated for the month containing as_of
- hold tasks count as neither pending nor completed

The three reads are independent and not taken from one snapshot, so a
result may mix states a few moments apart.
"""

import asyncio
from datetime import date
from decimal import Decimal

from fintasks.models.task import DashboardStats, MonthToken, TaskStatus
from fintasks.services.storage import (
    CategoryStoreInterface,
    ExpenseStoreInterface,
    TaskRepositoryInterface,
)


class StatsAggregator:
    """Computes the dashboard numbers for one user."""

    def __init__(
        self,
        expense_store: ExpenseStoreInterface,
        category_store: CategoryStoreInterface,
        task_repository: TaskRepositoryInterface,
    ):
        self._expenses = expense_store
        self._categories = category_store
        self._tasks = task_repository

    async def compute_stats(self, user_id: str, as_of: date) -> DashboardStats:
        month = MonthToken.from_date(as_of)

        expenses, tasks, category_count = await asyncio.gather(
            self._expenses.list_expenses(user_id),
            self._tasks.list_tasks_for_month(user_id, month.month, month.year),
            self._categories.count_categories(user_id),
        )

        # Defined obligations, whether or not a task exists yet
        total = sum((expense.amount for expense in expenses), Decimal("0.00"))

        return DashboardStats(
            user_id=user_id,
            month=month,
            total_monthly_expenses=total,
            pending_task_count=sum(1 for task in tasks if task.status == TaskStatus.PENDING),
            completed_task_count=sum(1 for task in tasks if task.status == TaskStatus.PAID),
            category_count=category_count,
        )
