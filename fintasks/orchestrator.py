"""
Main Orchestrator for Financial Tasks

This module ties together the components and exposes the operations
callers use:
1. Generation (manual trigger: user + month -> new tasks)
2. Status updates (pending -> paid/hold, hold -> paid)
3. Listing and dashboard statistics
4. Expense and category maintenance

DESIGN DECISION: The orchestrator enforces the boundaries:
- Input is validated before anything touches storage
- Generation goes through the same engine the scheduler uses
- Every state-changing call is audited, including rejected status changes

Nothing here reads the clock. Callers pass the month or date they mean.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from fintasks.audit import AuditLogger, create_correlation_id
from fintasks.config import Settings, get_settings
from fintasks.models.audit import AuditEventType
from fintasks.models.expense import Category, Expense, ExpenseType
from fintasks.models.task import DashboardStats, FinancialTask, GenerationReport, TaskStatus
from fintasks.scheduler import MonthlyGenerationScheduler
from fintasks.services.storage import (
    CategoryStoreInterface,
    ExpenseStoreInterface,
    NotFoundError,
    SqlAuditStorage,
    SqlCategoryStore,
    SqlDatabase,
    SqlExpenseStore,
    SqlTaskRepository,
    TaskRepositoryInterface,
)
from fintasks.tasks import (
    StatsAggregator,
    TaskGenerationEngine,
    TaskStatusError,
    TaskStatusMachine,
)
from fintasks.tasks.generation import TargetMonth
from fintasks.validation import (
    ExpenseValidator,
    InputValidationError,
    parse_month_window,
)


logger = structlog.get_logger(__name__)


class FinancialTaskService:
    """
    Facade over generation, status changes, listing and stats.

    All methods are scoped to one user; nothing crosses user boundaries.
    """

    def __init__(
        self,
        expense_store: ExpenseStoreInterface,
        category_store: CategoryStoreInterface,
        task_repository: TaskRepositoryInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ExpenseValidator] = None,
    ):
        self._expenses = expense_store
        self._categories = category_store
        self._tasks = task_repository
        self._audit_logger = audit_logger
        self._validator = validator or ExpenseValidator()
        self._engine = TaskGenerationEngine(expense_store, task_repository, audit_logger)
        self._status_machine = TaskStatusMachine(task_repository)
        self._stats = StatsAggregator(expense_store, category_store, task_repository)

    @property
    def engine(self) -> TaskGenerationEngine:
        return self._engine

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def generate_tasks(
        self,
        user_id: str,
        target_month: TargetMonth,
    ) -> list[FinancialTask]:
        """
        Manual trigger: generate the user's tasks for target_month.

        Returns only the newly created tasks. Calling it again for the same
        month returns an empty list.
        """
        report = await self.generate_tasks_report(user_id, target_month)
        return report.created

    async def generate_tasks_report(
        self,
        user_id: str,
        target_month: TargetMonth,
    ) -> GenerationReport:
        return await self._engine.generate_with_report(
            user_id,
            target_month,
            correlation_id=create_correlation_id(),
            is_user_action=True,
        )

    async def update_task_status(
        self,
        user_id: str,
        task_id: int,
        status: Union[TaskStatus, str],
    ) -> FinancialTask:
        """
        Change a task's status.

        Rejections (unknown status, disallowed edge, missing task) are
        audited and re-raised unchanged.
        """
        correlation_id = create_correlation_id()

        try:
            previous, updated = await self._status_machine.transition(task_id, user_id, status)
        except (TaskStatusError, NotFoundError) as e:
            logger.info(
                "task_status_rejected",
                user_id=user_id,
                task_id=task_id,
                requested=str(status),
                reason=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_task_status_rejected(
                    user_id=user_id,
                    task_id=task_id,
                    requested_status=status.value if isinstance(status, TaskStatus) else str(status),
                    reason=str(e),
                    correlation_id=correlation_id,
                )
            raise

        logger.info(
            "task_status_updated",
            user_id=user_id,
            task_id=task_id,
            from_status=previous.value,
            to_status=updated.status.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_task_status_updated(
                user_id=user_id,
                task_id=task_id,
                from_status=previous.value,
                to_status=updated.status.value,
                correlation_id=correlation_id,
            )
        return updated

    async def list_tasks(
        self,
        user_id: str,
        month: Union[int, str, None] = None,
        year: Union[int, str, None] = None,
    ) -> list[FinancialTask]:
        """
        The user's tasks, newest due date first.

        With month and year, only tasks generated for that month.

        Raises:
            InputValidationError: If only one of month/year is given
        """
        window = parse_month_window(month, year)
        if window is None:
            return await self._tasks.list_tasks(user_id)
        return await self._tasks.list_tasks_for_month(user_id, window.month, window.year)

    async def get_dashboard_stats(self, user_id: str, as_of: date) -> DashboardStats:
        return await self._stats.compute_stats(user_id, as_of)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def add_expense(
        self,
        user_id: str,
        name: str,
        amount: Any,
        due_day: Any,
        expense_type: Union[ExpenseType, str] = ExpenseType.RECURRING,
        currency: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> Expense:
        """
        Validate and store a new expense.

        Raises:
            InputValidationError: If any field is invalid
        """
        expense = self._validator.build_expense(
            user_id=user_id,
            name=name,
            amount=amount,
            due_day=due_day,
            expense_type=expense_type,
            currency=currency,
            category_id=category_id,
        )
        created = await self._expenses.create_expense(expense)
        await self._audit_expense(
            AuditEventType.EXPENSE_CREATED,
            created,
            {"name": created.name, "amount": str(created.amount), "due_day": created.due_day},
        )
        return created

    async def list_expenses(self, user_id: str) -> list[Expense]:
        return await self._expenses.list_expenses(user_id)

    async def update_expense(
        self,
        user_id: str,
        expense_id: int,
        amount: Any = None,
        due_day: Any = None,
        name: Optional[str] = None,
    ) -> Expense:
        """
        Change an expense definition.

        Already generated tasks keep their amount and due date; only
        later months see the new values.

        Raises:
            InputValidationError: If a supplied field is invalid
            NotFoundError: If the expense does not exist for this user
        """
        new_amount, new_due_day = self._validator.validate_update(amount=amount, due_day=due_day)
        if name is not None and not name.strip():
            raise InputValidationError("Invalid expense update: Name is required")

        updated = await self._expenses.update_expense(
            user_id,
            expense_id,
            amount=new_amount,
            due_day=new_due_day,
            name=name.strip() if name else None,
        )
        changes: dict[str, Any] = {}
        if new_amount is not None:
            changes["amount"] = str(new_amount)
        if new_due_day is not None:
            changes["due_day"] = new_due_day
        if name:
            changes["name"] = updated.name
        await self._audit_expense(AuditEventType.EXPENSE_UPDATED, updated, changes)
        return updated

    async def archive_expense(self, user_id: str, expense_id: int) -> Expense:
        """
        Archive an expense. It stops generating tasks; existing tasks stay.

        Raises:
            NotFoundError: If the expense does not exist for this user
        """
        archived = await self._expenses.archive_expense(user_id, expense_id)
        await self._audit_expense(AuditEventType.EXPENSE_ARCHIVED, archived, {})
        return archived

    async def _audit_expense(
        self,
        event_type: AuditEventType,
        expense: Expense,
        details: dict,
    ) -> None:
        logger.info(event_type.value, user_id=expense.user_id, expense_id=expense.id, **details)
        if self._audit_logger:
            await self._audit_logger.log_expense_changed(
                event_type=event_type,
                user_id=expense.user_id,
                expense_id=expense.id,
                details=details,
                correlation_id=create_correlation_id(),
            )

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def add_category(self, user_id: str, name: str, category_type: str) -> Category:
        """
        Raises:
            InputValidationError: If name or type is empty or too long
        """
        try:
            category = Category(user_id=user_id, name=name, type=category_type)
        except ValidationError as e:
            raise InputValidationError(f"Invalid category: {e}") from e
        return await self._categories.create_category(category)

    async def list_categories(self, user_id: str) -> list[Category]:
        return await self._categories.list_categories(user_id)


def total_amount(tasks: list[FinancialTask]) -> Decimal:
    """Sum of task amounts."""
    return sum((task.amount for task in tasks), Decimal("0.00"))


def create_app_components(
    settings: Optional[Settings] = None,
    database_url: Optional[str] = None,
) -> tuple[FinancialTaskService, MonthlyGenerationScheduler, SqlDatabase]:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use; defaults to the environment
        database_url: Overrides the configured database URL

    Returns:
        (service, scheduler, database)

    The database is not touched until first use; call
    database.create_schema() (or connect()) before serving requests.
    """
    settings = settings or get_settings()
    database = SqlDatabase(
        url=database_url or settings.database.url,
        echo=settings.database.echo,
        connect_attempts=settings.database.connect_attempts,
    )

    expense_store = SqlExpenseStore(database)
    category_store = SqlCategoryStore(database)
    task_repository = SqlTaskRepository(database)
    audit_logger = AuditLogger(SqlAuditStorage(database))

    service = FinancialTaskService(
        expense_store=expense_store,
        category_store=category_store,
        task_repository=task_repository,
        audit_logger=audit_logger,
        validator=ExpenseValidator(settings.app),
    )
    scheduler = MonthlyGenerationScheduler(
        engine=service.engine,
        expense_store=expense_store,
        settings=settings.scheduler,
        audit_logger=audit_logger,
    )
    return service, scheduler, database
