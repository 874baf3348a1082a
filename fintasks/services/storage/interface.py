"""
Abstract Storage Interface

DESIGN DECISION: We define abstract interfaces for storage operations.
This allows us to:
1. Keep the task engine decoupled from the database
2. Swap SQLite for PostgreSQL by changing a URL
3. Wrap a repository in tests to inject failures

Every operation is scoped by user_id. A row that belongs to another user
is indistinguishable from a row that does not exist.

The task repository is the source of truth for idempotency: it must
reject a second task for the same (expense_id, generated_at) with
DuplicateError, whatever process inserted the first one.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fintasks.models.audit import AuditEvent
from fintasks.models.expense import Category, Expense
from fintasks.models.task import FinancialTask, TaskStatus


class ExpenseStoreInterface(ABC):
    """
    Expense definitions.

    The task engine only needs list_active_recurring_expenses; the rest
    exists for the CLI and for tests.
    """

    @abstractmethod
    async def list_active_recurring_expenses(self, user_id: str) -> list[Expense]:
        """Non-archived expenses of type RECURRING for the user."""
        pass

    @abstractmethod
    async def list_expenses(self, user_id: str) -> list[Expense]:
        """All non-archived expenses for the user, any type."""
        pass

    @abstractmethod
    async def get_expense(self, user_id: str, expense_id: int) -> Optional[Expense]:
        """
        Retrieve an expense by ID.

        Returns:
            The expense if it exists and belongs to user_id, None otherwise
        """
        pass

    @abstractmethod
    async def create_expense(self, expense: Expense) -> Expense:
        """
        Persist a new expense definition.

        Returns:
            The stored expense with its id assigned
        """
        pass

    @abstractmethod
    async def update_expense(
        self,
        user_id: str,
        expense_id: int,
        amount: Optional[Decimal] = None,
        due_day: Optional[int] = None,
        name: Optional[str] = None,
    ) -> Expense:
        """
        Change an expense definition.

        Already generated tasks are unaffected.

        Raises:
            NotFoundError: If the expense doesn't exist for this user
        """
        pass

    @abstractmethod
    async def archive_expense(self, user_id: str, expense_id: int) -> Expense:
        """
        Archive an expense so it no longer generates tasks.

        Raises:
            NotFoundError: If the expense doesn't exist for this user
        """
        pass

    @abstractmethod
    async def list_user_ids(self) -> list[str]:
        """Every user that owns at least one expense definition."""
        pass


class CategoryStoreInterface(ABC):
    """Category records owned by users."""

    @abstractmethod
    async def create_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        pass

    @abstractmethod
    async def count_categories(self, user_id: str) -> int:
        pass


class TaskRepositoryInterface(ABC):
    """
    Persistence for financial tasks.

    Tasks are inserted and their status updated; nothing else about a
    stored task ever changes, and the core never deletes one.
    """

    @abstractmethod
    async def find_task(
        self,
        expense_id: int,
        generated_at: date,
        user_id: str,
    ) -> Optional[FinancialTask]:
        """
        Find the user's task generated for an expense in a month.

        Args:
            expense_id: The expense the task derives from
            generated_at: First day of the month (the month token)
            user_id: Owner of the task

        Returns:
            The task if one exists, None otherwise
        """
        pass

    @abstractmethod
    async def insert_task(self, task: FinancialTask) -> FinancialTask:
        """
        Insert a new task.

        Returns:
            The stored task with its id assigned

        Raises:
            DuplicateError: If a task already exists for
                (task.expense_id, task.generated_at)
            StorageError: If the insert fails for any other reason
        """
        pass

    @abstractmethod
    async def get_task(self, task_id: int, user_id: str) -> Optional[FinancialTask]:
        """Retrieve a task by ID, or None if it doesn't exist for this user."""
        pass

    @abstractmethod
    async def update_status(
        self,
        task_id: int,
        user_id: str,
        new_status: TaskStatus,
        expected_status: Optional[TaskStatus] = None,
    ) -> FinancialTask:
        """
        Set a task's status.

        When expected_status is given the update only applies if the stored
        status still equals it (compare-and-swap).

        Returns:
            The updated task

        Raises:
            NotFoundError: If the task doesn't exist for this user
            ConcurrentModificationError: If expected_status no longer matches
        """
        pass

    @abstractmethod
    async def list_tasks_in_range(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> list[FinancialTask]:
        """
        Tasks whose generated_at falls within [start_date, end_date].

        Returns:
            Tasks ordered by due date, latest first
        """
        pass

    @abstractmethod
    async def list_tasks_for_month(
        self,
        user_id: str,
        month: int,
        year: int,
    ) -> list[FinancialTask]:
        """Tasks generated for the given calendar month."""
        pass

    @abstractmethod
    async def list_tasks(self, user_id: str) -> list[FinancialTask]:
        """Every task the user owns, latest due date first."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events sharing a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """All events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent audit events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage (or not owned by the caller)."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class ConcurrentModificationError(StorageError):
    """A conditional update found the row in a different state than expected."""

    def __init__(self, message: str, current_status: Optional[TaskStatus] = None):
        super().__init__(message)
        self.current_status = current_status
