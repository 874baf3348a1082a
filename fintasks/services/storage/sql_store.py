"""
SQL Storage Implementation

DESIGN DECISION: Tasks live in a relational database because the
idempotency guarantee needs a real uniqueness constraint.
fin_task carries UNIQUE(expense_id, generated_at); two processes racing
to generate the same month both attempt the insert and the database lets
exactly one of them win. The loser sees DuplicateError.

SQLAlchemy Core on the asyncio engine keeps us portable: SQLite
(aiosqlite) by default, PostgreSQL (asyncpg) by changing the URL.

TRADEOFFS:
- Each operation runs in its own short transaction. Generation is
  deliberately not one big transaction so a failure on one expense
  leaves the others committed.
- Amounts are Numeric(12, 2). SQLite stores them as REAL and SQLAlchemy
  converts back to Decimal at that scale.
"""

import json
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    distinct,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fintasks.config import get_settings
from fintasks.models.audit import AuditEvent, AuditEventType, AuditSeverity
from fintasks.models.expense import MAX_DUE_DAY, MIN_DUE_DAY, Category, Expense, ExpenseType
from fintasks.models.task import FinancialTask, TaskStatus, utc_now
from fintasks.services.storage.interface import (
    AuditStorageInterface,
    CategoryStoreInterface,
    ConcurrentModificationError,
    DuplicateError,
    ExpenseStoreInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    TaskRepositoryInterface,
)


logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")

metadata = MetaData()

categories = Table(
    "category",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("type", String(50), nullable=False),
    Column("created_at", DateTime, nullable=False),
)

expenses = Table(
    "expense",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("type", String(20), nullable=False),
    Column("category_id", Integer, ForeignKey("category.id")),
    Column("due_day", SmallInteger, nullable=False),
    Column("is_archived", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

fin_tasks = Table(
    "fin_task",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(255), nullable=False),
    Column("expense_id", Integer, ForeignKey("expense.id"), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("status", String(20), nullable=False),
    Column("generated_at", Date, nullable=False),
    Column("due_date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("expense_id", "generated_at", name="uq_fin_task_expense_month"),
    Index("ix_fin_task_user_generated", "user_id", "generated_at"),
)

audit_events = Table(
    "audit_event",
    metadata,
    Column("event_id", String(36), primary_key=True),
    Column("timestamp", DateTime, nullable=False, index=True),
    Column("event_type", String(50), nullable=False),
    Column("severity", String(20), nullable=False),
    Column("user_id", String(255)),
    Column("entity_type", String(50)),
    Column("entity_id", String(100)),
    Column("correlation_id", String(36), index=True),
    Column("description", String(500), nullable=False),
    Column("details_json", Text),
    Column("error_code", String(100)),
    Column("error_message", Text),
    Column("is_user_action", Boolean, nullable=False, default=False),
)


def _money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENTS)


class SqlDatabase:
    """
    Owns the async engine.

    Handles connection checks (with retry) and schema creation.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        echo: Optional[bool] = None,
        connect_attempts: Optional[int] = None,
    ):
        if url is None or echo is None or connect_attempts is None:
            settings = get_settings().database
            url = url or settings.url
            echo = settings.echo if echo is None else echo
            connect_attempts = connect_attempts or settings.connect_attempts
        self._url = url
        self._echo = echo
        self._connect_attempts = connect_attempts
        self._engine: Optional[AsyncEngine] = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self._url, echo=self._echo)
        return self._engine

    async def connect(self) -> AsyncEngine:
        """
        Make sure the database answers.

        Transient OperationalErrors are retried with exponential backoff.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                retry=retry_if_exception_type(OperationalError),
                reraise=True,
            ):
                with attempt:
                    async with self.engine.connect() as conn:
                        await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StorageConnectionError(f"Failed to connect to database: {e}") from e
        return self.engine

    async def create_schema(self) -> None:
        """Create any missing tables. Existing tables are left alone."""
        await self.connect()
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create schema: {e}") from e

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None


class SqlTaskRepository(TaskRepositoryInterface):
    """
    SQL implementation of the task repository.

    Only status and updated_at are ever written after insert.
    """

    def __init__(self, database: SqlDatabase):
        self._db = database

    def _row_to_task(self, row) -> FinancialTask:
        return FinancialTask(
            id=row["id"],
            user_id=row["user_id"],
            expense_id=row["expense_id"],
            amount=_money(row["amount"]),
            status=TaskStatus(row["status"]),
            generated_at=row["generated_at"],
            due_date=row["due_date"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _fetch(self, stmt) -> list[FinancialTask]:
        try:
            async with self._db.engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read tasks: {e}") from e
        return [self._row_to_task(row) for row in rows]

    async def find_task(
        self,
        expense_id: int,
        generated_at: date,
        user_id: str,
    ) -> Optional[FinancialTask]:
        stmt = select(fin_tasks).where(
            and_(
                fin_tasks.c.expense_id == expense_id,
                fin_tasks.c.generated_at == generated_at,
                fin_tasks.c.user_id == user_id,
            )
        )
        found = await self._fetch(stmt)
        return found[0] if found else None

    async def _month_taken(self, expense_id: int, generated_at: date) -> bool:
        stmt = select(fin_tasks.c.id).where(
            and_(
                fin_tasks.c.expense_id == expense_id,
                fin_tasks.c.generated_at == generated_at,
            )
        )
        try:
            async with self._db.engine.connect() as conn:
                return (await conn.execute(stmt)).first() is not None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read tasks: {e}") from e

    async def insert_task(self, task: FinancialTask) -> FinancialTask:
        stmt = insert(fin_tasks).values(
            user_id=task.user_id,
            expense_id=task.expense_id,
            amount=task.amount,
            status=task.status.value,
            generated_at=task.generated_at,
            due_date=task.due_date,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
        try:
            async with self._db.engine.begin() as conn:
                result = await conn.execute(stmt)
                task_id = result.inserted_primary_key[0]
        except IntegrityError as e:
            # Only the (expense_id, generated_at) constraint means "already generated"
            if await self._month_taken(task.expense_id, task.generated_at):
                raise DuplicateError(
                    f"Task already exists for expense {task.expense_id} "
                    f"in {task.generated_at:%Y-%m}"
                ) from e
            raise StorageError(f"Failed to save task: {e}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save task: {e}") from e
        return task.model_copy(update={"id": task_id})

    async def get_task(self, task_id: int, user_id: str) -> Optional[FinancialTask]:
        stmt = select(fin_tasks).where(
            and_(fin_tasks.c.id == task_id, fin_tasks.c.user_id == user_id)
        )
        found = await self._fetch(stmt)
        return found[0] if found else None

    async def update_status(
        self,
        task_id: int,
        user_id: str,
        new_status: TaskStatus,
        expected_status: Optional[TaskStatus] = None,
    ) -> FinancialTask:
        owned = and_(fin_tasks.c.id == task_id, fin_tasks.c.user_id == user_id)
        condition = owned
        if expected_status is not None:
            condition = and_(owned, fin_tasks.c.status == expected_status.value)

        try:
            async with self._db.engine.begin() as conn:
                result = await conn.execute(
                    update(fin_tasks)
                    .where(condition)
                    .values(status=new_status.value, updated_at=utc_now())
                )
                updated = result.rowcount
                row = (
                    await conn.execute(select(fin_tasks).where(owned))
                ).mappings().first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update task status: {e}") from e

        if row is None:
            raise NotFoundError(f"Task not found: {task_id}")
        if updated == 0:
            current = TaskStatus(row["status"])
            raise ConcurrentModificationError(
                f"Task {task_id} is {current.value}, expected {expected_status.value}",
                current_status=current,
            )
        return self._row_to_task(row)

    async def list_tasks_in_range(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> list[FinancialTask]:
        stmt = (
            select(fin_tasks)
            .where(
                and_(
                    fin_tasks.c.user_id == user_id,
                    fin_tasks.c.generated_at >= start_date,
                    fin_tasks.c.generated_at <= end_date,
                )
            )
            .order_by(fin_tasks.c.due_date.desc(), fin_tasks.c.id.desc())
        )
        return await self._fetch(stmt)

    async def list_tasks_for_month(
        self,
        user_id: str,
        month: int,
        year: int,
    ) -> list[FinancialTask]:
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        stmt = (
            select(fin_tasks)
            .where(
                and_(
                    fin_tasks.c.user_id == user_id,
                    fin_tasks.c.generated_at >= start,
                    fin_tasks.c.generated_at < end,
                )
            )
            .order_by(fin_tasks.c.due_date.desc(), fin_tasks.c.id.desc())
        )
        return await self._fetch(stmt)

    async def list_tasks(self, user_id: str) -> list[FinancialTask]:
        stmt = (
            select(fin_tasks)
            .where(fin_tasks.c.user_id == user_id)
            .order_by(fin_tasks.c.due_date.desc(), fin_tasks.c.id.desc())
        )
        return await self._fetch(stmt)


class SqlExpenseStore(ExpenseStoreInterface):
    """SQL implementation of the expense store."""

    def __init__(self, database: SqlDatabase):
        self._db = database

    def _row_to_expense(self, row) -> Expense:
        due_day = row["due_day"]
        if not MIN_DUE_DAY <= due_day <= MAX_DUE_DAY:
            # Rows written outside the validator; the engine clamps to the month
            logger.warning("expense_due_day_out_of_range", expense_id=row["id"], due_day=due_day)
            due_day = max(MIN_DUE_DAY, min(due_day, MAX_DUE_DAY))
        return Expense(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            amount=_money(row["amount"]),
            currency=row["currency"],
            type=ExpenseType(row["type"]),
            category_id=row["category_id"],
            due_day=due_day,
            is_archived=bool(row["is_archived"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def _fetch(self, stmt) -> list[Expense]:
        try:
            async with self._db.engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read expenses: {e}") from e
        try:
            return [self._row_to_expense(row) for row in rows]
        except ValueError as e:
            raise StorageError(f"Unreadable expense row: {e}") from e

    async def list_active_recurring_expenses(self, user_id: str) -> list[Expense]:
        stmt = (
            select(expenses)
            .where(
                and_(
                    expenses.c.user_id == user_id,
                    expenses.c.is_archived.is_(False),
                    expenses.c.type == ExpenseType.RECURRING.value,
                )
            )
            .order_by(expenses.c.id)
        )
        return await self._fetch(stmt)

    async def list_expenses(self, user_id: str) -> list[Expense]:
        stmt = (
            select(expenses)
            .where(
                and_(
                    expenses.c.user_id == user_id,
                    expenses.c.is_archived.is_(False),
                )
            )
            .order_by(expenses.c.created_at.desc(), expenses.c.id.desc())
        )
        return await self._fetch(stmt)

    async def get_expense(self, user_id: str, expense_id: int) -> Optional[Expense]:
        stmt = select(expenses).where(
            and_(expenses.c.id == expense_id, expenses.c.user_id == user_id)
        )
        found = await self._fetch(stmt)
        return found[0] if found else None

    async def create_expense(self, expense: Expense) -> Expense:
        stmt = insert(expenses).values(
            user_id=expense.user_id,
            name=expense.name,
            amount=expense.amount,
            currency=expense.currency,
            type=expense.type.value,
            category_id=expense.category_id,
            due_day=expense.due_day,
            is_archived=expense.is_archived,
            created_at=expense.created_at,
            updated_at=expense.updated_at,
        )
        try:
            async with self._db.engine.begin() as conn:
                result = await conn.execute(stmt)
                expense_id = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save expense: {e}") from e
        return expense.model_copy(update={"id": expense_id})

    async def _update(self, user_id: str, expense_id: int, values: dict) -> Expense:
        values["updated_at"] = utc_now()
        try:
            async with self._db.engine.begin() as conn:
                result = await conn.execute(
                    update(expenses)
                    .where(
                        and_(expenses.c.id == expense_id, expenses.c.user_id == user_id)
                    )
                    .values(**values)
                )
                updated = result.rowcount
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update expense: {e}") from e

        if updated == 0:
            raise NotFoundError(f"Expense not found: {expense_id}")
        expense = await self.get_expense(user_id, expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return expense

    async def update_expense(
        self,
        user_id: str,
        expense_id: int,
        amount: Optional[Decimal] = None,
        due_day: Optional[int] = None,
        name: Optional[str] = None,
    ) -> Expense:
        values: dict[str, Any] = {}
        if amount is not None:
            values["amount"] = amount
        if due_day is not None:
            values["due_day"] = due_day
        if name is not None:
            values["name"] = name
        return await self._update(user_id, expense_id, values)

    async def archive_expense(self, user_id: str, expense_id: int) -> Expense:
        return await self._update(user_id, expense_id, {"is_archived": True})

    async def list_user_ids(self) -> list[str]:
        stmt = select(distinct(expenses.c.user_id)).order_by(expenses.c.user_id)
        try:
            async with self._db.engine.connect() as conn:
                return list((await conn.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list users: {e}") from e


class SqlCategoryStore(CategoryStoreInterface):
    """SQL implementation of the category store."""

    def __init__(self, database: SqlDatabase):
        self._db = database

    async def create_category(self, category: Category) -> Category:
        stmt = insert(categories).values(
            user_id=category.user_id,
            name=category.name,
            type=category.type,
            created_at=category.created_at,
        )
        try:
            async with self._db.engine.begin() as conn:
                result = await conn.execute(stmt)
                category_id = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save category: {e}") from e
        return category.model_copy(update={"id": category_id})

    async def list_categories(self, user_id: str) -> list[Category]:
        stmt = (
            select(categories)
            .where(categories.c.user_id == user_id)
            .order_by(categories.c.created_at.desc(), categories.c.id.desc())
        )
        try:
            async with self._db.engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list categories: {e}") from e
        return [Category(**dict(row)) for row in rows]

    async def count_categories(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(categories).where(
            categories.c.user_id == user_id
        )
        try:
            async with self._db.engine.connect() as conn:
                return int((await conn.execute(stmt)).scalar_one())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count categories: {e}") from e


class SqlAuditStorage(AuditStorageInterface):
    """
    SQL implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, database: SqlDatabase):
        self._db = database

    def _event_to_values(self, event: AuditEvent) -> dict:
        return {
            "event_id": str(event.event_id),
            "timestamp": event.timestamp,
            "event_type": event.event_type.value,
            "severity": event.severity.value,
            "user_id": event.user_id,
            "entity_type": event.entity_type,
            "entity_id": event.entity_id,
            "correlation_id": str(event.correlation_id) if event.correlation_id else None,
            "description": event.description,
            "details_json": json.dumps(event.details, default=str) if event.details else None,
            "error_code": event.error_code,
            "error_message": event.error_message,
            "is_user_action": event.is_user_action,
        }

    def _row_to_event(self, row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=row["timestamp"],
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            user_id=row["user_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_code=row["error_code"],
            error_message=row["error_message"],
            is_user_action=bool(row["is_user_action"]),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            async with self._db.engine.begin() as conn:
                await conn.execute(insert(audit_events).values(**self._event_to_values(event)))
            return True
        except SQLAlchemyError as e:
            # Audit persistence must not break the main flow
            logger.warning(
                "audit_event_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def _fetch(self, stmt) -> list[AuditEvent]:
        try:
            async with self._db.engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
        return [self._row_to_event(row) for row in rows]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        stmt = (
            select(audit_events)
            .where(audit_events.c.correlation_id == str(correlation_id))
            .order_by(audit_events.c.timestamp)
        )
        return await self._fetch(stmt)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        stmt = (
            select(audit_events)
            .where(
                and_(
                    audit_events.c.entity_type == entity_type,
                    audit_events.c.entity_id == entity_id,
                )
            )
            .order_by(audit_events.c.timestamp)
        )
        return await self._fetch(stmt)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = (
            select(audit_events)
            .order_by(audit_events.c.timestamp.desc())
            .limit(limit)
        )
        return await self._fetch(stmt)
