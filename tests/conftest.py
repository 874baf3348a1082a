"""Shared fixtures: a throwaway SQLite database per test."""

import asyncio
from dataclasses import dataclass
from decimal import Decimal

import pytest
from sqlalchemy import insert

from fintasks.models.expense import Expense, ExpenseType
from fintasks.models.task import utc_now
from fintasks.services.storage import (
    SqlAuditStorage,
    SqlCategoryStore,
    SqlDatabase,
    SqlExpenseStore,
    SqlTaskRepository,
)
from fintasks.services.storage.sql_store import expenses as expense_table


@dataclass
class Stores:
    database: SqlDatabase
    expenses: SqlExpenseStore
    categories: SqlCategoryStore
    tasks: SqlTaskRepository
    audit: SqlAuditStorage

    async def add_expense(
        self,
        user_id: str,
        amount: str,
        due_day: int,
        expense_type: ExpenseType = ExpenseType.RECURRING,
        name: str = "Expense",
    ) -> Expense:
        return await self.expenses.create_expense(Expense(
            user_id=user_id,
            name=name,
            amount=Decimal(amount),
            type=expense_type,
            due_day=due_day,
        ))

    async def insert_expense_row(self, user_id: str, **values) -> int:
        """Write an expense row directly, skipping model validation."""
        row = {
            "user_id": user_id,
            "name": "Raw",
            "amount": Decimal("10.00"),
            "currency": "USD",
            "type": ExpenseType.RECURRING.value,
            "due_day": 1,
            "is_archived": False,
            "created_at": utc_now(),
            "updated_at": utc_now(),
        }
        row.update(values)
        async with self.database.engine.begin() as conn:
            result = await conn.execute(insert(expense_table).values(**row))
            return result.inserted_primary_key[0]


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'fintasks_test.db'}"


@pytest.fixture
def run_scenario(db_url):
    """
    Run an async scenario against a fresh schema.

    The scenario receives a Stores bundle; its return value is passed back.
    """

    def _run(scenario):
        async def _main():
            database = SqlDatabase(url=db_url, echo=False, connect_attempts=1)
            await database.create_schema()
            try:
                return await scenario(Stores(
                    database=database,
                    expenses=SqlExpenseStore(database),
                    categories=SqlCategoryStore(database),
                    tasks=SqlTaskRepository(database),
                    audit=SqlAuditStorage(database),
                ))
            finally:
                await database.dispose()

        return asyncio.run(_main())

    return _run
