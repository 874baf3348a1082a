"""
Tests for the monthly task generation engine.

Every test runs against a real SQLite database so the uniqueness
constraint is exercised, not simulated.
"""

import asyncio

import pytest
from datetime import date
from decimal import Decimal

from fintasks.audit import AuditLogger
from fintasks.models.audit import AuditEventType
from fintasks.models.expense import Expense, ExpenseType
from fintasks.models.task import MonthToken, TaskStatus
from fintasks.services.storage import SqlTaskRepository, StorageError
from fintasks.tasks import StatsAggregator, TaskGenerationEngine, build_task
from fintasks.validation import InputValidationError


FEB_2025 = MonthToken(year=2025, month=2)


class FlakyTaskRepository(SqlTaskRepository):
    """Fails every insert for the given expense ids."""

    def __init__(self, database, failing_expense_ids):
        super().__init__(database)
        self.failing_expense_ids = set(failing_expense_ids)

    async def insert_task(self, task):
        if task.expense_id in self.failing_expense_ids:
            raise StorageError(f"disk full while saving expense {task.expense_id}")
        return await super().insert_task(task)


class TestBuildTask:

    def test_build_task_snapshots_expense(self, run_scenario):
        async def scenario(stores):
            return await stores.add_expense("u1", "15.99", 31)

        expense = run_scenario(scenario)
        task = build_task(expense, FEB_2025, "u1")
        assert task.amount == Decimal("15.99")
        assert task.status == TaskStatus.PENDING
        assert task.generated_at == date(2025, 2, 1)
        assert task.due_date == date(2025, 2, 28)


class TestTaskGeneration:
    """Tests for TaskGenerationEngine."""

    def test_recurring_expenses_for_february(self, run_scenario):
        """Two recurring expenses and a one-time one, generated for February."""
        async def scenario(stores):
            a = await stores.add_expense("u1", "15.99", 31, name="A")
            b = await stores.add_expense("u1", "9.99", 5, name="B")
            await stores.add_expense("u1", "250.00", 12, ExpenseType.ONE_TIME, name="C")

            engine = TaskGenerationEngine(stores.expenses, stores.tasks)
            created = await engine.generate("u1", FEB_2025)
            stats = await StatsAggregator(
                stores.expenses, stores.categories, stores.tasks
            ).compute_stats("u1", date(2025, 2, 10))
            return a, b, created, stats

        a, b, created, stats = run_scenario(scenario)
        by_expense = {task.expense_id: task for task in created}
        assert set(by_expense) == {a.id, b.id}
        assert by_expense[a.id].due_date == date(2025, 2, 28)
        assert by_expense[a.id].amount == Decimal("15.99")
        assert by_expense[b.id].due_date == date(2025, 2, 5)
        assert by_expense[b.id].amount == Decimal("9.99")
        assert stats.pending_task_count == 2
        assert stats.completed_task_count == 0

    def test_second_run_creates_nothing(self, run_scenario):
        """Test idempotency for the same user and month."""
        async def scenario(stores):
            for due_day in (1, 15, 31):
                await stores.add_expense("u1", "10.00", due_day)
            engine = TaskGenerationEngine(stores.expenses, stores.tasks)
            first = await engine.generate("u1", "2025-03")
            second = await engine.generate("u1", "2025-03")
            report = await engine.generate_with_report("u1", "2025-03")
            return first, second, report, await stores.tasks.list_tasks("u1")

        first, second, report, stored = run_scenario(scenario)
        assert len(first) == 3
        assert second == []
        assert len(report.skipped_expense_ids) == 3
        assert len(stored) == 3

    def test_concurrent_generation_creates_each_task_once(self, run_scenario):
        """Test that racing generators never produce duplicates."""
        async def scenario(stores):
            for due_day in (2, 9, 20, 28):
                await stores.add_expense("u1", "10.00", due_day)
            engine = TaskGenerationEngine(stores.expenses, stores.tasks)
            results = await asyncio.gather(*(engine.generate("u1", FEB_2025) for _ in range(4)))
            return results, await stores.tasks.list_tasks_for_month("u1", 2, 2025)

        results, stored = run_scenario(scenario)
        assert sum(len(created) for created in results) == 4
        assert len(stored) == 4
        assert len({task.expense_id for task in stored}) == 4

    @pytest.mark.parametrize(
        "month, expected_due",
        [
            (MonthToken(year=2025, month=2), date(2025, 2, 28)),
            (MonthToken(year=2024, month=2), date(2024, 2, 29)),
            (MonthToken(year=2025, month=4), date(2025, 4, 30)),
            (MonthToken(year=2025, month=5), date(2025, 5, 31)),
        ],
    )
    def test_due_day_31_clamps(self, run_scenario, month, expected_due):
        async def scenario(stores):
            await stores.add_expense("u1", "20.00", 31)
            return await TaskGenerationEngine(stores.expenses, stores.tasks).generate("u1", month)

        created = run_scenario(scenario)
        assert [task.due_date for task in created] == [expected_due]

    def test_stored_due_day_beyond_31_still_clamps(self, run_scenario):
        """Rows that bypassed validation still get a real date in the month."""
        async def scenario(stores):
            expense_id = await stores.insert_expense_row("u1", due_day=45)
            created = await TaskGenerationEngine(stores.expenses, stores.tasks).generate("u1", "2025-02")
            return expense_id, created

        expense_id, created = run_scenario(scenario)
        assert [(task.expense_id, task.due_date) for task in created] == [
            (expense_id, date(2025, 2, 28))
        ]

    def test_existing_task_keeps_its_snapshot(self, run_scenario):
        """Test that editing an expense never rewrites generated tasks."""
        async def scenario(stores):
            expense = await stores.add_expense("u1", "15.99", 31)
            engine = TaskGenerationEngine(stores.expenses, stores.tasks)
            await engine.generate("u1", "2025-01")
            await stores.expenses.update_expense(
                "u1", expense.id, amount=Decimal("17.99"), due_day=10
            )
            regenerated = await engine.generate("u1", "2025-01")
            await engine.generate("u1", "2025-02")
            return (
                regenerated,
                await stores.tasks.list_tasks_for_month("u1", 1, 2025),
                await stores.tasks.list_tasks_for_month("u1", 2, 2025),
            )

        regenerated, january, february = run_scenario(scenario)
        assert regenerated == []
        assert january[0].amount == Decimal("15.99")
        assert january[0].due_date == date(2025, 1, 31)
        assert february[0].amount == Decimal("17.99")
        assert february[0].due_date == date(2025, 2, 10)

    def test_archived_and_one_time_expenses_are_ignored(self, run_scenario):
        async def scenario(stores):
            await stores.add_expense("u1", "5.00", 5, ExpenseType.ONE_TIME)
            archived = await stores.add_expense("u1", "6.00", 6)
            await stores.expenses.archive_expense("u1", archived.id)
            return await TaskGenerationEngine(stores.expenses, stores.tasks).generate("u1", FEB_2025)

        assert run_scenario(scenario) == []

    def test_archiving_keeps_existing_tasks(self, run_scenario):
        async def scenario(stores):
            expense = await stores.add_expense("u1", "6.00", 6)
            engine = TaskGenerationEngine(stores.expenses, stores.tasks)
            await engine.generate("u1", "2025-01")
            await stores.expenses.archive_expense("u1", expense.id)
            february = await engine.generate("u1", "2025-02")
            return february, await stores.tasks.list_tasks("u1")

        february, stored = run_scenario(scenario)
        assert february == []
        assert len(stored) == 1

    def test_no_expenses_yields_empty_list(self, run_scenario):
        async def scenario(stores):
            return await TaskGenerationEngine(stores.expenses, stores.tasks).generate("nobody", FEB_2025)

        assert run_scenario(scenario) == []

    def test_generation_is_scoped_to_user(self, run_scenario):
        async def scenario(stores):
            await stores.add_expense("u1", "1.00", 1)
            await stores.add_expense("u2", "2.00", 2)
            engine = TaskGenerationEngine(stores.expenses, stores.tasks)
            created = await engine.generate("u1", FEB_2025)
            return created, await stores.tasks.list_tasks("u2")

        created, other_user = run_scenario(scenario)
        assert [task.user_id for task in created] == ["u1"]
        assert other_user == []

    @pytest.mark.parametrize("bad_month", [None, "", "2025-13", "February"])
    def test_invalid_target_month_rejected_before_storage(self, run_scenario, bad_month):
        async def scenario(stores):
            await stores.add_expense("u1", "1.00", 1)
            engine = TaskGenerationEngine(stores.expenses, stores.tasks)
            with pytest.raises(InputValidationError):
                await engine.generate("u1", bad_month)
            return await stores.tasks.list_tasks("u1")

        assert run_scenario(scenario) == []


class TestPartialFailure:
    """A failing expense must not block the others."""

    def test_failure_is_reported_and_others_committed(self, run_scenario):
        async def scenario(stores):
            ok_one = await stores.add_expense("u1", "1.00", 1)
            broken = await stores.add_expense("u1", "2.00", 2)
            ok_two = await stores.add_expense("u1", "3.00", 3)

            flaky = FlakyTaskRepository(stores.database, {broken.id})
            audit_logger = AuditLogger(stores.audit)
            report = await TaskGenerationEngine(
                stores.expenses, flaky, audit_logger
            ).generate_with_report("u1", FEB_2025)

            # A later run with healthy storage completes the month
            retry = await TaskGenerationEngine(stores.expenses, stores.tasks).generate("u1", FEB_2025)
            events = await stores.audit.get_recent_events()
            return ok_one, broken, ok_two, report, retry, events

        ok_one, broken, ok_two, report, retry, events = run_scenario(scenario)
        assert {task.expense_id for task in report.created} == {ok_one.id, ok_two.id}
        assert [failure.expense_id for failure in report.failures] == [broken.id]
        assert "disk full" in report.failures[0].error
        assert [task.expense_id for task in retry] == [broken.id]

        event_types = {event.event_type for event in events}
        assert AuditEventType.TASK_GENERATION_FAILED in event_types
        assert AuditEventType.TASKS_GENERATED in event_types

    def test_unusable_expense_is_reported_and_others_committed(self, run_scenario):
        class WithUnusableExpense:
            def __init__(self, store, unusable):
                self.store = store
                self.unusable = unusable

            async def list_active_recurring_expenses(self, user_id):
                return [self.unusable, *await self.store.list_active_recurring_expenses(user_id)]

        async def scenario(stores):
            good = await stores.add_expense("u1", "4.00", 4)
            unusable = Expense.model_construct(
                id=999,
                user_id="u1",
                name="Zero",
                amount=Decimal("0"),
                type=ExpenseType.RECURRING,
                due_day=3,
            )
            engine = TaskGenerationEngine(WithUnusableExpense(stores.expenses, unusable), stores.tasks)
            return good, await engine.generate_with_report("u1", FEB_2025)

        good, report = run_scenario(scenario)
        assert [task.expense_id for task in report.created] == [good.id]
        assert [failure.expense_id for failure in report.failures] == [999]

    def test_listing_failure_aborts(self, run_scenario):
        class BrokenExpenses:
            async def list_active_recurring_expenses(self, user_id):
                raise StorageError("expense table unavailable")

        async def scenario(stores):
            engine = TaskGenerationEngine(BrokenExpenses(), stores.tasks)
            with pytest.raises(StorageError):
                await engine.generate("u1", FEB_2025)

        run_scenario(scenario)
