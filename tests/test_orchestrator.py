"""Tests for the FinancialTaskService facade."""

import asyncio

import pytest
from datetime import date
from decimal import Decimal

from fintasks.models.audit import AuditEventType
from fintasks.models.task import TaskStatus
from fintasks.orchestrator import create_app_components, total_amount
from fintasks.scheduler import MonthlyGenerationScheduler
from fintasks.services.storage import NotFoundError, SqlAuditStorage
from fintasks.tasks import InvalidTransitionError
from fintasks.validation import InputValidationError


@pytest.fixture
def run_service(db_url):
    def _run(scenario):
        async def _main():
            service, scheduler, database = create_app_components(database_url=db_url)
            await database.create_schema()
            try:
                return await scenario(service, SqlAuditStorage(database))
            finally:
                await database.dispose()

        return asyncio.run(_main())

    return _run


class TestFactory:

    def test_create_app_components(self, db_url):
        service, scheduler, database = create_app_components(database_url=db_url)
        assert isinstance(scheduler, MonthlyGenerationScheduler)
        assert database.url == db_url
        assert service.engine is not None


class TestFinancialTaskService:
    """End-to-end flows through the facade."""

    def test_generate_update_and_stats(self, run_service):
        async def scenario(service, audit):
            await service.add_expense("u1", "Netflix", "15.99", 31)
            await service.add_expense("u1", "Phone", "9.99", 5)
            await service.add_expense("u1", "Sofa", "300", 10, expense_type="one-time")

            created = await service.generate_tasks("u1", "2025-02")
            again = await service.generate_tasks("u1", "2025-02")
            await service.update_task_status("u1", created[0].id, "paid")
            stats = await service.get_dashboard_stats("u1", date(2025, 2, 14))
            return created, again, stats

        created, again, stats = run_service(scenario)
        assert len(created) == 2
        assert again == []
        assert total_amount(created) == Decimal("25.98")
        assert stats.pending_task_count == 1
        assert stats.completed_task_count == 1
        assert stats.total_monthly_expenses == Decimal("325.98")

    def test_status_changes_are_audited(self, run_service):
        async def scenario(service, audit):
            await service.add_expense("u1", "Rent", "1200", 1)
            task = (await service.generate_tasks("u1", "2025-01"))[0]
            held = await service.update_task_status("u1", task.id, TaskStatus.HOLD)
            with pytest.raises(InvalidTransitionError):
                await service.update_task_status("u1", task.id, "pending")
            events = await audit.get_events_by_entity("task", str(task.id))
            return held, events

        held, events = run_service(scenario)
        assert held.status == TaskStatus.HOLD
        by_type = {event.event_type: event for event in events}
        assert by_type[AuditEventType.TASK_STATUS_UPDATED].details == {
            "from_status": "pending",
            "to_status": "hold",
        }
        rejected = by_type[AuditEventType.TASK_STATUS_REJECTED]
        assert rejected.details == {"requested_status": "pending"}
        assert "hold" in rejected.error_message

    def test_unknown_task_is_not_found(self, run_service):
        async def scenario(service, audit):
            with pytest.raises(NotFoundError):
                await service.update_task_status("u1", 404, "paid")

        run_service(scenario)

    def test_list_tasks_filters(self, run_service):
        async def scenario(service, audit):
            await service.add_expense("u1", "Rent", "1200", 1)
            await service.generate_tasks("u1", "2025-01")
            await service.generate_tasks("u1", "2025-02")
            with pytest.raises(InputValidationError):
                await service.list_tasks("u1", month=2)
            return (
                await service.list_tasks("u1"),
                await service.list_tasks("u1", month=2, year=2025),
                await service.list_tasks("u2"),
            )

        everything, february, other = run_service(scenario)
        assert len(everything) == 2
        assert [task.due_date for task in february] == [date(2025, 2, 1)]
        assert other == []

    def test_invalid_expense_is_not_stored(self, run_service):
        async def scenario(service, audit):
            with pytest.raises(InputValidationError):
                await service.add_expense("u1", "Rent", "-1", 1)
            return await service.list_expenses("u1")

        assert run_service(scenario) == []

    def test_expense_update_and_archive(self, run_service):
        async def scenario(service, audit):
            expense = await service.add_expense("u1", "Gym", "30", 15)
            updated = await service.update_expense("u1", expense.id, amount="35.50", name="Gym+")
            with pytest.raises(InputValidationError):
                await service.update_expense("u1", expense.id, due_day=32)
            await service.archive_expense("u1", expense.id)
            events = await audit.get_events_by_entity("expense", str(expense.id))
            return updated, await service.list_expenses("u1"), events

        updated, remaining, events = run_service(scenario)
        assert updated.amount == Decimal("35.50")
        assert updated.name == "Gym+"
        assert remaining == []
        assert {event.event_type for event in events} == {
            AuditEventType.EXPENSE_CREATED,
            AuditEventType.EXPENSE_UPDATED,
            AuditEventType.EXPENSE_ARCHIVED,
        }

    def test_categories(self, run_service):
        async def scenario(service, audit):
            await service.add_category("u1", "Utilities", "bills")
            with pytest.raises(InputValidationError):
                await service.add_category("u1", "", "bills")
            return await service.list_categories("u1")

        assert [c.name for c in run_service(scenario)] == ["Utilities"]
