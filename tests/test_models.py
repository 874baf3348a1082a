"""
Tests for fintasks models

Test strategy:
1. Unit tests for individual models and their validators
2. Storage-backed behaviour lives in the other test modules
3. No network access in tests
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from fintasks.models.task import (
    DashboardStats,
    FinancialTask,
    GenerationFailure,
    GenerationReport,
    MonthToken,
    TaskStatus,
)
from fintasks.models.expense import (
    Category,
    Expense,
    ExpenseType,
    ValidationIssue,
    ValidationResult,
)
from fintasks.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestMonthToken:
    """Tests for the calendar month identifier."""

    def test_parse_year_month(self):
        """Test parsing of the YYYY-MM form."""
        token = MonthToken.parse("2025-02")
        assert token.year == 2025
        assert token.month == 2

    def test_parse_iso_date_ignores_day(self):
        """Test that an ISO date maps to its month."""
        assert MonthToken.parse("2024-02-17") == MonthToken(year=2024, month=2)

    def test_parse_rejects_garbage(self):
        """Test that malformed input is rejected."""
        with pytest.raises(ValueError):
            MonthToken.parse("Feb 2025")
        with pytest.raises(ValueError):
            MonthToken.parse("2025-13")

    def test_str_round_trips(self):
        """Test that str() produces the parseable form."""
        assert str(MonthToken(year=2025, month=3)) == "2025-03"

    def test_next_and_previous_cross_year(self):
        """Test month arithmetic across a year boundary."""
        assert MonthToken(year=2024, month=12).next() == MonthToken(year=2025, month=1)
        assert MonthToken(year=2025, month=1).previous() == MonthToken(year=2024, month=12)

    def test_days_in_month(self):
        """Test month lengths including leap years."""
        assert MonthToken(year=2024, month=2).days_in_month == 29
        assert MonthToken(year=2025, month=2).days_in_month == 28
        assert MonthToken(year=2025, month=4).days_in_month == 30

    def test_first_and_last_day(self):
        token = MonthToken(year=2025, month=4)
        assert token.first_day == date(2025, 4, 1)
        assert token.last_day == date(2025, 4, 30)
        assert token.contains(date(2025, 4, 15))
        assert not token.contains(date(2025, 5, 1))

    def test_from_datetime(self):
        assert MonthToken.from_date(datetime(2025, 7, 9, 13, 5)) == MonthToken(year=2025, month=7)


class TestFinancialTask:
    """Tests for the FinancialTask model."""

    def _task(self, **overrides):
        fields = dict(
            user_id="user-1",
            expense_id=1,
            amount=Decimal("15.99"),
            generated_at=date(2025, 1, 1),
            due_date=date(2025, 1, 31),
        )
        fields.update(overrides)
        return FinancialTask(**fields)

    def test_task_creation_defaults_to_pending(self):
        """Test that new tasks start pending."""
        task = self._task()
        assert task.status == TaskStatus.PENDING
        assert task.id is None
        assert task.month_token == MonthToken(year=2025, month=1)

    def test_generated_at_must_be_first_of_month(self):
        """Test that the month token is stored as day 1."""
        with pytest.raises(ValueError, match="first day of a month"):
            self._task(generated_at=date(2025, 1, 2))

    def test_due_date_must_be_in_generated_month(self):
        """Test that the due date cannot leave its month."""
        with pytest.raises(ValueError, match="Due date must fall in the month"):
            self._task(due_date=date(2025, 2, 1))

    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            self._task(amount=Decimal("0"))

    def test_task_is_frozen(self):
        """Test that a task's snapshot cannot be rewritten in place."""
        task = self._task()
        with pytest.raises(ValueError):
            task.amount = Decimal("1.00")

    def test_status_values(self):
        """Test the wire values of the status enum."""
        assert {s.value for s in TaskStatus} == {"pending", "paid", "hold"}


class TestExpenseModels:
    """Tests for Expense and Category."""

    def test_expense_creation(self):
        expense = Expense(
            user_id="user-1",
            name="  Netflix  ",
            amount=Decimal("15.99"),
            currency="usd",
            type=ExpenseType.RECURRING,
            due_day=31,
        )
        assert expense.name == "Netflix"
        assert expense.currency == "USD"
        assert expense.generates_tasks

    def test_one_time_and_archived_do_not_generate(self):
        """Test which expenses take part in generation."""
        one_time = Expense(
            user_id="u", name="Sofa", amount=Decimal("400.00"),
            type=ExpenseType.ONE_TIME, due_day=10,
        )
        archived = Expense(
            user_id="u", name="Gym", amount=Decimal("30.00"),
            type=ExpenseType.RECURRING, due_day=10, is_archived=True,
        )
        assert not one_time.generates_tasks
        assert not archived.generates_tasks

    def test_expense_due_day_bounds(self):
        """Test that due_day must be a day of month."""
        with pytest.raises(ValueError):
            Expense(user_id="u", name="X", amount=Decimal("1.00"), type="recurring", due_day=0)
        with pytest.raises(ValueError):
            Expense(user_id="u", name="X", amount=Decimal("1.00"), type="recurring", due_day=32)

    def test_expense_type_values(self):
        assert ExpenseType("one-time") == ExpenseType.ONE_TIME
        assert ExpenseType("recurring") == ExpenseType.RECURRING

    def test_category_requires_name(self):
        with pytest.raises(ValueError):
            Category(user_id="u", name="   ", type="bills")


class TestReports:
    """Tests for generation and dashboard result models."""

    def test_generation_report_counts(self):
        report = GenerationReport(
            user_id="u",
            month=MonthToken(year=2025, month=1),
            skipped_expense_ids=[3],
            failures=[GenerationFailure(expense_id=4, error="boom")],
        )
        assert report.created_count == 0
        assert report.has_failures

    def test_dashboard_stats_rejects_negative_counts(self):
        with pytest.raises(ValueError):
            DashboardStats(
                user_id="u",
                month=MonthToken(year=2025, month=1),
                total_monthly_expenses=Decimal("0.00"),
                pending_task_count=-1,
                completed_task_count=0,
                category_count=0,
            )


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.TASK_STATUS_UPDATED,
            description="Task 1 moved from pending to paid",
        )
        assert event.event_id is not None
        assert event.timestamp is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            description="Expense 1 created",
            details={"amount": "15.99"},
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "expense_created"
        assert log_dict["details"] == {"amount": "15.99"}
        assert log_dict["correlation_id"] is None

    def test_builder_tasks_generated_escalates_on_failure(self):
        """Test that partial failures raise the event's severity."""
        correlation_id = uuid4()
        clean = AuditEventBuilder.tasks_generated(
            user_id="u", month="2025-01", created_task_ids=[1, 2],
            skipped_count=0, failed_count=0, correlation_id=correlation_id,
        )
        partial = AuditEventBuilder.tasks_generated(
            user_id="u", month="2025-01", created_task_ids=[1],
            skipped_count=0, failed_count=1, correlation_id=correlation_id,
        )
        assert clean.severity == AuditSeverity.INFO
        assert partial.severity == AuditSeverity.WARNING
        assert clean.entity_id == "2025-01"
        assert clean.details["created_task_ids"] == [1, 2]

    def test_builder_status_rejected(self):
        event = AuditEventBuilder.task_status_rejected(
            user_id="u", task_id=7, requested_status="pending",
            reason="Cannot move task from paid to pending", correlation_id=uuid4(),
        )
        assert event.event_type == AuditEventType.TASK_STATUS_REJECTED
        assert event.entity_id == "7"
        assert event.is_user_action


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount must be greater than zero",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test result with only warnings."""
        result = ValidationResult(
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="suspicious_value",
                    message="Amount seems unusually high",
                    severity="warning",
                ),
            ],
        )
        assert not result.has_errors
        assert result.warnings == ["Amount seems unusually high"]

    def test_issue_severity_is_restricted(self):
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
