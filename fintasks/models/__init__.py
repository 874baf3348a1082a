"""
Data Models Package

This package contains all Pydantic models used in fintasks.
All data flowing through the system must conform to these schemas.
"""

from fintasks.models.task import (
    DashboardStats,
    FinancialTask,
    GenerationFailure,
    GenerationReport,
    MonthToken,
    TaskStatus,
    utc_now,
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

__all__ = [
    # Task models
    "DashboardStats",
    "FinancialTask",
    "GenerationFailure",
    "GenerationReport",
    "MonthToken",
    "TaskStatus",
    "utc_now",
    # Expense models
    "Category",
    "Expense",
    "ExpenseType",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
