"""
Financial Task Models

A financial task is a concrete, month-specific payable instance derived
from a recurring expense. Tasks are created only by the generation engine
and their status is changed only by the status machine.

DESIGN DECISION: FinancialTask is frozen.
The amount is a snapshot taken at generation time; nothing in the system
is allowed to rewrite it afterwards, so the model offers no way to.
"""

import calendar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the form the database hands back)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class TaskStatus(str, Enum):
    """
    Lifecycle states of a financial task.

    PENDING is the initial state, HOLD is intermediate and PAID is terminal.
    Allowed edges live in fintasks.tasks.status.
    """
    PENDING = "pending"
    PAID = "paid"
    HOLD = "hold"


# =============================================================================
# MONTH TOKEN
# =============================================================================

class MonthToken(BaseModel):
    """
    Identifies a calendar month, independent of day.

    Persisted as the first day of the month so that date-range
    queries over generated tasks work without special casing.
    """
    model_config = ConfigDict(frozen=True)

    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)

    @classmethod
    def from_date(cls, value: Union[date, datetime]) -> "MonthToken":
        """Month containing the given date; the day component is ignored."""
        return cls(year=value.year, month=value.month)

    @classmethod
    def parse(cls, text: str) -> "MonthToken":
        """
        Parse "YYYY-MM" or an ISO date "YYYY-MM-DD".

        Raises ValueError on anything else.
        """
        text = text.strip()
        if len(text) == 7:
            year_part, sep, month_part = text.partition("-")
            if sep and year_part.isdigit() and month_part.isdigit():
                return cls(year=int(year_part), month=int(month_part))
            raise ValueError(f"Invalid month token: {text!r}")
        return cls.from_date(date.fromisoformat(text[:10]))

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, self.days_in_month)

    def next(self) -> "MonthToken":
        if self.month == 12:
            return MonthToken(year=self.year + 1, month=1)
        return MonthToken(year=self.year, month=self.month + 1)

    def previous(self) -> "MonthToken":
        if self.month == 1:
            return MonthToken(year=self.year - 1, month=12)
        return MonthToken(year=self.year, month=self.month - 1)

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


# =============================================================================
# FINANCIAL TASK
# =============================================================================

class FinancialTask(BaseModel):
    """
    One month's payable obligation for one recurring expense.

    INVARIANTS:
    - at most one task per (expense_id, generated_at)
    - generated_at is the first day of the month the task belongs to
    - due_date falls inside that same month
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = Field(
        default=None,
        description="Storage identity (None until persisted)"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the task"
    )
    expense_id: int = Field(
        ...,
        ge=1,
        description="Expense this task was generated from (lookup only)"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount snapshotted from the expense at generation time"
    )
    status: TaskStatus = Field(
        default=TaskStatus.PENDING,
        description="Lifecycle state"
    )
    generated_at: date = Field(
        ...,
        description="Month token, stored as the first day of the month"
    )
    due_date: date = Field(
        ...,
        description="Concrete calendar date the payment is due"
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('generated_at')
    @classmethod
    def validate_month_start(cls, v: date) -> date:
        if v.day != 1:
            raise ValueError(
                f"generated_at must be the first day of a month, got {v.isoformat()}"
            )
        return v

    @model_validator(mode='after')
    def validate_due_date_in_month(self) -> 'FinancialTask':
        if (self.due_date.year, self.due_date.month) != (
            self.generated_at.year, self.generated_at.month
        ):
            raise ValueError("Due date must fall in the month the task was generated for")
        return self

    @property
    def month_token(self) -> MonthToken:
        return MonthToken.from_date(self.generated_at)


# =============================================================================
# GENERATION RESULTS
# =============================================================================

class GenerationFailure(BaseModel):
    """A single expense that could not be turned into a task."""

    expense_id: int
    error: str


class GenerationReport(BaseModel):
    """
    Outcome of one generation run for one user and month.

    Only `created` is the engine's return value proper; skipped and failed
    expenses are kept for logging, auditing and callers that want them.
    """

    user_id: str
    month: MonthToken
    created: list[FinancialTask] = Field(default_factory=list)
    skipped_expense_ids: list[int] = Field(
        default_factory=list,
        description="Expenses that already had a task for the month"
    )
    failures: list[GenerationFailure] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


# =============================================================================
# DASHBOARD
# =============================================================================

class DashboardStats(BaseModel):
    """Aggregate view of a user's obligations for one month."""

    user_id: str
    month: MonthToken
    total_monthly_expenses: Decimal = Field(
        ...,
        ge=0,
        description="Sum of all non-archived expense amounts"
    )
    pending_task_count: int = Field(..., ge=0)
    completed_task_count: int = Field(..., ge=0)
    category_count: int = Field(..., ge=0)
