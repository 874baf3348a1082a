"""
Expense and Category Models

Expenses are the user's obligation definitions. They are owned by the
expense store; the task engine only reads them.

DESIGN DECISION: amount is a Decimal with two places.
Money never passes through float inside the domain.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from fintasks.models.task import utc_now


MIN_DUE_DAY = 1
MAX_DUE_DAY = 31


class ExpenseType(str, Enum):
    """Whether an expense repeats every month or happens once."""
    RECURRING = "recurring"
    ONE_TIME = "one-time"


class Expense(BaseModel):
    """
    A user-defined obligation.

    Only non-archived RECURRING expenses take part in task generation.
    due_day is a day of month (1-31); months shorter than due_day clamp
    to their last day when a task is generated.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = Field(
        default=None,
        description="Storage identity (None until persisted)"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the expense"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="What the expense is for"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount due each occurrence"
    )
    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code"
    )
    type: ExpenseType = Field(
        ...,
        description="Recurring or one-time"
    )
    category_id: Optional[int] = None
    due_day: int = Field(
        ...,
        ge=MIN_DUE_DAY,
        le=MAX_DUE_DAY,
        description="Day of month the payment is due"
    )
    is_archived: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError(f"Currency must be a 3-letter code, got: {v}")
        return v.upper()

    @property
    def generates_tasks(self) -> bool:
        return self.type == ExpenseType.RECURRING and not self.is_archived


class Category(BaseModel):
    """A user-owned label for grouping expenses."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Free-form grouping (e.g. 'bills', 'subscriptions')"
    )
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of validating an expense definition or request."""

    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
