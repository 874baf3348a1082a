"""Input validation package."""

from fintasks.validation.validator import (
    ExpenseValidator,
    InputValidationError,
    parse_month_window,
    parse_target_month,
    raise_for_errors,
)

__all__ = [
    "ExpenseValidator",
    "InputValidationError",
    "parse_month_window",
    "parse_target_month",
    "raise_for_errors",
]
