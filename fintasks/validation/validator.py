"""
Input Validation

DESIGN DECISION: Malformed input is rejected before any persistence
attempt. Expense definitions go through a field-by-field check that
collects every issue instead of stopping at the first one, so a caller
can report all problems at once.

Issues come in three severities:
- error: blocks the operation
- warning: suspicious but allowed (e.g. an unusually large amount)
- info: worth knowing (e.g. a due day that clamps in short months)

IMPORTANT: Validation NEVER silently fixes issues.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from fintasks.config import get_settings
from fintasks.config.settings import AppSettings
from fintasks.models.expense import (
    Expense,
    ExpenseType,
    ValidationIssue,
    ValidationResult,
)
from fintasks.models.task import MonthToken


class InputValidationError(ValueError):
    """Input rejected before reaching storage."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []


def _error(field: str, issue_type: str, message: str) -> ValidationIssue:
    return ValidationIssue(field=field, issue_type=issue_type, message=message, severity="error")


class ExpenseValidator:
    """Validates expense definitions before they are stored."""

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _check_amount(self, amount: Any, issues: list[ValidationIssue]) -> Optional[Decimal]:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            issues.append(_error("amount", "invalid_format", f"Amount is not a number: {amount!r}"))
            return None

        if not value.is_finite():
            issues.append(_error("amount", "invalid_format", f"Amount is not a number: {amount!r}"))
            return None
        if value <= 0:
            issues.append(_error("amount", "invalid_value", "Amount must be greater than zero"))
            return None
        if value.as_tuple().exponent < -2:
            issues.append(_error(
                "amount", "invalid_value", f"Amount has more than two decimal places: {value}"
            ))
            return None

        if value > Decimal(str(self._settings.max_expense_amount)):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({value:,.2f}) seems unusually high",
                severity="warning",
            ))
        return value.quantize(Decimal("0.01"))

    def _check_due_day(self, due_day: Any, issues: list[ValidationIssue]) -> Optional[int]:
        if isinstance(due_day, bool) or not isinstance(due_day, int):
            try:
                due_day = int(str(due_day))
            except ValueError:
                issues.append(_error("due_day", "invalid_format", f"Due day is not a whole number: {due_day!r}"))
                return None

        if not 1 <= due_day <= 31:
            issues.append(_error("due_day", "invalid_value", "Due day must be between 1 and 31"))
            return None

        if due_day > 28:
            issues.append(ValidationIssue(
                field="due_day",
                issue_type="clamped_in_short_months",
                message=f"Due day {due_day} falls on the last day in shorter months",
                severity="info",
            ))
        return due_day

    def validate(
        self,
        name: Any,
        amount: Any,
        due_day: Any,
        expense_type: Any,
        currency: Any = None,
    ) -> ValidationResult:
        """Check every field of an expense definition."""
        issues: list[ValidationIssue] = []

        if not isinstance(name, str) or not name.strip():
            issues.append(_error("name", "missing", "Name is required"))
        elif len(name.strip()) > 200:
            issues.append(_error("name", "invalid_value", "Name is longer than 200 characters"))

        self._check_amount(amount, issues)
        self._check_due_day(due_day, issues)

        valid_types = {t.value for t in ExpenseType}
        type_value = expense_type.value if isinstance(expense_type, ExpenseType) else expense_type
        if type_value not in valid_types:
            issues.append(_error(
                "type", "invalid_value",
                f"Type must be one of {sorted(valid_types)}, got: {expense_type!r}"
            ))

        if currency is not None and (
            not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha()
        ):
            issues.append(_error("currency", "invalid_format", f"Currency must be a 3-letter code, got: {currency!r}"))

        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def build_expense(
        self,
        user_id: str,
        name: str,
        amount: Any,
        due_day: Any,
        expense_type: Any,
        currency: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> Expense:
        """
        Validate and construct an Expense ready for storage.

        Raises:
            InputValidationError: If any field has an error-level issue
        """
        result = self.validate(name, amount, due_day, expense_type, currency)
        raise_for_errors(result, "Invalid expense")

        return Expense(
            user_id=user_id,
            name=name,
            amount=Decimal(str(amount)).quantize(Decimal("0.01")),
            currency=currency or self._settings.default_currency,
            type=ExpenseType(expense_type),
            category_id=category_id,
            due_day=int(due_day),
        )

    def validate_update(
        self,
        amount: Any = None,
        due_day: Any = None,
    ) -> tuple[Optional[Decimal], Optional[int]]:
        """
        Validate the fields of a partial update.

        Returns:
            (amount, due_day) normalized, None where not supplied

        Raises:
            InputValidationError: If a supplied field is invalid
        """
        issues: list[ValidationIssue] = []
        new_amount = self._check_amount(amount, issues) if amount is not None else None
        new_due_day = self._check_due_day(due_day, issues) if due_day is not None else None
        raise_for_errors(
            ValidationResult(
                is_valid=not any(i.severity == "error" for i in issues),
                issues=issues,
            ),
            "Invalid expense update",
        )
        return new_amount, new_due_day


def raise_for_errors(result: ValidationResult, context: str) -> None:
    """Raise InputValidationError listing every error-level issue in result."""
    if not result.has_errors:
        return
    errors = [issue for issue in result.issues if issue.severity == "error"]
    summary = "; ".join(issue.message for issue in errors)
    raise InputValidationError(f"{context}: {summary}", issues=errors)


def parse_target_month(value: Union[MonthToken, date, datetime, str, None]) -> MonthToken:
    """
    Turn a caller-supplied target month into a MonthToken.

    Accepts a MonthToken, a date or datetime (day ignored), "YYYY-MM",
    or an ISO date string.

    Raises:
        InputValidationError: If the value is missing or malformed
    """
    if value is None or value == "":
        raise InputValidationError(
            "Target month is required",
            issues=[_error("target_month", "missing", "Target month is required")],
        )
    if isinstance(value, MonthToken):
        return value
    if isinstance(value, (date, datetime)):
        return MonthToken.from_date(value)
    if isinstance(value, str):
        try:
            return MonthToken.parse(value)
        except ValueError:
            pass
    message = f"Target month must look like YYYY-MM, got: {value!r}"
    raise InputValidationError(
        message,
        issues=[_error("target_month", "invalid_format", message)],
    )


def parse_month_window(
    month: Union[int, str, None],
    year: Union[int, str, None],
) -> Optional[MonthToken]:
    """
    Interpret the optional month/year filter of a task listing.

    Returns None when neither is given. Both must be given together.

    Raises:
        InputValidationError: If only one is given or either is out of range
    """
    if month in (None, "") and year in (None, ""):
        return None
    if month in (None, "") or year in (None, ""):
        message = "Month and year must be given together"
        raise InputValidationError(message, issues=[_error("month", "missing", message)])

    try:
        return MonthToken(year=int(year), month=int(month))
    except ValueError as e:
        message = f"Invalid month/year: {month!r}/{year!r}"
        raise InputValidationError(
            message,
            issues=[_error("month", "invalid_value", message)],
        ) from e
