"""
Command Line Interface for fintasks

The operator- and script-facing entry point. Every command prints JSON
on stdout; failures print a message on stderr and exit with status 1.

DESIGN PRINCIPLES:
1. One command per service operation, no hidden side effects
2. Every user-scoped command takes --user
3. This is the only layer that reads the wall clock: "current month"
   and "today" defaults are resolved here and passed down explicitly
"""

import asyncio
import json
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional

import click

from fintasks.audit import configure_logging
from fintasks.config import get_settings, validate_all_settings
from fintasks.models.expense import ExpenseType
from fintasks.models.task import MonthToken
from fintasks.orchestrator import FinancialTaskService, create_app_components, total_amount
from fintasks.services.storage import StorageError
from fintasks.tasks import TaskStatusError
from fintasks.validation import InputValidationError


USER_ERRORS = (InputValidationError, TaskStatusError, StorageError)

user_option = click.option(
    "--user",
    "user_id",
    required=True,
    envvar="FINTASKS_USER",
    help="User the command acts for.",
)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _run(ctx: click.Context, action: Callable[[FinancialTaskService], Awaitable[Any]]) -> Any:
    """Build the components, ensure the schema, run action, clean up."""

    async def _main() -> Any:
        service, _, database = create_app_components(database_url=ctx.obj["database_url"])
        try:
            await database.create_schema()
            return await action(service)
        finally:
            await database.dispose()

    try:
        return asyncio.run(_main())
    except USER_ERRORS as e:
        raise click.ClickException(str(e)) from e


def _month_dict(value: dict, month: MonthToken) -> dict:
    value["month"] = str(month)
    return value


@click.group()
@click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy async URL; overrides FINTASKS_DB_URL.",
)
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str]) -> None:
    """Generate and track monthly financial tasks from recurring expenses."""
    configure_logging(get_settings().app.log_level)
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create any missing tables."""

    async def action(service: FinancialTaskService) -> None:
        return None

    _run(ctx, action)
    _echo_json({"status": "ok"})


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Load every settings group and report which ones are invalid."""
    results = validate_all_settings()
    _echo_json(results)
    if not all(value for key, value in results.items() if not key.endswith("_error")):
        ctx.exit(1)


# =============================================================================
# CATEGORIES
# =============================================================================

@cli.group()
def category() -> None:
    """Manage expense categories."""


@category.command("add")
@user_option
@click.option("--name", required=True)
@click.option("--type", "category_type", required=True, help="Free-form grouping, e.g. bills.")
@click.pass_context
def category_add(ctx: click.Context, user_id: str, name: str, category_type: str) -> None:
    created = _run(ctx, lambda service: service.add_category(user_id, name, category_type))
    _echo_json(created.model_dump(mode="json"))


@category.command("list")
@user_option
@click.pass_context
def category_list(ctx: click.Context, user_id: str) -> None:
    found = _run(ctx, lambda service: service.list_categories(user_id))
    _echo_json([c.model_dump(mode="json") for c in found])


# =============================================================================
# EXPENSES
# =============================================================================

@cli.group()
def expense() -> None:
    """Manage expense definitions."""


@expense.command("add")
@user_option
@click.option("--name", required=True)
@click.option("--amount", required=True, help="Amount per occurrence, e.g. 15.99.")
@click.option("--due-day", required=True, type=int, help="Day of month, 1-31.")
@click.option(
    "--type",
    "expense_type",
    type=click.Choice([t.value for t in ExpenseType]),
    default=ExpenseType.RECURRING.value,
    show_default=True,
)
@click.option("--currency", default=None)
@click.option("--category-id", type=int, default=None)
@click.pass_context
def expense_add(
    ctx: click.Context,
    user_id: str,
    name: str,
    amount: str,
    due_day: int,
    expense_type: str,
    currency: Optional[str],
    category_id: Optional[int],
) -> None:
    created = _run(ctx, lambda service: service.add_expense(
        user_id=user_id,
        name=name,
        amount=amount,
        due_day=due_day,
        expense_type=expense_type,
        currency=currency,
        category_id=category_id,
    ))
    _echo_json(created.model_dump(mode="json"))


@expense.command("list")
@user_option
@click.pass_context
def expense_list(ctx: click.Context, user_id: str) -> None:
    found = _run(ctx, lambda service: service.list_expenses(user_id))
    _echo_json([e.model_dump(mode="json") for e in found])


@expense.command("update")
@user_option
@click.argument("expense_id", type=int)
@click.option("--amount", default=None)
@click.option("--due-day", type=int, default=None)
@click.option("--name", default=None)
@click.pass_context
def expense_update(
    ctx: click.Context,
    user_id: str,
    expense_id: int,
    amount: Optional[str],
    due_day: Optional[int],
    name: Optional[str],
) -> None:
    """Change an expense. Tasks already generated keep their values."""
    if amount is None and due_day is None and name is None:
        raise click.UsageError("Nothing to update: pass --amount, --due-day or --name")
    updated = _run(ctx, lambda service: service.update_expense(
        user_id, expense_id, amount=amount, due_day=due_day, name=name
    ))
    _echo_json(updated.model_dump(mode="json"))


@expense.command("archive")
@user_option
@click.argument("expense_id", type=int)
@click.pass_context
def expense_archive(ctx: click.Context, user_id: str, expense_id: int) -> None:
    """Stop an expense from generating future tasks."""
    archived = _run(ctx, lambda service: service.archive_expense(user_id, expense_id))
    _echo_json(archived.model_dump(mode="json"))


# =============================================================================
# TASKS
# =============================================================================

@cli.group()
def tasks() -> None:
    """Generate, list and update financial tasks."""


@tasks.command("generate")
@user_option
@click.option("--month", "target_month", default=None, help="YYYY-MM; defaults to the current month.")
@click.pass_context
def tasks_generate(ctx: click.Context, user_id: str, target_month: Optional[str]) -> None:
    """Create this month's tasks for the user's recurring expenses."""
    month = target_month or str(MonthToken.from_date(date.today()))
    report = _run(ctx, lambda service: service.generate_tasks_report(user_id, month))
    _echo_json(_month_dict(report.model_dump(mode="json"), report.month))


@tasks.command("list")
@user_option
@click.option("--month", type=int, default=None, help="1-12; requires --year.")
@click.option("--year", type=int, default=None, help="Requires --month.")
@click.pass_context
def tasks_list(ctx: click.Context, user_id: str, month: Optional[int], year: Optional[int]) -> None:
    found = _run(ctx, lambda service: service.list_tasks(user_id, month=month, year=year))
    _echo_json({
        "count": len(found),
        "total_amount": str(total_amount(found)),
        "tasks": [t.model_dump(mode="json") for t in found],
    })


@tasks.command("status")
@user_option
@click.argument("task_id", type=int)
@click.argument("status")
@click.pass_context
def tasks_status(ctx: click.Context, user_id: str, task_id: int, status: str) -> None:
    """Move a task to STATUS (pending, paid or hold)."""
    updated = _run(ctx, lambda service: service.update_task_status(user_id, task_id, status))
    _echo_json(updated.model_dump(mode="json"))


@cli.command("stats")
@user_option
@click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="YYYY-MM-DD; defaults to today.",
)
@click.pass_context
def stats(ctx: click.Context, user_id: str, as_of: Optional[datetime]) -> None:
    """Dashboard numbers for the month containing --as-of."""
    day = as_of.date() if as_of else date.today()
    result = _run(ctx, lambda service: service.get_dashboard_stats(user_id, day))
    _echo_json(_month_dict(result.model_dump(mode="json"), result.month))


# =============================================================================
# SCHEDULER
# =============================================================================

@cli.group()
def scheduler() -> None:
    """Run the monthly generation trigger."""


@scheduler.command("run-once")
@click.pass_context
def scheduler_run_once(ctx: click.Context) -> None:
    """Generate the current month for every user, then exit."""

    async def _main():
        _, monthly, database = create_app_components(database_url=ctx.obj["database_url"])
        try:
            await database.create_schema()
            return await monthly.run_once(datetime.now())
        finally:
            await database.dispose()

    try:
        summary = asyncio.run(_main())
    except StorageError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(_month_dict(summary.model_dump(mode="json"), summary.month))


@scheduler.command("run")
@click.pass_context
def scheduler_run(ctx: click.Context) -> None:
    """Run the trigger in the foreground until interrupted."""

    async def _main() -> bool:
        _, monthly, database = create_app_components(database_url=ctx.obj["database_url"])
        try:
            await database.create_schema()
            task = monthly.start()
            if task is None:
                return False
            click.echo(json.dumps({"status": "running", "next_run": monthly.next_run().isoformat()}))
            await task
            return True
        finally:
            await monthly.stop()
            await database.dispose()

    try:
        started = asyncio.run(_main())
    except KeyboardInterrupt:
        started = True
    except StorageError as e:
        raise click.ClickException(str(e)) from e

    if not started:
        _echo_json({"status": "disabled"})


if __name__ == "__main__":
    cli()
