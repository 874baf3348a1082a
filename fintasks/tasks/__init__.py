"""Monthly task engine: generation, status machine and dashboard stats."""

from fintasks.tasks.dates import clamp_due_day, compute_due_date, days_in_month
from fintasks.tasks.generation import TaskGenerationEngine, build_task
from fintasks.tasks.stats import StatsAggregator
from fintasks.tasks.status import (
    ALLOWED_TRANSITIONS,
    InvalidStatusError,
    InvalidTransitionError,
    TaskStatusError,
    TaskStatusMachine,
    can_transition,
    parse_status,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidStatusError",
    "InvalidTransitionError",
    "StatsAggregator",
    "TaskGenerationEngine",
    "TaskStatusError",
    "TaskStatusMachine",
    "build_task",
    "can_transition",
    "clamp_due_day",
    "compute_due_date",
    "days_in_month",
    "parse_status",
]
