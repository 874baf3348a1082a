"""
Audit Models for fintasks

Every significant action on financial tasks is recorded as an audit event:
generation runs, per-expense failures, status changes (accepted and
rejected) and scheduled runs.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from fintasks.models.task import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Generation
    TASKS_GENERATED = "tasks_generated"
    TASK_GENERATION_FAILED = "task_generation_failed"

    # Status machine
    TASK_STATUS_UPDATED = "task_status_updated"
    TASK_STATUS_REJECTED = "task_status_rejected"

    # Expense definitions
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_ARCHIVED = "expense_archived"

    # Scheduler
    SCHEDULED_RUN_STARTED = "scheduled_run_started"
    SCHEDULED_RUN_COMPLETED = "scheduled_run_completed"
    SCHEDULED_USER_FAILED = "scheduled_user_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - who and what is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="User the event concerns (None for process-wide events)"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'task', 'expense', 'scheduled_run')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one scheduled run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.tasks_generated(user_id, "2025-02", [1, 2], ...)
        event = AuditEventBuilder.task_status_updated(user_id, task_id, "pending", "paid", ...)
    """

    @staticmethod
    def tasks_generated(
        user_id: str,
        month: str,
        created_task_ids: list[int],
        skipped_count: int,
        failed_count: int,
        correlation_id: UUID,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TASKS_GENERATED,
            severity=AuditSeverity.WARNING if failed_count else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="month",
            entity_id=month,
            correlation_id=correlation_id,
            description=(
                f"Generated {len(created_task_ids)} tasks for {month} "
                f"({skipped_count} already existed, {failed_count} failed)"
            ),
            details={
                "created_task_ids": created_task_ids,
                "skipped_count": skipped_count,
                "failed_count": failed_count,
            },
            is_user_action=is_user_action,
        )

    @staticmethod
    def task_generation_failed(
        user_id: str,
        month: str,
        expense_id: int,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TASK_GENERATION_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Could not generate task for expense {expense_id} in {month}",
            details={"month": month},
            error_message=error_message,
        )

    @staticmethod
    def task_status_updated(
        user_id: str,
        task_id: int,
        from_status: str,
        to_status: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TASK_STATUS_UPDATED,
            user_id=user_id,
            entity_type="task",
            entity_id=str(task_id),
            correlation_id=correlation_id,
            description=f"Task {task_id} moved from {from_status} to {to_status}",
            details={
                "from_status": from_status,
                "to_status": to_status,
            },
            is_user_action=True,
        )

    @staticmethod
    def task_status_rejected(
        user_id: str,
        task_id: int,
        requested_status: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TASK_STATUS_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="task",
            entity_id=str(task_id),
            correlation_id=correlation_id,
            description=f"Status change for task {task_id} rejected",
            details={"requested_status": requested_status},
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def expense_changed(
        event_type: AuditEventType,
        user_id: str,
        expense_id: int,
        details: dict,
        correlation_id: UUID,
    ) -> AuditEvent:
        verb = {
            AuditEventType.EXPENSE_CREATED: "created",
            AuditEventType.EXPENSE_UPDATED: "updated",
            AuditEventType.EXPENSE_ARCHIVED: "archived",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense {expense_id} {verb}",
            details=details,
            is_user_action=True,
        )

    @staticmethod
    def scheduled_run_started(
        month: str,
        user_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULED_RUN_STARTED,
            entity_type="scheduled_run",
            entity_id=month,
            correlation_id=correlation_id,
            description=f"Monthly generation started for {month} ({user_count} users)",
            details={"user_count": user_count},
        )

    @staticmethod
    def scheduled_run_completed(
        month: str,
        tasks_created: int,
        failed_users: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULED_RUN_COMPLETED,
            severity=AuditSeverity.WARNING if failed_users else AuditSeverity.INFO,
            entity_type="scheduled_run",
            entity_id=month,
            correlation_id=correlation_id,
            description=f"Monthly generation completed for {month}: {tasks_created} tasks created",
            details={
                "tasks_created": tasks_created,
                "failed_users": failed_users,
            },
        )

    @staticmethod
    def scheduled_user_failed(
        user_id: str,
        month: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULED_USER_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="scheduled_run",
            entity_id=month,
            correlation_id=correlation_id,
            description=f"Monthly generation failed for user {user_id}",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
