"""
Audit Logger

DESIGN DECISION: Every significant action on tasks is logged.
This provides:
1. Traceability of who generated or paid what, and when
2. Debugging capability for scheduled runs nobody watched
3. A per-run correlation id linking all events of one invocation

The audit logger:
- Is async so persistence can await storage
- Gracefully handles failures (a failed audit write never fails the action)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from fintasks.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from fintasks.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog's stdlib loggers to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("fintasks.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_tasks_generated(
        self,
        user_id: str,
        month: str,
        created_task_ids: list[int],
        skipped_count: int,
        failed_count: int,
        correlation_id: UUID,
        is_user_action: bool = True,
    ) -> None:
        """Log the outcome of one generation invocation."""
        event = AuditEventBuilder.tasks_generated(
            user_id=user_id,
            month=month,
            created_task_ids=created_task_ids,
            skipped_count=skipped_count,
            failed_count=failed_count,
            correlation_id=correlation_id,
            is_user_action=is_user_action,
        )
        await self.log(event)

    async def log_task_generation_failed(
        self,
        user_id: str,
        month: str,
        expense_id: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a single expense that could not be turned into a task."""
        event = AuditEventBuilder.task_generation_failed(
            user_id=user_id,
            month=month,
            expense_id=expense_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_task_status_updated(
        self,
        user_id: str,
        task_id: int,
        from_status: str,
        to_status: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.task_status_updated(
            user_id=user_id,
            task_id=task_id,
            from_status=from_status,
            to_status=to_status,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_task_status_rejected(
        self,
        user_id: str,
        task_id: int,
        requested_status: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.task_status_rejected(
            user_id=user_id,
            task_id=task_id,
            requested_status=requested_status,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_expense_changed(
        self,
        event_type: AuditEventType,
        user_id: str,
        expense_id: int,
        details: dict,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.expense_changed(
            event_type=event_type,
            user_id=user_id,
            expense_id=expense_id,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_scheduled_run_started(
        self,
        month: str,
        user_count: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.scheduled_run_started(
            month=month,
            user_count=user_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_scheduled_run_completed(
        self,
        month: str,
        tasks_created: int,
        failed_users: list[str],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.scheduled_run_completed(
            month=month,
            tasks_created=tasks_created,
            failed_users=failed_users,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_scheduled_user_failed(
        self,
        user_id: str,
        month: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.scheduled_user_failed(
            user_id=user_id,
            month=month,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action or scheduled run.
    Pass it through all subsequent operations.
    """
    return uuid4()
