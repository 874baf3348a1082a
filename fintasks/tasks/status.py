"""
Task Status Machine

    pending --> paid
    pending --> hold
    hold    --> paid

paid is terminal. Every other edge, including a no-op to the same
status, is rejected. Holds never expire on their own.

The update is a compare-and-swap against the status that was checked,
so two concurrent requests cannot both move the same task out of the
same state.
"""

from typing import Union

from fintasks.models.task import FinancialTask, TaskStatus
from fintasks.services.storage import (
    ConcurrentModificationError,
    NotFoundError,
    TaskRepositoryInterface,
)


ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PAID, TaskStatus.HOLD}),
    TaskStatus.HOLD: frozenset({TaskStatus.PAID}),
    TaskStatus.PAID: frozenset(),
}


class TaskStatusError(Exception):
    """Base exception for rejected status changes."""
    pass


class InvalidStatusError(TaskStatusError):
    """The requested status is not one of the known states."""

    def __init__(self, value: object):
        allowed = ", ".join(status.value for status in TaskStatus)
        super().__init__(f"Invalid status {value!r}; expected one of: {allowed}")
        self.value = value


class InvalidTransitionError(TaskStatusError):
    """The requested edge is not allowed from the task's current status."""

    def __init__(self, current: TaskStatus, target: TaskStatus):
        super().__init__(f"Cannot move task from {current.value} to {target.value}")
        self.current = current
        self.target = target


def parse_status(value: Union[TaskStatus, str]) -> TaskStatus:
    """
    Map a caller-supplied status onto TaskStatus.

    Raises:
        InvalidStatusError: For anything but the exact lowercase literals
    """
    if isinstance(value, TaskStatus):
        return value
    if isinstance(value, str):
        try:
            return TaskStatus(value)
        except ValueError:
            pass
    raise InvalidStatusError(value)


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class TaskStatusMachine:
    """Validates and applies task status changes."""

    def __init__(self, task_repository: TaskRepositoryInterface):
        self._tasks = task_repository

    async def apply_status(
        self,
        task_id: int,
        user_id: str,
        target_status: Union[TaskStatus, str],
    ) -> FinancialTask:
        """
        Move a task to target_status.

        A failed attempt leaves the stored status unchanged.

        Returns:
            The updated task

        Raises:
            InvalidStatusError: If target_status is not a known status
            NotFoundError: If no task matches task_id for user_id
            InvalidTransitionError: If the edge is not allowed
        """
        _, updated = await self.transition(task_id, user_id, target_status)
        return updated

    async def transition(
        self,
        task_id: int,
        user_id: str,
        target_status: Union[TaskStatus, str],
    ) -> tuple[TaskStatus, FinancialTask]:
        """Same as apply_status, but also returns the status the task left."""
        target = parse_status(target_status)

        task = await self._tasks.get_task(task_id, user_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")

        if not can_transition(task.status, target):
            raise InvalidTransitionError(task.status, target)

        try:
            updated = await self._tasks.update_status(
                task_id,
                user_id,
                target,
                expected_status=task.status,
            )
        except ConcurrentModificationError as e:
            # Someone else moved the task between our read and our write
            raise InvalidTransitionError(e.current_status or task.status, target) from e
        return task.status, updated
