"""
Task status transitions.

    todo -> in_progress -> submitted -> completed
                              |  ^
                              v  |
                         needs_revision

submitted_at, completed_at and reviewed_at are stamped the first time a task
enters the matching state and are never overwritten afterwards.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from constants.task_status import TaskStatus
from services.statistics_cache import utcnow

logger = logging.getLogger(__name__)

TRANSITIONS = {
    TaskStatus.TODO.value: {TaskStatus.IN_PROGRESS.value},
    TaskStatus.IN_PROGRESS.value: {TaskStatus.SUBMITTED.value},
    TaskStatus.NEEDS_REVISION.value: {TaskStatus.SUBMITTED.value},
    TaskStatus.SUBMITTED.value: {TaskStatus.COMPLETED.value, TaskStatus.NEEDS_REVISION.value},
    TaskStatus.COMPLETED.value: set(),
}

NEXT_STATUS = {
    TaskStatus.TODO.value: TaskStatus.IN_PROGRESS.value,
    TaskStatus.IN_PROGRESS.value: TaskStatus.SUBMITTED.value,
    TaskStatus.NEEDS_REVISION.value: TaskStatus.SUBMITTED.value,
    TaskStatus.SUBMITTED.value: TaskStatus.SUBMITTED.value,
    TaskStatus.COMPLETED.value: TaskStatus.COMPLETED.value,
}


class InvalidTransitionError(Exception):
    pass


def next_status(current_status: str) -> str:
    """Status the assignee's "advance" action moves a task to."""
    return NEXT_STATUS.get(current_status, TaskStatus.TODO.value)


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in TRANSITIONS.get(current_status, set())


def apply_transition(
    task: Any,
    new_status: str,
    now: Optional[datetime] = None,
    review_comments: Optional[str] = None,
    reviewed_by: Optional[int] = None,
):
    if not TaskStatus.has_value(new_status):
        valid_statuses = [status.value for status in TaskStatus]
        raise InvalidTransitionError(f"Invalid status. Must be one of: {valid_statuses}")

    current_status = task.status
    if not can_transition(current_status, new_status):
        raise InvalidTransitionError(f"Cannot change task status from '{current_status}' to '{new_status}'")

    comments = review_comments.strip() if review_comments else None
    if new_status == TaskStatus.NEEDS_REVISION.value and not comments:
        raise InvalidTransitionError("Review comments are required when requesting a revision")

    now = now or utcnow()
    task.status = new_status
    task.updated_at = now

    if new_status == TaskStatus.SUBMITTED.value and task.submitted_at is None:
        task.submitted_at = now

    if current_status == TaskStatus.SUBMITTED.value:
        if task.reviewed_at is None:
            task.reviewed_at = now
        task.reviewed_by = reviewed_by
        if comments:
            task.review_comments = comments

    if new_status == TaskStatus.COMPLETED.value and task.completed_at is None:
        task.completed_at = now

    logger.info(f"Task {task.id} moved from {current_status} to {new_status}")
    return task
