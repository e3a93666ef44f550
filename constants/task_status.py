from enum import Enum

class TaskStatus(Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    NEEDS_REVISION = "needs_revision"
    COMPLETED = "completed"

    @classmethod
    def has_value(cls, value):
        return value in [item.value for item in cls]

# Category buckets derived from the canonical statuses
ACTIVE_STATUSES = frozenset({
    TaskStatus.TODO.value,
    TaskStatus.IN_PROGRESS.value,
    TaskStatus.NEEDS_REVISION.value,
})
PENDING_REVIEW_STATUSES = frozenset({TaskStatus.SUBMITTED.value})
COMPLETED_STATUSES = frozenset({TaskStatus.COMPLETED.value})
REMAINING_STATUSES = ACTIVE_STATUSES | PENDING_REVIEW_STATUSES
