"""
Canonical task categorization.

Every view that turns a list of tasks into counts goes through this module, so
the dashboard and the workspace pages (which fetch and filter the same tasks
independently) always agree on what "active", "pending review", "completed"
and "remaining" mean. Divergence between the two is detected with
validate_dashboard_workspace_consistency.

Input handling:
- anything that is not a list/tuple yields the operation's fallback value and
  exactly one logged warning;
- None entries and entries without a string status are skipped;
- status values match exactly (lowercase canonical values only), unknown
  values are left out of every bucket.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Mapping, Optional, TypeVar, Union

from constants.task_status import (
    TaskStatus,
    ACTIVE_STATUSES,
    PENDING_REVIEW_STATUSES,
    COMPLETED_STATUSES,
    REMAINING_STATUSES,
)
from dashboard_schemas import (
    TaskCounts,
    StatusCounts,
    CategorizationValidation,
    CountInconsistency,
    ConsistencyReport,
)

logger = logging.getLogger(__name__)

LOG_PREFIX = "TaskCategorization"

FILTER_OPERATIONS = frozenset({
    "get_active_tasks",
    "get_pending_review_tasks",
    "get_completed_tasks",
    "get_remaining_tasks",
})
COUNT_OPERATIONS = frozenset({"get_task_counts", "get_tasks_by_status"})

# Order in which the dashboard and workspace counts are compared
CONSISTENCY_FIELDS = ("active", "pending_review", "completed", "remaining")
_CAMEL_CASE_KEYS = {"pending_review": "pendingReview"}

T = TypeVar("T")


class CategorizationError(Exception):
    def __init__(self, operation_name: str, message: str):
        self.operation_name = operation_name
        self.message = message
        super().__init__(f"{operation_name}: {message}")


@dataclass(frozen=True)
class CategorizationResult(Generic[T]):
    """Outcome of a categorization operation: either a value or an error."""

    value: Optional[T] = None
    error: Optional[CategorizationError] = None

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value

    def unwrap_or_else(self, fallback: Callable[[CategorizationError], T]) -> T:
        if self.error is not None:
            return fallback(self.error)
        return self.value


def _is_task_collection(tasks: Any) -> bool:
    return isinstance(tasks, (list, tuple))


def task_field(task: Any, name: str) -> Any:
    """Read a field from a task record that may be a mapping or an object."""
    if task is None:
        return None
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def task_status(task: Any) -> Optional[str]:
    """Return the status of a task record, or None if unusable."""
    status = task_field(task, "status")
    return status if isinstance(status, str) else None


def _filter_by_statuses(tasks: Any, statuses: frozenset, operation_name: str) -> List[Any]:
    if not _is_task_collection(tasks):
        logger.warning(f"{LOG_PREFIX}: {operation_name} received non-list input")
        return []
    return [task for task in tasks if task_status(task) in statuses]


def get_active_tasks(tasks: Any) -> List[Any]:
    """Tasks the assignee still has to start, continue or revise."""
    return _filter_by_statuses(tasks, ACTIVE_STATUSES, "get_active_tasks")


def get_pending_review_tasks(tasks: Any) -> List[Any]:
    """Tasks submitted and waiting for the reviewer."""
    return _filter_by_statuses(tasks, PENDING_REVIEW_STATUSES, "get_pending_review_tasks")


def get_completed_tasks(tasks: Any) -> List[Any]:
    return _filter_by_statuses(tasks, COMPLETED_STATUSES, "get_completed_tasks")


def get_remaining_tasks(tasks: Any) -> List[Any]:
    """Every categorized task that is not completed (active plus pending review)."""
    return _filter_by_statuses(tasks, REMAINING_STATUSES, "get_remaining_tasks")


def get_task_counts(tasks: Any) -> TaskCounts:
    """
    Count tasks per category.

    ``total`` is the raw input length, malformed entries included, so it can
    exceed active + pending_review + completed. validate_categorization relies
    on that gap to flag bad data.
    """
    if not _is_task_collection(tasks):
        logger.warning(f"{LOG_PREFIX}: get_task_counts received non-list input")
        return TaskCounts()

    return TaskCounts(
        active=len(get_active_tasks(tasks)),
        pending_review=len(get_pending_review_tasks(tasks)),
        completed=len(get_completed_tasks(tasks)),
        remaining=len(get_remaining_tasks(tasks)),
        total=len(tasks),
    )


def get_tasks_by_status(tasks: Any) -> StatusCounts:
    if not _is_task_collection(tasks):
        logger.warning(f"{LOG_PREFIX}: get_tasks_by_status received non-list input")
        return StatusCounts()

    counts = {status.value: 0 for status in TaskStatus}
    for task in tasks:
        status = task_status(task)
        if status in counts:
            counts[status] += 1
    return StatusCounts(**counts)


def validate_categorization(tasks: Any) -> CategorizationValidation:
    """Check that the category and per-status counts both add up to the total."""
    if not _is_task_collection(tasks):
        logger.warning(f"{LOG_PREFIX}: validate_categorization received non-list input")
        return CategorizationValidation(
            is_valid=False,
            error="Invalid input: tasks must be a list",
        )

    counts = get_task_counts(tasks)
    status_counts = get_tasks_by_status(tasks)

    categorized_total = counts.active + counts.pending_review + counts.completed
    status_total = (
        status_counts.todo
        + status_counts.in_progress
        + status_counts.submitted
        + status_counts.completed
        + status_counts.needs_revision
    )
    is_valid = categorized_total == counts.total and status_total == counts.total

    return CategorizationValidation(
        is_valid=is_valid,
        counts=counts,
        status_counts=status_counts,
        categorized_total=categorized_total,
        status_total=status_total,
        error=None if is_valid else "Task categorization counts do not match total",
    )


def get_fallback_result(operation_name: str) -> Union[List[Any], TaskCounts, StatusCounts, None]:
    if operation_name in FILTER_OPERATIONS:
        return []
    if operation_name == "get_task_counts":
        return TaskCounts()
    if operation_name == "get_tasks_by_status":
        return StatusCounts()
    return None


def categorize(tasks: Any, operation: Callable[[Any], T], operation_name: str) -> CategorizationResult[T]:
    """Run a categorization operation, capturing bad input and failures in the result."""
    if not _is_task_collection(tasks):
        logger.warning(f"{LOG_PREFIX}: {operation_name} received non-list input")
        return CategorizationResult(
            error=CategorizationError(operation_name, "tasks must be a list"),
        )

    try:
        return CategorizationResult(value=operation(tasks))
    except Exception as e:
        return CategorizationResult(error=CategorizationError(operation_name, str(e) or type(e).__name__))


def safe_operation(tasks: Any, operation: Callable[[Any], T], operation_name: str):
    """
    Run ``operation`` and fall back to get_fallback_result(operation_name) on bad
    input or on any exception. Count operations are re-validated afterwards;
    an inconsistency is logged but the result is still returned.
    """
    if not _is_task_collection(tasks):
        logger.warning(f"{LOG_PREFIX}: {operation_name} received non-list input, using fallback")
        return get_fallback_result(operation_name)

    result = categorize(tasks, operation, operation_name)
    if not result.is_ok:
        logger.error(f"{LOG_PREFIX}: Error in {operation_name}: {result.error.message}")
        logger.warning(f"{LOG_PREFIX}: Using fallback logic for {operation_name}")
        return get_fallback_result(operation_name)

    if operation_name in COUNT_OPERATIONS:
        validation = validate_categorization(tasks)
        if not validation.is_valid:
            logger.warning(
                f"{LOG_PREFIX}: Inconsistency detected in {operation_name}: {validation.error} "
                f"(categorized={validation.categorized_total}, by_status={validation.status_total}, "
                f"total={validation.counts.total})"
            )

    return result.value


def _coerce_counts(counts: Any) -> TaskCounts:
    if isinstance(counts, TaskCounts):
        return counts
    if not isinstance(counts, Mapping):
        raise TypeError(f"expected task counts, got {type(counts).__name__}")

    values = {}
    for field in CONSISTENCY_FIELDS + ("total",):
        value = counts.get(field)
        if value is None:
            value = counts.get(_CAMEL_CASE_KEYS.get(field, field))
        if value is None:
            if field == "total":
                continue
            raise ValueError(f"missing count field '{field}'")
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"count field '{field}' must be an integer")
        values[field] = value
    return TaskCounts(**values)


def validate_dashboard_workspace_consistency(dashboard_counts: Any, workspace_counts: Any) -> ConsistencyReport:
    """
    Compare counts computed by the dashboard with counts computed by a
    workspace page. A mismatch is a diagnostic signal, not an error.
    """
    try:
        dashboard = _coerce_counts(dashboard_counts)
        workspace = _coerce_counts(workspace_counts)
    except (TypeError, ValueError) as e:
        logger.warning(f"{LOG_PREFIX}: Cannot compare dashboard and workspace counts: {str(e)}")
        return ConsistencyReport(is_consistent=False, inconsistencies=[], error=str(e))

    inconsistencies = []
    for field in CONSISTENCY_FIELDS:
        dashboard_value = getattr(dashboard, field)
        workspace_value = getattr(workspace, field)
        if dashboard_value != workspace_value:
            inconsistencies.append(CountInconsistency(
                field=field,
                dashboard=dashboard_value,
                workspace=workspace_value,
                difference=dashboard_value - workspace_value,
            ))

    is_consistent = not inconsistencies
    if not is_consistent:
        logger.warning(
            f"{LOG_PREFIX}: Dashboard-Workspace count inconsistencies detected: "
            f"{[item.model_dump() for item in inconsistencies]}"
        )

    return ConsistencyReport(
        is_consistent=is_consistent,
        inconsistencies=inconsistencies,
        dashboard_counts=dashboard,
        workspace_counts=workspace,
    )
