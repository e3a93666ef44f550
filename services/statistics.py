"""
User statistics for the dashboard.

StatisticsAggregator builds a UserStatistics snapshot for one user from the
task data source: task counts per time window with a daily trend, efficiency
metrics and productivity score, workspace participation, and achievements.
All status-based filtering goes through services.task_categorization.
"""

import asyncio
import logging
import math
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from config import (
    STATS_TREND_DAYS,
    STATS_WEEK_START,
    ON_TIME_THRESHOLD_DAYS,
    SPEED_REFERENCE_HOURS,
    BADGE_COMPLETION_MILESTONES,
    QUALITY_BADGE_MIN_COMPLETED,
    QUALITY_BADGE_MAX_REVISION_RATE,
)
from constants.badges import completion_badge, quality_badge
from constants.task_status import TaskStatus
from dashboard_schemas import (
    Achievements,
    Badge,
    EfficiencyMetrics,
    TaskMetrics,
    TaskWindowStats,
    TrendPoint,
    UserStatistics,
    WorkspaceActivity,
    WorkspaceStats,
    StatusCounts,
)
from services.data_source import DataSourceUnavailableError, TaskDataSource
from services.statistics_cache import StatisticsCache, utcnow
from services.task_categorization import (
    categorize,
    get_completed_tasks,
    get_task_counts,
    get_tasks_by_status,
    task_field,
    task_status,
    validate_categorization,
)

logger = logging.getLogger(__name__)

# Productivity score weights
COMPLETION_WEIGHT = 0.30
SPEED_WEIGHT = 0.25
TIMELINESS_WEIGHT = 0.25
QUALITY_WEIGHT = 0.20

# Completions inside this many days count towards the current streak
CURRENT_STREAK_WINDOW_DAYS = 7

REVIEWED_STATUSES = frozenset({TaskStatus.COMPLETED.value, TaskStatus.NEEDS_REVISION.value})


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentage(part: int, whole: int) -> int:
    return round_half_up(part / whole * 100) if whole > 0 else 0


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utc_date(moment: Optional[datetime]) -> Optional[date]:
    moment = as_utc(moment)
    return moment.date() if moment is not None else None


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime, first_weekday: int = STATS_WEEK_START) -> datetime:
    days_back = (now.weekday() - first_weekday) % 7
    return start_of_day(now) - timedelta(days=days_back)


def month_start(now: datetime) -> datetime:
    return start_of_day(now).replace(day=1)


def tasks_created_since(tasks: Sequence[Any], since: datetime) -> List[Any]:
    created_since = []
    for task in tasks:
        created_at = as_utc(task_field(task, "created_at"))
        if created_at is not None and created_at >= since:
            created_since.append(task)
    return created_since


# Task metrics

def calculate_task_stats(tasks: Sequence[Any]) -> TaskWindowStats:
    counts_result = categorize(tasks, get_task_counts, "get_task_counts")
    status_result = categorize(tasks, get_tasks_by_status, "get_tasks_by_status")

    if not counts_result.is_ok or not status_result.is_ok:
        error = counts_result.error or status_result.error
        logger.error(f"StatisticsService: Error calculating task stats: {error}")
        logger.warning("StatisticsService: Using fallback task stats calculation")
        return fallback_task_stats(tasks)

    counts = counts_result.value
    validation = validate_categorization(tasks)
    if not validation.is_valid:
        logger.warning(f"StatisticsService: Task categorization validation failed: {validation.error}")

    return TaskWindowStats(
        total=counts.total,
        completed=counts.completed,
        remaining=counts.remaining,
        completion_rate=percentage(counts.completed, counts.total),
        active=counts.active,
        pending_review=counts.pending_review,
        by_status=status_result.value,
    )


def fallback_task_stats(tasks: Any) -> TaskWindowStats:
    """Count by direct status comparison, without the categorizer."""
    if not isinstance(tasks, (list, tuple)):
        return TaskWindowStats()

    by_status = {status.value: 0 for status in TaskStatus}
    for task in tasks:
        status = task_field(task, "status")
        if isinstance(status, str) and status in by_status:
            by_status[status] += 1

    total = len(tasks)
    completed = by_status[TaskStatus.COMPLETED.value]
    active = (
        by_status[TaskStatus.TODO.value]
        + by_status[TaskStatus.IN_PROGRESS.value]
        + by_status[TaskStatus.NEEDS_REVISION.value]
    )
    pending_review = by_status[TaskStatus.SUBMITTED.value]

    return TaskWindowStats(
        total=total,
        completed=completed,
        remaining=active + pending_review,
        completion_rate=percentage(completed, total),
        active=active,
        pending_review=pending_review,
        by_status=StatusCounts(**by_status),
    )


def build_task_trend(tasks: Sequence[Any], today: date, days: int = STATS_TREND_DAYS) -> List[TrendPoint]:
    """
    One point per calendar day, oldest first, ending today. Creation and
    completion are each counted on their own day.
    """
    first_day = today - timedelta(days=days - 1)
    created = OrderedDict((first_day + timedelta(days=offset), 0) for offset in range(days))
    completed = dict.fromkeys(created, 0)

    for task in tasks:
        created_day = utc_date(task_field(task, "created_at"))
        if created_day in created:
            created[created_day] += 1

    for task in get_completed_tasks(tasks):
        completed_day = utc_date(task_field(task, "completed_at"))
        if completed_day in completed:
            completed[completed_day] += 1

    return [
        TrendPoint(date=day, created=created_count, completed=completed[day])
        for day, created_count in created.items()
    ]


# Efficiency metrics

def has_review_comments(task: Any) -> bool:
    comments = task_field(task, "review_comments")
    return isinstance(comments, str) and bool(comments.strip())


def calculate_revision_rate(tasks: Sequence[Any]) -> int:
    """Share of reviewed tasks (completed or needs_revision) that were sent back."""
    reviewed = [task for task in tasks if task_status(task) in REVIEWED_STATUSES]
    revised = [
        task for task in reviewed
        if task_status(task) == TaskStatus.NEEDS_REVISION.value or has_review_comments(task)
    ]
    return percentage(len(revised), len(reviewed))


def needs_revision_share(tasks: Sequence[Any]) -> float:
    """Unrounded percentage of all tasks currently sent back for revision."""
    if not tasks:
        return 0.0
    needs_revision = sum(1 for task in tasks if task_status(task) == TaskStatus.NEEDS_REVISION.value)
    return needs_revision / len(tasks) * 100


def calculate_productivity_score(
    completion_rate: float,
    avg_completion_time_hours: float,
    on_time_rate: float,
    revision_rate: float,
    speed_reference_hours: float = SPEED_REFERENCE_HOURS,
) -> int:
    speed_score = max(0, 100 - (avg_completion_time_hours / speed_reference_hours) * 100)
    quality_score = max(0, 100 - revision_rate)

    score = (
        completion_rate * COMPLETION_WEIGHT
        + speed_score * SPEED_WEIGHT
        + on_time_rate * TIMELINESS_WEIGHT
        + quality_score * QUALITY_WEIGHT
    )
    return round_half_up(min(100, max(0, score)))


def calculate_efficiency_metrics(tasks: Sequence[Any]) -> EfficiencyMetrics:
    completed = [
        task for task in get_completed_tasks(tasks)
        if task_field(task, "completed_at") is not None and task_field(task, "created_at") is not None
    ]
    if not completed:
        return EfficiencyMetrics()

    completion_hours = [
        (as_utc(task_field(task, "completed_at")) - as_utc(task_field(task, "created_at"))).total_seconds() / 3600
        for task in completed
    ]
    avg_completion_time = sum(completion_hours) / len(completion_hours)

    on_time_limit = ON_TIME_THRESHOLD_DAYS * 24
    on_time_rate = percentage(sum(1 for hours in completion_hours if hours <= on_time_limit), len(completed))
    revision_rate = calculate_revision_rate(tasks)

    productivity_score = calculate_productivity_score(
        completion_rate=100,  # every task considered here is completed
        avg_completion_time_hours=avg_completion_time,
        on_time_rate=on_time_rate,
        revision_rate=revision_rate,
    )

    return EfficiencyMetrics(
        avg_completion_time_hours=round(avg_completion_time, 1),
        on_time_rate=on_time_rate,
        revision_rate=revision_rate,
        productivity_score=productivity_score,
        total_completed=len(completed),
    )


# Workspace participation

def calculate_task_distribution(tasks: Sequence[Any]) -> List[WorkspaceActivity]:
    distribution = OrderedDict()
    for task in tasks:
        workspace_id = task_field(task, "workspace_id")
        if workspace_id is None:
            continue
        if workspace_id not in distribution:
            distribution[workspace_id] = WorkspaceActivity(
                id=workspace_id,
                name=task_field(task, "workspace_name") or "Unknown",
            )
        entry = distribution[workspace_id]
        entry.task_count += 1
        if task_status(task) == TaskStatus.COMPLETED.value:
            entry.completed_count += 1
    return list(distribution.values())


def most_active_workspace(distribution: Iterable[WorkspaceActivity]) -> Optional[WorkspaceActivity]:
    # Highest task count wins, ties go to the lowest workspace id
    return min(distribution, key=lambda workspace: (-workspace.task_count, workspace.id), default=None)


# Achievements

def calculate_badges(
    all_tasks: Sequence[Any],
    completed_tasks: Sequence[Any],
    milestones: Iterable[int] = BADGE_COMPLETION_MILESTONES,
    quality_min_completed: int = QUALITY_BADGE_MIN_COMPLETED,
    quality_max_revision_rate: float = QUALITY_BADGE_MAX_REVISION_RATE,
) -> List[Badge]:
    completed_count = len(completed_tasks)
    badges = [completion_badge(milestone) for milestone in sorted(set(milestones)) if completed_count >= milestone]

    if completed_count >= quality_min_completed and needs_revision_share(all_tasks) < quality_max_revision_rate:
        badges.append(quality_badge(quality_max_revision_rate))

    return badges


def calculate_streaks(completed_tasks: Sequence[Any], today: date) -> Tuple[int, int]:
    """
    Return (current_streak, longest_streak) over completion dates.

    The longest streak scans completions in order and keeps a run going while
    each completion falls on the same day as the previous one or the day after.
    """
    completion_days = sorted(
        utc_date(task_field(task, "completed_at"))
        for task in completed_tasks
        if task_field(task, "completed_at") is not None
    )
    if not completion_days:
        return 0, 0

    longest = run = 1
    for previous, current in zip(completion_days, completion_days[1:]):
        if (current - previous).days <= 1:
            run += 1
        else:
            longest = max(longest, run)
            run = 1
    longest = max(longest, run)

    # NOTE: unlike the longest streak, the current streak does not require
    # adjacent days: any completion within the last 7 days extends it, gaps
    # included. Both rules are kept as they are until the intent is settled.
    current_streak = 0
    for completion_day in reversed(completion_days):
        if completion_day == today or (today - completion_day).days < CURRENT_STREAK_WINDOW_DAYS:
            current_streak += 1
        else:
            break

    return current_streak, longest


class StatisticsAggregator:
    def __init__(
        self,
        data_source: TaskDataSource,
        cache: StatisticsCache,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.data_source = data_source
        self.cache = cache
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return as_utc(self._clock())

    async def get_user_statistics(self, user_id: int) -> UserStatistics:
        """
        Build (or serve from cache) the user's statistics.

        Each sub-computation that fails is replaced by its empty structure.
        Only when every one of them found the data source unavailable does the
        call itself fail with DataSourceUnavailableError.
        """
        cached = self.cache.get(user_id)
        if cached is not None:
            logger.debug(f"Serving cached statistics for user {user_id}")
            return cached

        sub_computations = (
            ("task metrics", self.get_task_metrics, TaskMetrics),
            ("efficiency metrics", self.get_efficiency_metrics, EfficiencyMetrics),
            ("workspace stats", self.get_workspace_stats, WorkspaceStats),
            ("achievements", self.get_achievements, Achievements),
        )
        results = await asyncio.gather(
            *(compute(user_id) for _, compute, _ in sub_computations),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
        if all(isinstance(result, DataSourceUnavailableError) for result in results):
            logger.error(f"Error fetching user statistics for user {user_id}: {str(results[0])}")
            raise results[0]

        values = []
        for (name, _, empty), result in zip(sub_computations, results):
            if isinstance(result, Exception):
                logger.warning(f"Error fetching {name} for user {user_id}: {str(result)}")
                result = empty()
            values.append(result)
        task_metrics, efficiency_metrics, workspace_stats, achievements = values

        statistics = UserStatistics(
            user_id=user_id,
            task_metrics=task_metrics,
            efficiency_metrics=efficiency_metrics,
            workspace_stats=workspace_stats,
            achievements=achievements,
            last_updated=self._now(),
        )
        self.cache.set(user_id, statistics)
        return statistics

    def clear_cache(self) -> None:
        self.cache.clear()

    async def get_task_metrics(self, user_id: int) -> TaskMetrics:
        tasks = await self.data_source.fetch_user_tasks(user_id)
        now = self._now()

        return TaskMetrics(
            all_time=calculate_task_stats(tasks),
            this_week=calculate_task_stats(tasks_created_since(tasks, week_start(now))),
            this_month=calculate_task_stats(tasks_created_since(tasks, month_start(now))),
            trends=self._get_task_trends(tasks, now.date()),
        )

    def _get_task_trends(self, tasks: Sequence[Any], today: date) -> List[TrendPoint]:
        try:
            return build_task_trend(tasks, today)
        except Exception as e:
            logger.warning(f"Error building task trends: {str(e)}")
            return []

    async def get_efficiency_metrics(self, user_id: int) -> EfficiencyMetrics:
        tasks = await self.data_source.fetch_user_tasks(user_id)
        return calculate_efficiency_metrics(tasks)

    async def get_workspace_stats(self, user_id: int) -> WorkspaceStats:
        owned, joined, tasks = await asyncio.gather(
            self.data_source.fetch_owned_workspaces(user_id),
            self.data_source.fetch_member_workspaces(user_id),
            self.data_source.fetch_user_tasks(user_id),
        )

        owned_ids = {workspace.id for workspace in owned}
        member_ids = {workspace.id for workspace in joined if workspace.id not in owned_ids}
        distribution = calculate_task_distribution(tasks)

        return WorkspaceStats(
            total_workspaces=len(owned_ids) + len(member_ids),
            owned_workspaces=len(owned_ids),
            member_workspaces=len(member_ids),
            most_active_workspace=most_active_workspace(distribution),
            task_distribution=distribution,
        )

    async def get_achievements(self, user_id: int) -> Achievements:
        tasks = await self.data_source.fetch_user_tasks(user_id)
        completed = get_completed_tasks(tasks)

        badges = calculate_badges(tasks, completed)
        current_streak, longest_streak = calculate_streaks(completed, self._now().date())

        return Achievements(
            badges=badges,
            current_streak=current_streak,
            longest_streak=longest_streak,
            total_badges=len(badges),
        )
