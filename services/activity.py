from typing import List

from dashboard_schemas import ActivityItem, UserStatistics

MAX_ACTIVITY_ITEMS = 6
HIGH_COMPLETION_RATE = 75

def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"

def build_recent_activity(statistics: UserStatistics) -> List[ActivityItem]:
    """Summarize a user's statistics as the dashboard's recent activity feed."""
    metrics = statistics.task_metrics
    all_time = metrics.all_time
    activities = []

    if metrics.this_week.completed > 0:
        activities.append(ActivityItem(
            id="week_completion",
            type="completion",
            title=f"Completed {_plural(metrics.this_week.completed, 'task')} this week",
            subtitle="Great progress on your weekly goals!",
            time="This week",
        ))

    if metrics.this_month.completion_rate > HIGH_COMPLETION_RATE:
        activities.append(ActivityItem(
            id="high_productivity",
            type="achievement",
            title=f"{metrics.this_month.completion_rate}% completion rate this month",
            subtitle="You're having a productive month!",
            time="This month",
        ))

    most_active = statistics.workspace_stats.most_active_workspace
    if most_active is not None:
        activities.append(ActivityItem(
            id="active_workspace",
            type="workspace",
            title=f"Most active in {most_active.name}",
            subtitle=f"{_plural(most_active.task_count, 'task')} in this workspace",
            time="Recent",
        ))

    if all_time.by_status.in_progress > 0:
        activities.append(ActivityItem(
            id="in_progress",
            type="status",
            title=f"{_plural(all_time.by_status.in_progress, 'task')} in progress",
            subtitle="Keep up the momentum!",
            time="Current",
        ))

    if all_time.by_status.submitted > 0:
        activities.append(ActivityItem(
            id="submitted",
            type="status",
            title=f"{_plural(all_time.by_status.submitted, 'task')} awaiting review",
            subtitle="Waiting for team leader feedback",
            time="Pending",
        ))

    needs_revision = all_time.by_status.needs_revision
    if needs_revision > 0:
        activities.append(ActivityItem(
            id="needs_revision",
            type="attention",
            title=f"{_plural(needs_revision, 'task')} need{'s' if needs_revision == 1 else ''} revision",
            subtitle="Review feedback and resubmit",
            time="Action needed",
        ))

    if 10 <= all_time.completed < 15:
        activities.append(ActivityItem(
            id="milestone_10",
            type="milestone",
            title="Reached 10 completed tasks!",
            subtitle="You're building great momentum",
            time="Recent achievement",
        ))

    return activities[:MAX_ACTIVITY_ITEMS]
