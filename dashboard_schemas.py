from pydantic import BaseModel, Field
from datetime import datetime, date
from typing import List, Optional

class TaskCounts(BaseModel):
    active: int = 0
    pending_review: int = 0
    completed: int = 0
    remaining: int = 0
    total: int = 0

class StatusCounts(BaseModel):
    todo: int = 0
    in_progress: int = 0
    submitted: int = 0
    completed: int = 0
    needs_revision: int = 0

class CategorizationValidation(BaseModel):
    is_valid: bool
    counts: Optional[TaskCounts] = None
    status_counts: Optional[StatusCounts] = None
    categorized_total: Optional[int] = None
    status_total: Optional[int] = None
    error: Optional[str] = None

class CountInconsistency(BaseModel):
    field: str
    dashboard: int
    workspace: int
    difference: int

class ConsistencyReport(BaseModel):
    is_consistent: bool
    inconsistencies: List[CountInconsistency] = []
    dashboard_counts: Optional[TaskCounts] = None
    workspace_counts: Optional[TaskCounts] = None
    error: Optional[str] = None

class TaskWindowStats(BaseModel):
    total: int = 0
    completed: int = 0
    remaining: int = 0
    completion_rate: int = 0
    active: int = 0
    pending_review: int = 0
    by_status: StatusCounts = Field(default_factory=StatusCounts)

class TrendPoint(BaseModel):
    date: date
    created: int = 0
    completed: int = 0

class TaskMetrics(BaseModel):
    all_time: TaskWindowStats = Field(default_factory=TaskWindowStats)
    this_week: TaskWindowStats = Field(default_factory=TaskWindowStats)
    this_month: TaskWindowStats = Field(default_factory=TaskWindowStats)
    trends: List[TrendPoint] = []

class EfficiencyMetrics(BaseModel):
    avg_completion_time_hours: float = 0
    on_time_rate: int = 0
    revision_rate: int = 0
    productivity_score: int = 0
    total_completed: int = 0

class WorkspaceActivity(BaseModel):
    id: int
    name: str
    task_count: int = 0
    completed_count: int = 0

class WorkspaceStats(BaseModel):
    total_workspaces: int = 0
    owned_workspaces: int = 0
    member_workspaces: int = 0
    most_active_workspace: Optional[WorkspaceActivity] = None
    task_distribution: List[WorkspaceActivity] = []

class Badge(BaseModel):
    id: str
    name: str
    description: str
    icon: str

class Achievements(BaseModel):
    badges: List[Badge] = []
    current_streak: int = 0
    longest_streak: int = 0
    total_badges: int = 0

class UserStatistics(BaseModel):
    user_id: int
    task_metrics: TaskMetrics
    efficiency_metrics: EfficiencyMetrics
    workspace_stats: WorkspaceStats
    achievements: Achievements
    last_updated: datetime

class ActivityItem(BaseModel):
    id: str
    type: str
    title: str
    subtitle: str
    time: str

class AssignedTaskCounts(BaseModel):
    user_id: int
    counts: TaskCounts
    status_counts: StatusCounts
    consistency: Optional[ConsistencyReport] = None
