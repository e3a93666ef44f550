import os
import time
import logging
from typing import List
import aiofiles
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, field_validator
from database import get_db
from models import Task, User, Workspace
from auth import get_current_user
from config import SUBMISSIONS_DIR
from constants.task_status import TaskStatus
from schemas import TaskAssignment, TaskResponse, TaskReview
from dashboard_schemas import AssignedTaskCounts
from dashboard_routes import get_dashboard_counts_store, get_statistics_cache
from services.data_source import SQLAlchemyTaskDataSource, DataSourceError, DataSourceUnavailableError
from services.statistics_cache import DashboardCountsStore, StatisticsCache
from services.task_categorization import (
    safe_operation,
    get_task_counts,
    get_tasks_by_status,
    validate_dashboard_workspace_consistency,
)
from services.task_lifecycle import apply_transition, next_status, InvalidTransitionError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/tasks",
    tags=["tasks"]
)

class TaskStatusUpdate(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if not TaskStatus.has_value(v):
            valid_statuses = [status.value for status in TaskStatus]
            raise ValueError(f"Invalid status. Must be one of: {valid_statuses}")
        return v

def get_task_or_404(db: Session, task_id: int) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if not task:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found"
        )
    return task

def transition_or_400(task: Task, new_status: str, **kwargs) -> Task:
    try:
        return apply_transition(task, new_status, **kwargs)
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

@router.post("/workspace/{workspace_id}", response_model=List[TaskResponse], status_code=status.HTTP_201_CREATED)
def assign_tasks(
    workspace_id: int,
    assignment: TaskAssignment,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
):
    """Assign one task per title to a workspace member. Tasks start in 'todo'."""
    workspace = db.query(Workspace).filter(Workspace.id == workspace_id).first()
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")

    assignee = db.query(User).filter(User.id == assignment.assigned_to).first()
    if not assignee:
        raise HTTPException(
            status_code=404,
            detail=f"User with id {assignment.assigned_to} not found"
        )

    titles = [title.strip() for title in assignment.titles if title.strip()]
    if not titles:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please enter at least one task"
        )

    tasks = [
        Task(
            workspace_id=workspace.id,
            assigned_to=assignee.id,
            assigned_by=current_user.id,
            title=title,
            status=TaskStatus.TODO.value
        )
        for title in titles
    ]
    db.add_all(tasks)
    db.commit()
    for task in tasks:
        db.refresh(task)
    cache.invalidate(assignee.id)

    logger.info(f"{len(tasks)} tasks assigned to user {assignee.id} in workspace {workspace.id}")
    return tasks

@router.get("/assigned", response_model=List[TaskResponse])
def get_assigned_tasks(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get all tasks assigned to the current user."""
    return (
        db.query(Task)
        .filter(Task.assigned_to == current_user.id)
        .order_by(Task.created_at.desc())
        .all()
    )

@router.get("/assigned/counts", response_model=AssignedTaskCounts)
async def get_assigned_task_counts(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dashboard_counts: DashboardCountsStore = Depends(get_dashboard_counts_store)
):
    """
    Count the current user's tasks independently of the dashboard and compare
    them with the counts the dashboard last showed, when there are any.
    """
    try:
        tasks = await SQLAlchemyTaskDataSource(db).fetch_user_tasks(current_user.id)
    except DataSourceUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except DataSourceError as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving tasks: {str(e)}")

    counts = safe_operation(tasks, get_task_counts, "get_task_counts")
    status_counts = safe_operation(tasks, get_tasks_by_status, "get_tasks_by_status")

    consistency = None
    published = dashboard_counts.get(current_user.id)
    if published is not None:
        consistency = validate_dashboard_workspace_consistency(published, counts)

    return AssignedTaskCounts(
        user_id=current_user.id,
        counts=counts,
        status_counts=status_counts,
        consistency=consistency
    )

@router.get("/{task_id}", response_model=TaskResponse)
def get_task(task_id: int, db: Session = Depends(get_db)):
    return get_task_or_404(db, task_id)

@router.patch("/{task_id}/status", response_model=TaskResponse)
def update_task_status(
    task_id: int,
    status_update: TaskStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
):
    """Move a task to another status, following the task lifecycle."""
    task = get_task_or_404(db, task_id)
    if status_update.status == TaskStatus.SUBMITTED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Submitting a task requires a file upload"
        )
    transition_or_400(task, status_update.status, reviewed_by=current_user.id)
    db.commit()
    db.refresh(task)
    cache.invalidate(task.assigned_to)
    return task

@router.post("/{task_id}/advance", response_model=TaskResponse)
def advance_task(
    task_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
):
    """Move a task one step forward from the assignee's side."""
    task = get_task_or_404(db, task_id)
    new_status = next_status(task.status)
    if new_status == TaskStatus.SUBMITTED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Submitting a task requires a file upload"
        )
    transition_or_400(task, new_status)
    db.commit()
    db.refresh(task)
    cache.invalidate(task.assigned_to)
    return task

@router.post("/{task_id}/submit", response_model=TaskResponse)
async def submit_task(
    task_id: int,
    submission_file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
):
    """Upload the result file and move the task to 'submitted'."""
    task = get_task_or_404(db, task_id)
    transition_or_400(task, TaskStatus.SUBMITTED.value)

    try:
        # Files are stored as <user id>/<task id>/<timestamp><extension>
        upload_dir = os.path.join(SUBMISSIONS_DIR, str(current_user.id), str(task.id))
        os.makedirs(upload_dir, exist_ok=True)
        file_extension = os.path.splitext(submission_file.filename or "")[1]
        file_path = os.path.join(upload_dir, f"{int(time.time() * 1000)}{file_extension}")

        async with aiofiles.open(file_path, 'wb') as out_file:
            content = await submission_file.read()
            await out_file.write(content)

        task.submission_file_ref = file_path
        task.submission_file_name = submission_file.filename
        db.commit()
        db.refresh(task)
        cache.invalidate(task.assigned_to)
        return task
    except Exception as e:
        db.rollback()
        # Clean up the file if the submission could not be recorded
        if 'file_path' in locals() and os.path.exists(file_path):
            os.remove(file_path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to submit task: {str(e)}"
        )
    finally:
        await submission_file.close()

@router.post("/{task_id}/review", response_model=TaskResponse)
def review_task(
    task_id: int,
    review: TaskReview,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
):
    """Approve a submitted task or send it back for revision."""
    task = get_task_or_404(db, task_id)
    new_status = TaskStatus.COMPLETED.value if review.action == "approve" else TaskStatus.NEEDS_REVISION.value
    transition_or_400(
        task,
        new_status,
        review_comments=review.comments,
        reviewed_by=current_user.id
    )
    db.commit()
    db.refresh(task)
    cache.invalidate(task.assigned_to)
    return task
