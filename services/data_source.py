"""
Read access to tasks and workspaces for the statistics core.

The statistics code only depends on the TaskDataSource protocol. Rows coming
out of the store are converted into TaskRecord / WorkspaceRecord here, so the
rest of the core never sees raw payloads.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Protocol

from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import Task, Workspace, WorkspaceMember

logger = logging.getLogger(__name__)


class DataSourceError(Exception):
    """A query against the task/workspace store failed."""


class DataSourceUnavailableError(DataSourceError):
    """The task/workspace store cannot be reached at all."""


class TaskRecord(BaseModel):
    id: Optional[int] = None
    workspace_id: Optional[int] = None
    workspace_name: Optional[str] = None
    assigned_to: Optional[int] = None
    assigned_by: Optional[int] = None
    title: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    review_comments: Optional[str] = None
    submission_file_ref: Optional[str] = None

    class Config:
        from_attributes = True

    @field_validator("status", mode="before")
    @classmethod
    def keep_string_status(cls, v):
        # Non-string statuses stay uncategorized instead of failing the record
        return v if isinstance(v, str) else None

    @field_validator("created_at", "submitted_at", "completed_at", "reviewed_at")
    @classmethod
    def assume_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class WorkspaceRecord(BaseModel):
    id: int
    name: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


def to_task_records(rows: Any) -> List[Optional[TaskRecord]]:
    """
    Convert raw task rows (mappings or ORM objects) into TaskRecords.

    A row that cannot be read becomes None so it still counts towards raw
    totals but never lands in a status bucket.
    """
    if not isinstance(rows, (list, tuple)):
        logger.warning(f"Expected a list of task rows, got {type(rows).__name__}; treating as empty")
        return []

    records = []
    for row in rows:
        if row is None:
            records.append(None)
            continue
        try:
            records.append(TaskRecord.model_validate(row, from_attributes=not isinstance(row, Mapping)))
        except ValidationError as e:
            logger.warning(f"Skipping malformed task row: {e.error_count()} validation error(s)")
            records.append(None)
    return records


def to_workspace_records(rows: Any) -> List[WorkspaceRecord]:
    if not isinstance(rows, (list, tuple)):
        logger.warning(f"Expected a list of workspace rows, got {type(rows).__name__}; treating as empty")
        return []

    records = []
    for row in rows:
        if row is None:
            continue
        try:
            records.append(WorkspaceRecord.model_validate(row, from_attributes=not isinstance(row, Mapping)))
        except ValidationError as e:
            logger.warning(f"Skipping malformed workspace row: {e.error_count()} validation error(s)")
    return records


class TaskDataSource(Protocol):
    async def fetch_user_tasks(self, user_id: int, created_since: Optional[datetime] = None) -> List[Optional[TaskRecord]]:
        ...

    async def fetch_workspace_tasks(self, workspace_id: int) -> List[Optional[TaskRecord]]:
        ...

    async def fetch_owned_workspaces(self, user_id: int) -> List[WorkspaceRecord]:
        ...

    async def fetch_member_workspaces(self, user_id: int) -> List[WorkspaceRecord]:
        ...


def _task_row(task: Task) -> dict:
    return {
        "id": task.id,
        "workspace_id": task.workspace_id,
        "workspace_name": task.workspace.name if task.workspace else None,
        "assigned_to": task.assigned_to,
        "assigned_by": task.assigned_by,
        "title": task.title,
        "status": task.status,
        "created_at": task.created_at,
        "submitted_at": task.submitted_at,
        "completed_at": task.completed_at,
        "reviewed_at": task.reviewed_at,
        "review_comments": task.review_comments,
        "submission_file_ref": task.submission_file_ref,
    }


class SQLAlchemyTaskDataSource:
    """TaskDataSource over the application's SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def _run(self, description: str, query):
        try:
            return query()
        except OperationalError as e:
            logger.error(f"Task store unavailable while fetching {description}: {str(e)}")
            raise DataSourceUnavailableError(f"Task store unavailable: {str(e)}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error fetching {description}: {str(e)}")
            raise DataSourceError(f"Error fetching {description}: {str(e)}") from e

    async def fetch_user_tasks(self, user_id: int, created_since: Optional[datetime] = None) -> List[Optional[TaskRecord]]:
        def query():
            q = self.db.query(Task).filter(Task.assigned_to == user_id)
            if created_since is not None:
                q = q.filter(Task.created_at >= created_since)
            return [_task_row(task) for task in q.order_by(Task.created_at.asc()).all()]

        return to_task_records(self._run(f"tasks for user {user_id}", query))

    async def fetch_workspace_tasks(self, workspace_id: int) -> List[Optional[TaskRecord]]:
        def query():
            tasks = (
                self.db.query(Task)
                .filter(Task.workspace_id == workspace_id)
                .order_by(Task.created_at.desc())
                .all()
            )
            return [_task_row(task) for task in tasks]

        return to_task_records(self._run(f"tasks for workspace {workspace_id}", query))

    async def fetch_owned_workspaces(self, user_id: int) -> List[WorkspaceRecord]:
        def query():
            return self.db.query(Workspace).filter(Workspace.created_by == user_id).all()

        return to_workspace_records(self._run(f"workspaces owned by user {user_id}", query))

    async def fetch_member_workspaces(self, user_id: int) -> List[WorkspaceRecord]:
        def query():
            memberships = (
                self.db.query(WorkspaceMember)
                .filter(WorkspaceMember.user_id == user_id)
                .all()
            )
            return [membership.workspace for membership in memberships if membership.workspace is not None]

        return to_workspace_records(self._run(f"workspace memberships for user {user_id}", query))
