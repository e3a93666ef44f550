import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, joinedload
from typing import List
from database import get_db
from models import User, Workspace, WorkspaceMember, WorkspaceRole, Task
from schemas import WorkspaceCreate, WorkspaceResponse, WorkspaceMemberResponse, WorkspaceTasksResponse, MemberTaskSummary, TaskResponse
from auth import get_current_user
from dashboard_routes import get_statistics_cache
from services.statistics_cache import StatisticsCache
from services.data_source import SQLAlchemyTaskDataSource, DataSourceError, DataSourceUnavailableError
from services.task_categorization import safe_operation, get_task_counts, get_tasks_by_status

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/workspaces",
    tags=["workspaces"]
)

def get_workspace_or_404(db: Session, workspace_id: int) -> Workspace:
    workspace = (
        db.query(Workspace)
        .options(joinedload(Workspace.members).joinedload(WorkspaceMember.user))
        .filter(Workspace.id == workspace_id)
        .first()
    )
    if not workspace:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workspace not found"
        )
    return workspace

@router.post("", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
def create_workspace(
    workspace: WorkspaceCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
):
    """Create a workspace owned by the current user."""
    db_workspace = Workspace(
        name=workspace.name,
        description=workspace.description,
        created_by=current_user.id
    )
    db.add(db_workspace)
    db.commit()
    db.refresh(db_workspace)

    # Add the owner as a workspace member
    db.add(WorkspaceMember(
        workspace_id=db_workspace.id,
        user_id=current_user.id,
        role=WorkspaceRole.OWNER.value
    ))
    db.commit()

    cache.invalidate(current_user.id)
    logger.info(f"Workspace {db_workspace.id} created by user {current_user.id}")
    return get_workspace_or_404(db, db_workspace.id)

@router.post("/{workspace_id}/join", response_model=WorkspaceMemberResponse)
def join_workspace(
    workspace_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: StatisticsCache = Depends(get_statistics_cache)
):
    """Join a workspace as a member."""
    workspace = get_workspace_or_404(db, workspace_id)

    existing_membership = (
        db.query(WorkspaceMember)
        .filter(
            WorkspaceMember.workspace_id == workspace.id,
            WorkspaceMember.user_id == current_user.id
        )
        .first()
    )
    if existing_membership:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You are already a member of this workspace"
        )

    membership = WorkspaceMember(
        workspace_id=workspace.id,
        user_id=current_user.id,
        role=WorkspaceRole.MEMBER.value
    )
    db.add(membership)
    db.commit()
    db.refresh(membership)
    cache.invalidate(current_user.id)
    return membership

@router.get("/mine", response_model=List[WorkspaceResponse])
def get_my_workspaces(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get every workspace the current user owns or has joined."""
    return (
        db.query(Workspace)
        .join(WorkspaceMember)
        .filter(WorkspaceMember.user_id == current_user.id)
        .order_by(Workspace.created_at)
        .all()
    )

@router.get("/{workspace_id}", response_model=WorkspaceResponse)
def get_workspace(workspace_id: int, db: Session = Depends(get_db)):
    return get_workspace_or_404(db, workspace_id)

@router.get("/{workspace_id}/tasks", response_model=WorkspaceTasksResponse)
async def get_workspace_tasks(workspace_id: int, db: Session = Depends(get_db)):
    """Get the workspace's tasks with a per-member status breakdown."""
    workspace = get_workspace_or_404(db, workspace_id)
    try:
        records = await SQLAlchemyTaskDataSource(db).fetch_workspace_tasks(workspace.id)
    except DataSourceUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except DataSourceError as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving workspace tasks: {str(e)}")

    members = []
    for member in workspace.members:
        member_tasks = [task for task in records if task is not None and task.assigned_to == member.user_id]
        members.append(MemberTaskSummary(
            user_id=member.user_id,
            full_name=member.user.full_name if member.user else None,
            email=member.user.email if member.user else None,
            counts=safe_operation(member_tasks, get_task_counts, "get_task_counts"),
            status_counts=safe_operation(member_tasks, get_tasks_by_status, "get_tasks_by_status")
        ))

    tasks = (
        db.query(Task)
        .filter(Task.workspace_id == workspace.id)
        .order_by(Task.created_at.desc())
        .all()
    )
    return WorkspaceTasksResponse(
        workspace=WorkspaceResponse.model_validate(workspace),
        tasks=[TaskResponse.model_validate(task) for task in tasks],
        counts=safe_operation(records, get_task_counts, "get_task_counts"),
        members=members
    )
