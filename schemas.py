from pydantic import BaseModel, constr
from datetime import datetime
from typing import Optional, List
from models import WorkspaceRole
from dashboard_schemas import StatusCounts, TaskCounts

class UserBase(BaseModel):
    email: str
    full_name: Optional[str] = None

    class Config:
        from_attributes = True

class UserCreate(UserBase):
    pass

class UserResponse(UserBase):
    id: int
    created_at: Optional[datetime] = None

class TaskResponse(BaseModel):
    id: int
    workspace_id: int
    assigned_to: int
    assigned_by: Optional[int] = None
    title: str
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    review_comments: Optional[str] = None
    submission_file_ref: Optional[str] = None
    submission_file_name: Optional[str] = None

    class Config:
        from_attributes = True

class TaskAssignment(BaseModel):
    assigned_to: int
    titles: List[str]

class TaskReview(BaseModel):
    action: constr(pattern='^(approve|revise)$')
    comments: Optional[str] = None

class WorkspaceBase(BaseModel):
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True

class WorkspaceCreate(WorkspaceBase):
    pass

class WorkspaceMemberResponse(BaseModel):
    id: int
    workspace_id: int
    user_id: int
    role: constr(pattern='^(owner|member)$') = WorkspaceRole.MEMBER.value
    joined_at: Optional[datetime] = None
    user: UserResponse

    class Config:
        from_attributes = True

class WorkspaceResponse(WorkspaceBase):
    id: int
    created_by: int
    created_at: Optional[datetime] = None
    members: List[WorkspaceMemberResponse] = []

class MemberTaskSummary(BaseModel):
    user_id: int
    full_name: Optional[str] = None
    email: Optional[str] = None
    counts: TaskCounts
    status_counts: StatusCounts

class WorkspaceTasksResponse(BaseModel):
    workspace: WorkspaceResponse
    tasks: List[TaskResponse]
    counts: TaskCounts
    members: List[MemberTaskSummary]
