from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional, List
from enum import Enum

from time_utils import ensure_utc


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class TaskStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class TimelineEventType(str, Enum):
    """Entries of a task's audit timeline, in lifecycle order."""
    created = "created"
    assigned = "assigned"
    started = "started"
    completed = "completed"


# User schemas
class UserSummary(BaseModel):
    id: int
    name: str
    email: EmailStr

    class Config:
        from_attributes = True


class User(UserSummary):
    role: UserRole
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# Team schemas
class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Team name cannot be blank")
        return value


class Team(BaseModel):
    id: int
    name: str
    owner_id: int
    created_at: datetime

    class Config:
        from_attributes = True


class TeamMemberCreate(BaseModel):
    user_id: int = Field(..., gt=0)


class TeamMemberResponse(BaseModel):
    id: int
    team_id: int
    user_id: int
    user: Optional[UserSummary] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TeamDeleteResult(BaseModel):
    message: str
    team_id: int


# Task schemas
class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    team_id: int = Field(..., gt=0)
    assigned_to_user_id: Optional[int] = Field(None, gt=0)
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Task title cannot be blank")
        return value

    @field_validator("due_date")
    @classmethod
    def due_date_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stores without offset support keep only the wall-clock value
        return ensure_utc(value)


class TaskComplete(BaseModel):
    late_submission_reason: Optional[str] = Field(None, max_length=2000)


class TaskAssign(BaseModel):
    task_id: int = Field(..., gt=0)


class BulkTaskAssign(BaseModel):
    task_id: int = Field(..., gt=0)
    user_ids: List[int] = Field(..., min_length=1, max_length=500)

    @field_validator("user_ids")
    @classmethod
    def reject_duplicates(cls, value: List[int]) -> List[int]:
        if any(user_id <= 0 for user_id in value):
            raise ValueError("User IDs must be positive integers")
        if len(set(value)) != len(value):
            raise ValueError("User IDs must not contain duplicates")
        return value


class Task(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    assigned_to_user_id: Optional[int]
    assigned_by_user_id: int
    completed_by_user_id: Optional[int] = None
    team_id: int
    due_date: Optional[datetime] = None
    late_submission_reason: Optional[str] = None
    assigned_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_deleted: bool = False

    class Config:
        from_attributes = True


class BulkAssignResult(BaseModel):
    source_task_id: int
    assigned_count: int
    tasks: List[Task] = []


class TaskDeleteResult(BaseModel):
    message: str
    task_id: int
    hard_deleted: bool


class TaskTime(BaseModel):
    task_id: int
    time_in_minutes: Optional[int] = None
    formatted: Optional[str] = None


# Audit trail schemas
class TimelineEntry(BaseModel):
    event: TimelineEventType
    at: datetime
    actor: Optional[UserSummary] = None


class TaskWithAudit(Task):
    assignee: Optional[UserSummary] = None
    assigner: Optional[UserSummary] = None
    completer: Optional[UserSummary] = None
    is_late_submission: bool = False
    time_in_minutes: Optional[int] = None
    time_taken: Optional[str] = None
    timeline: List[TimelineEntry] = []
