from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import os
import sys

from database import get_db, engine, Base
import models
import schemas
from auth.routes import router as auth_router
from auth.dependencies import get_current_user, require_capability
from auth.permissions import Operation
from core import audit, bulk_assignment, lifecycle, teams
from errors import NotFoundError, StorageError, TaskTrackerError, status_code_for
from time_utils import format_minutes

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Tracker API",
    description="Team task tracking with lifecycle, ownership and late-submission audit",
    version="1.0.0"
)

# CORS middleware for frontend
cors_origins = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register authentication router
app.include_router(auth_router)


# ============== Error Handling ==============

@app.exception_handler(TaskTrackerError)
async def task_tracker_error_handler(request: Request, exc: TaskTrackerError):
    """Map the domain error family to HTTP responses."""
    status_code = status_code_for(exc)

    if isinstance(exc, StorageError):
        # Driver detail was logged where the failure happened
        logger.error(f"Storage error on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": "An internal error occurred", "error_code": exc.error_code},
        )

    content = {"detail": exc.message, "error_code": exc.error_code}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


# ============== Startup: Schema and Admin User ==============

@app.on_event("startup")
async def ensure_admin_user():
    """
    Create tables and make sure an admin account exists.

    Registration only ever creates MEMBERs, so the first ADMIN comes from
    ADMIN_EMAIL / ADMIN_PASSWORD. The default password is refused in
    production-like environments.
    """
    from database import SessionLocal
    from auth.security import hash_password, is_production_like

    Base.metadata.create_all(bind=engine)

    admin_email = os.getenv("ADMIN_EMAIL", "admin@example.com")
    admin_password = os.getenv("ADMIN_PASSWORD", "admin123")

    db = SessionLocal()
    try:
        if db.query(models.User).filter(models.User.email == admin_email).first():
            logger.info(f"Admin user already exists (email: {admin_email})")
            return

        if is_production_like():
            if admin_password.strip() == "admin123" or len(admin_password.strip()) < 8:
                logger.error(
                    "STARTUP FAILED: a secure ADMIN_PASSWORD (8+ characters, not the default) "
                    "is required in production/staging"
                )
                sys.exit(1)

        admin = models.User(
            name="Admin",
            email=admin_email,
            role=models.UserRole.ADMIN,
            password_hash=hash_password(admin_password),
            is_active=True
        )
        db.add(admin)
        db.commit()

        if admin_password == "admin123":
            logger.warning(f"Admin user created with DEFAULT password ({admin_email} / admin123). Change it.")
        else:
            logger.info(f"Admin user created: {admin_email}")
    finally:
        db.close()


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Teams ==============

@app.post("/api/teams", response_model=schemas.Team, status_code=status.HTTP_201_CREATED)
def create_team(
    team: schemas.TeamCreate,
    current_user: models.User = Depends(require_capability(Operation.CREATE_TEAM)),
    db: Session = Depends(get_db)
):
    """Create a new team with the caller as creator and first member."""
    return teams.create_team(db, team.name, current_user.id, current_user.role)


@app.get("/api/teams", response_model=List[schemas.Team])
def list_teams(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List teams visible to the caller (all teams for admins)."""
    logger.debug(f"User {current_user.id} listing teams")
    return teams.list_teams_for_user(db, current_user.id, current_user.role)


@app.post(
    "/api/teams/{team_id}/members",
    response_model=schemas.TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_team_member(
    team_id: int,
    member: schemas.TeamMemberCreate,
    current_user: models.User = Depends(require_capability(Operation.ADD_TEAM_MEMBER)),
    db: Session = Depends(get_db)
):
    """Add a user to a team the caller belongs to."""
    return teams.add_member(db, team_id, member.user_id, current_user.id, current_user.role)


@app.get("/api/teams/{team_id}/members", response_model=List[schemas.TeamMemberResponse])
def list_team_members(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Members of a team, for its members and admins."""
    return teams.list_members(db, team_id, current_user.id, current_user.role)


@app.delete("/api/teams/{team_id}", response_model=schemas.TeamDeleteResult)
def delete_team(
    team_id: int,
    current_user: models.User = Depends(require_capability(Operation.DELETE_TEAM)),
    db: Session = Depends(get_db)
):
    """Delete a team. Only its creator may do this."""
    teams.delete_team(db, team_id, current_user.id)
    return {"message": "Team deleted successfully", "team_id": team_id}


# ============== Tasks ==============

@app.post("/api/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(require_capability(Operation.CREATE_TASK)),
    db: Session = Depends(get_db)
):
    """Create a task in ASSIGNED state (admin only)."""
    return lifecycle.create_task(
        db,
        title=task.title,
        description=task.description,
        assigned_to_user_id=task.assigned_to_user_id,
        assigned_by_user_id=current_user.id,
        team_id=task.team_id,
        creator_role=current_user.role,
        due_date=task.due_date,
    )


@app.post("/api/tasks/member/create", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_member_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(require_capability(Operation.CREATE_TEAM_TASK)),
    db: Session = Depends(get_db)
):
    """
    Create a task inside one of the caller's teams.

    The assignee must belong to the same team. The caller's role is recorded
    as the creator role, so a task created by a member cannot be deleted.
    """
    return lifecycle.create_team_task(
        db,
        title=task.title,
        description=task.description,
        assigned_to_user_id=task.assigned_to_user_id,
        team_id=task.team_id,
        caller_id=current_user.id,
        caller_role=current_user.role,
        due_date=task.due_date,
    )


@app.get("/api/tasks/my-tasks", response_model=List[schemas.Task])
def get_my_tasks(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Tasks assigned to the caller, newest assignment first."""
    return lifecycle.list_tasks_for_user(db, current_user.id)


@app.get("/api/tasks/team/{team_id}", response_model=List[schemas.Task])
def get_team_tasks(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Live tasks of a team, for its members and admins."""
    return lifecycle.list_tasks_for_team(db, team_id, current_user.id, current_user.role)


@app.put("/api/tasks/{task_id}/start", response_model=schemas.Task)
def start_task(
    task_id: int,
    current_user: models.User = Depends(require_capability(Operation.START_TASK)),
    db: Session = Depends(get_db)
):
    return lifecycle.start_task(db, task_id, current_user.id)


@app.put("/api/tasks/{task_id}/complete", response_model=schemas.Task)
def complete_task(
    task_id: int,
    body: Optional[schemas.TaskComplete] = None,
    current_user: models.User = Depends(require_capability(Operation.COMPLETE_TASK)),
    db: Session = Depends(get_db)
):
    """
    Complete a task the caller is working on.

    A past-due task needs late_submission_reason; without one the response is
    422 with error_code LATE_REASON_REQUIRED and the task's due_date.
    """
    reason = body.late_submission_reason if body else None
    result = lifecycle.complete_task(db, task_id, current_user.id, reason)

    if isinstance(result, lifecycle.LateReasonRequired):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": result.message,
                "error_code": result.error_code,
                "task_id": result.task_id,
                "due_date": result.due_date.isoformat(),
            },
        )
    return result


@app.get("/api/tasks/{task_id}/details", response_model=schemas.TaskWithAudit)
def get_task_details(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Task with its people, late-submission flag, time taken and timeline."""
    lifecycle.ensure_task_visible(db, task_id, current_user.id, current_user.role)
    return audit.get_with_audit_trail(db, task_id)


@app.get("/api/tasks/{task_id}/time", response_model=schemas.TaskTime)
def get_task_time(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Minutes from start to completion; null until the task is completed."""
    lifecycle.ensure_task_visible(db, task_id, current_user.id, current_user.role)
    minutes = lifecycle.get_task_time(db, task_id)
    return {
        "task_id": task_id,
        "time_in_minutes": minutes,
        "formatted": format_minutes(minutes) if minutes is not None else None,
    }


@app.delete("/api/tasks/{task_id}", response_model=schemas.TaskDeleteResult)
def delete_task(
    task_id: int,
    hard: bool = Query(False, description="Remove the row and its ownership record instead of flagging it"),
    current_user: models.User = Depends(require_capability(Operation.DELETE_TASK)),
    db: Session = Depends(get_db)
):
    """Delete a task. Only the admin who created it may do this."""
    lifecycle.delete_task(db, task_id, current_user.id, current_user.role, hard=hard)
    return {
        "message": "Task permanently deleted" if hard else "Task deleted",
        "task_id": task_id,
        "hard_deleted": hard,
    }


# ============== Users ==============

@app.get("/api/users", response_model=List[schemas.User])
def list_users(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List all users, e.g. to pick an assignee."""
    return db.query(models.User).order_by(models.User.id).all()


@app.get("/api/users/{user_id}", response_model=schemas.User)
def get_user(
    user_id: int,
    current_user: models.User = Depends(require_capability(Operation.VIEW_USER_DETAILS)),
    db: Session = Depends(get_db)
):
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFoundError("User")
    return user


# ============== Assignment ==============

@app.post("/api/users/{user_id}/assign-task", response_model=schemas.Task)
def assign_task_to_user(
    user_id: int,
    body: schemas.TaskAssign,
    current_user: models.User = Depends(require_capability(Operation.ASSIGN_TASK)),
    db: Session = Depends(get_db)
):
    """Reassign a task to a user, resetting it to ASSIGNED."""
    return lifecycle.assign_to_user(db, body.task_id, user_id, current_user.id)


@app.post(
    "/api/users/assign-task-bulk",
    response_model=schemas.BulkAssignResult,
    status_code=status.HTTP_201_CREATED,
)
def assign_task_bulk(
    body: schemas.BulkTaskAssign,
    current_user: models.User = Depends(require_capability(Operation.BULK_ASSIGN_TASK)),
    db: Session = Depends(get_db)
):
    """Copy a task to every listed user; all copies are created or none."""
    created = bulk_assignment.assign_to_multiple_users(
        db,
        body.task_id,
        body.user_ids,
        assigned_by_user_id=current_user.id,
        assigner_role=current_user.role,
    )
    return {
        "source_task_id": body.task_id,
        "assigned_count": len(created),
        "tasks": created,
    }


@app.post(
    "/api/tasks/member/assign-multiple",
    response_model=schemas.BulkAssignResult,
    status_code=status.HTTP_201_CREATED,
)
def assign_task_to_team_members(
    body: schemas.BulkTaskAssign,
    current_user: models.User = Depends(require_capability(Operation.ASSIGN_TEAM_TASK)),
    db: Session = Depends(get_db)
):
    """Copy a team task to other members of the same team; all or none."""
    created = bulk_assignment.assign_to_team_members(
        db,
        body.task_id,
        body.user_ids,
        caller_id=current_user.id,
        caller_role=current_user.role,
    )
    return {
        "source_task_id": body.task_id,
        "assigned_count": len(created),
        "tasks": created,
    }
