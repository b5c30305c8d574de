"""
Task lifecycle: creation, status transitions, reassignment and deletion.

State machine:
    ASSIGNED --start (assignee)--> IN_PROGRESS --complete (assignee)--> COMPLETED

Transitions are conditional UPDATEs guarded on current status and assignee,
so two racing requests for the same task yield exactly one success. A guard
miss is reported as a ValidationError whose message never says which
precondition failed (missing task, other assignee or wrong status).

Reassignment is an administrative override, not a state-machine edge: it puts
any task back to ASSIGNED and clears the start/completion fields.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from core import ownership, task_store, teams
from database import transaction
from errors import AuthorizationError, NotFoundError, StorageError, ValidationError
from time_utils import ensure_utc, is_late, minutes_between, utc_now

logger = logging.getLogger(__name__)

START_REFUSED = "Cannot start task. Verify it exists, you are assigned to it, and its status is ASSIGNED."
COMPLETE_REFUSED = "Cannot complete task. Verify it exists, you are assigned to it, and its status is IN_PROGRESS."


@dataclass(frozen=True)
class LateReasonRequired:
    """Completion refused because the task is past due and no reason was given."""
    task_id: int
    due_date: datetime

    error_code = "LATE_REASON_REQUIRED"

    @property
    def message(self) -> str:
        return "This task is past its due date. Provide a late submission reason to complete it."


def create_task(
    db: Session,
    title: str,
    description: Optional[str],
    assigned_to_user_id: Optional[int],
    assigned_by_user_id: int,
    team_id: int,
    creator_role,
    due_date: Optional[datetime] = None,
) -> models.Task:
    """
    Create a task in ASSIGNED state together with its ownership record.

    Both rows are written in one transaction; if either insert fails neither
    is kept.

    Raises:
        NotFoundError: if the team or the assignee does not exist
        StorageError: if the store fails
    """
    logger.debug(f"Creating task '{title}' in team {team_id} for user {assigned_to_user_id}")

    with transaction(db, "create task", team_id=team_id, assignee=assigned_to_user_id):
        if db.get(models.Team, team_id) is None:
            raise NotFoundError("Team")
        if assigned_to_user_id is not None and db.get(models.User, assigned_to_user_id) is None:
            raise NotFoundError("Assigned user")

        task = task_store.insert_task(
            db,
            title=title,
            description=description,
            assigned_to_user_id=assigned_to_user_id,
            assigned_by_user_id=assigned_by_user_id,
            team_id=team_id,
            due_date=due_date,
        )
        ownership.record_task_ownership(db, task.id, assigned_by_user_id, creator_role)
        task_id = task.id

    logger.info(f"Task created: id={task_id}, title='{title}', assignee={assigned_to_user_id}")
    return db.get(models.Task, task_id)


def create_team_task(
    db: Session,
    title: str,
    description: Optional[str],
    assigned_to_user_id: Optional[int],
    team_id: int,
    caller_id: int,
    caller_role,
    due_date: Optional[datetime] = None,
) -> models.Task:
    """
    Create a task inside a team the caller belongs to.

    The caller's current role is recorded as the creator role, so a task made
    by a member stays undeletable even if that member is promoted later.

    Raises:
        NotFoundError: if the team does not exist or the caller is not in it
        ValidationError: if the assignee is not a member of the team
    """
    if db.get(models.Team, team_id) is None:
        raise NotFoundError("Team")
    if models.UserRole(caller_role) != models.UserRole.ADMIN and not teams.is_team_member(db, team_id, caller_id):
        logger.info(f"User {caller_id} tried to create a task in team {team_id} without membership")
        raise NotFoundError("Team")
    if assigned_to_user_id is not None and not teams.is_team_member(db, team_id, assigned_to_user_id):
        raise ValidationError("Assigned user must be a member of this team", field="assigned_to_user_id")

    return create_task(
        db,
        title=title,
        description=description,
        assigned_to_user_id=assigned_to_user_id,
        assigned_by_user_id=caller_id,
        team_id=team_id,
        creator_role=caller_role,
        due_date=due_date,
    )


def start_task(db: Session, task_id: int, caller_id: int) -> models.Task:
    """
    Move a task from ASSIGNED to IN_PROGRESS on behalf of its assignee.

    Raises:
        ValidationError: if the task is missing, assigned to someone else, or
            not in ASSIGNED state
        StorageError: if the store fails
    """
    logger.debug(f"User {caller_id} starting task {task_id}")

    now = utc_now()
    with transaction(db, "start task", task_id=task_id, user_id=caller_id):
        task = task_store.conditional_update(
            db,
            task_id,
            predicate=[
                models.Task.assigned_to_user_id == caller_id,
                models.Task.status == models.TaskStatus.ASSIGNED,
            ],
            values={
                "status": models.TaskStatus.IN_PROGRESS,
                "started_at": now,
                "updated_at": now,
            },
        )

    if task is None:
        logger.info(f"Start refused for task {task_id} by user {caller_id}")
        raise ValidationError(START_REFUSED)

    logger.info(f"Task {task_id} started by user {caller_id}")
    return task


def complete_task(
    db: Session,
    task_id: int,
    caller_id: int,
    late_reason: Optional[str] = None,
) -> Union[models.Task, LateReasonRequired]:
    """
    Move a task from IN_PROGRESS to COMPLETED on behalf of its assignee.

    A past-due completion needs a reason. Without one the task is left
    untouched and LateReasonRequired is returned so the caller can retry.

    Returns:
        The completed task, or LateReasonRequired carrying the due date

    Raises:
        ValidationError: if the task is missing, assigned to someone else, or
            not in IN_PROGRESS state
        StorageError: if the store fails
    """
    logger.debug(f"User {caller_id} completing task {task_id}")
    reason = late_reason.strip() if late_reason else None

    # Classify only the caller's own in-progress task
    try:
        row = (
            db.query(models.Task.due_date)
            .filter(
                models.Task.id == task_id,
                models.Task.assigned_to_user_id == caller_id,
                models.Task.status == models.TaskStatus.IN_PROGRESS,
                models.Task.is_deleted.is_(False),
            )
            .first()
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to read due date (task={task_id}, user={caller_id}): {e}")
        raise StorageError("Failed to complete task") from e

    if row is None:
        logger.info(f"Complete refused for task {task_id} by user {caller_id}")
        raise ValidationError(COMPLETE_REFUSED)

    due_date = ensure_utc(row[0])
    now = utc_now()
    late = is_late(due_date, now)

    if late and not reason:
        logger.info(f"Task {task_id} is past due ({due_date.isoformat()}), late reason required")
        return LateReasonRequired(task_id=task_id, due_date=due_date)

    with transaction(db, "complete task", task_id=task_id, user_id=caller_id):
        task = task_store.conditional_update(
            db,
            task_id,
            predicate=[
                models.Task.assigned_to_user_id == caller_id,
                models.Task.status == models.TaskStatus.IN_PROGRESS,
            ],
            values={
                "status": models.TaskStatus.COMPLETED,
                "completed_at": now,
                "completed_by_user_id": caller_id,
                "late_submission_reason": reason if late else None,
                "updated_at": now,
            },
        )

    if task is None:
        logger.info(f"Complete refused for task {task_id} by user {caller_id}")
        raise ValidationError(COMPLETE_REFUSED)

    logger.info(f"Task {task_id} completed by user {caller_id} (late={late})")
    return task


def assign_to_user(db: Session, task_id: int, assigned_to_user_id: int, assigned_by_user_id: int) -> models.Task:
    """
    Reassign a task, whatever its current status.

    The task goes back to ASSIGNED with a fresh assigned_at; start and
    completion fields are cleared so a reopened task carries no stale
    completion data.

    Raises:
        NotFoundError: if the task or the target user does not exist
        StorageError: if the store fails
    """
    logger.debug(f"User {assigned_by_user_id} assigning task {task_id} to user {assigned_to_user_id}")

    with transaction(db, "assign task", task_id=task_id, assignee=assigned_to_user_id):
        if db.get(models.User, assigned_to_user_id) is None:
            raise NotFoundError("User")

        now = utc_now()
        task = task_store.conditional_update(
            db,
            task_id,
            predicate=[],
            values={
                "assigned_to_user_id": assigned_to_user_id,
                "assigned_by_user_id": assigned_by_user_id,
                "assigned_at": now,
                "status": models.TaskStatus.ASSIGNED,
                "started_at": None,
                "completed_at": None,
                "completed_by_user_id": None,
                "late_submission_reason": None,
                "updated_at": now,
            },
        )
        if task is None:
            raise NotFoundError("Task")

    logger.info(f"Task {task_id} assigned to user {assigned_to_user_id} by user {assigned_by_user_id}")
    return task


def delete_task(db: Session, task_id: int, caller_id: int, caller_role, hard: bool = False) -> None:
    """
    Soft- or hard-delete a task after the ownership check.

    Raises:
        AuthorizationError: if the caller is not the admin who created the task
        NotFoundError: if the task does not exist (or is already soft-deleted)
        StorageError: if the store fails
    """
    logger.debug(f"User {caller_id} deleting task {task_id} (hard={hard})")

    if not ownership.can_delete_task(db, task_id, caller_id, caller_role):
        logger.info(f"User {caller_id} is not allowed to delete task {task_id}")
        raise AuthorizationError("Only the admin who created this task can delete it")

    if hard:
        hard_delete(db, task_id)
    else:
        soft_delete(db, task_id)


def soft_delete(db: Session, task_id: int) -> None:
    with transaction(db, "delete task", task_id=task_id):
        if not task_store.soft_delete(db, task_id):
            raise NotFoundError("Task")
    logger.info(f"Task {task_id} soft-deleted")


def hard_delete(db: Session, task_id: int) -> None:
    with transaction(db, "delete task", task_id=task_id):
        if not task_store.hard_delete(db, task_id):
            raise NotFoundError("Task")
    logger.info(f"Task {task_id} and its ownership record deleted")


def get_task_time(db: Session, task_id: int) -> Optional[int]:
    """Minutes from start to completion of a completed task (soft-deleted included), None otherwise."""
    task = task_store.get_task(db, task_id, include_deleted=True)
    if task is None:
        raise NotFoundError("Task")
    if task.status != models.TaskStatus.COMPLETED:
        return None
    return minutes_between(task.started_at, task.completed_at)


def ensure_task_visible(db: Session, task_id: int, caller_id: int, caller_role) -> None:
    """
    Raise NotFound unless the caller may read the task.

    Admins see every task; others see tasks they are assigned to, assigned,
    or that belong to one of their teams. Soft-deleted tasks stay readable.
    """
    task = task_store.get_task(db, task_id, include_deleted=True)
    if task is None:
        raise NotFoundError("Task")
    if models.UserRole(caller_role) == models.UserRole.ADMIN:
        return
    if caller_id in (task.assigned_to_user_id, task.assigned_by_user_id):
        return
    if not teams.is_team_member(db, task.team_id, caller_id):
        logger.info(f"User {caller_id} cannot see task {task_id}")
        raise NotFoundError("Task")


def list_tasks_for_user(db: Session, user_id: int) -> List[models.Task]:
    return task_store.list_by_assignee(db, user_id)


def list_tasks_for_team(db: Session, team_id: int, caller_id: int, caller_role) -> List[models.Task]:
    """
    List a team's live tasks for one of its members or an admin.

    Non-members get NotFound so team existence is not revealed.
    """
    team = db.get(models.Team, team_id)
    if team is None:
        raise NotFoundError("Team")

    if models.UserRole(caller_role) != models.UserRole.ADMIN:
        if not teams.is_team_member(db, team_id, caller_id):
            logger.info(f"User {caller_id} is not a member of team {team_id}")
            raise NotFoundError("Team")

    return task_store.list_by_team(db, team_id)
