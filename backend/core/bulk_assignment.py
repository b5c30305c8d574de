"""
Bulk assignment: copy one task definition to many assignees.

Each copy is an independent task in ASSIGNED state with its own id, lifecycle
and ownership record. The whole batch is one transaction: either every copy
is created or none is.
"""

import logging
from typing import List, Sequence

from sqlalchemy.orm import Session

import models
from core import ownership, task_store, teams
from database import transaction
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def assign_to_multiple_users(
    db: Session,
    task_id: int,
    user_ids: Sequence[int],
    assigned_by_user_id: int,
    assigner_role=models.UserRole.ADMIN,
) -> List[models.Task]:
    """
    Create one copy of a task per target user.

    Title, description and team come from the source task. Duplicate ids are
    not collapsed here; callers de-duplicate before calling.

    Args:
        db: Database session
        task_id: Source task
        user_ids: Target assignees, in the order the copies are created
        assigned_by_user_id: Actor recorded as assigner and creator
        assigner_role: Actor's role, recorded in each ownership entry

    Returns:
        The new tasks, in target order

    Raises:
        NotFoundError: if the source task or any target user does not exist
            (nothing is inserted)
        StorageError: if any insert fails (nothing is kept)
    """
    logger.info(f"Bulk assigning task {task_id} to {len(user_ids)} user(s)")
    logger.debug(f"Target users: {list(user_ids)}")

    with transaction(db, "assign task to users", task_id=task_id, user_count=len(user_ids)):
        # Phase 1: validate source and targets before any insert
        source = task_store.get_task(db, task_id)
        if source is None:
            logger.info(f"Source task {task_id} not found for bulk assignment")
            raise NotFoundError("Task")

        existing_ids = {
            row[0]
            for row in db.query(models.User.id).filter(models.User.id.in_(set(user_ids))).all()
        }
        missing_ids = [user_id for user_id in user_ids if user_id not in existing_ids]
        if missing_ids:
            logger.info(f"Users not found for bulk assignment: {missing_ids}")
            raise NotFoundError(f"Users {', '.join(str(i) for i in missing_ids)}")

        # Phase 2: one independent task (plus ownership) per target
        created_ids = []
        for user_id in user_ids:
            copy = task_store.insert_task(
                db,
                title=source.title,
                description=source.description,
                assigned_to_user_id=user_id,
                assigned_by_user_id=assigned_by_user_id,
                team_id=source.team_id,
            )
            ownership.record_task_ownership(db, copy.id, assigned_by_user_id, assigner_role)
            created_ids.append(copy.id)

    logger.info(f"Task {task_id} copied to {len(created_ids)} user(s): {created_ids}")
    return [db.get(models.Task, created_id) for created_id in created_ids]


def assign_to_team_members(
    db: Session,
    task_id: int,
    user_ids: Sequence[int],
    caller_id: int,
    caller_role,
) -> List[models.Task]:
    """
    Bulk assignment scoped to the source task's team.

    The caller and every target must belong to that team (admins may act on
    any team, their targets still must be members). Copies record the
    caller's current role as creator role.

    Raises:
        NotFoundError: if the source task is missing or the caller is not in its team
        ValidationError: if any target is not a member of the team
    """
    source = task_store.get_task(db, task_id)
    if source is None:
        raise NotFoundError("Task")

    team_id = source.team_id
    if models.UserRole(caller_role) != models.UserRole.ADMIN and not teams.is_team_member(db, team_id, caller_id):
        logger.info(f"User {caller_id} is not in team {team_id} of task {task_id}")
        raise NotFoundError("Task")

    member_ids = {
        row[0]
        for row in db.query(models.TeamMember.user_id).filter(models.TeamMember.team_id == team_id).all()
    }
    outsiders = [user_id for user_id in user_ids if user_id not in member_ids]
    if outsiders:
        logger.info(f"Bulk assignment of task {task_id} refused, not team members: {outsiders}")
        raise ValidationError(
            f"Users {', '.join(str(i) for i in outsiders)} are not members of this team",
            field="user_ids",
        )

    return assign_to_multiple_users(db, task_id, user_ids, caller_id, caller_role)
