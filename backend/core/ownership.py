"""
Ownership ledger: who created each task and team, and in which role.

Records are written in the same transaction as the resource they describe
(add + flush, never commit here) and are never updated afterwards. They are
consulted only to decide delete authorization.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from auth.permissions import Operation, OwnershipFacts, authorize, has_capability
from errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


def record_task_ownership(db: Session, task_id: int, creator_user_id: int, creator_role) -> models.TaskOwnership:
    ownership = models.TaskOwnership(
        task_id=task_id,
        creator_user_id=creator_user_id,
        creator_role=models.UserRole(creator_role),
    )
    db.add(ownership)
    db.flush()
    logger.debug(f"Task ownership recorded: task={task_id}, creator={creator_user_id}, role={creator_role}")
    return ownership


def record_team_ownership(db: Session, team_id: int, creator_user_id: int, creator_role) -> models.TeamOwnership:
    ownership = models.TeamOwnership(
        team_id=team_id,
        creator_user_id=creator_user_id,
        creator_role=models.UserRole(creator_role),
    )
    db.add(ownership)
    db.flush()
    logger.debug(f"Team ownership recorded: team={team_id}, creator={creator_user_id}, role={creator_role}")
    return ownership


def get_task_ownership(db: Session, task_id: int) -> Optional[models.TaskOwnership]:
    return db.query(models.TaskOwnership).filter(models.TaskOwnership.task_id == task_id).first()


def get_team_ownership(db: Session, team_id: int) -> Optional[models.TeamOwnership]:
    return db.query(models.TeamOwnership).filter(models.TeamOwnership.team_id == team_id).first()


def delete_task_ownership(db: Session, task_id: int) -> None:
    db.query(models.TaskOwnership).filter(models.TaskOwnership.task_id == task_id).delete(synchronize_session=False)
    logger.debug(f"Task ownership deleted: task={task_id}")


def delete_team_ownership(db: Session, team_id: int) -> None:
    db.query(models.TeamOwnership).filter(models.TeamOwnership.team_id == team_id).delete(synchronize_session=False)
    logger.debug(f"Team ownership deleted: team={team_id}")


def task_ownership_facts(db: Session, task_id: int) -> OwnershipFacts:
    """
    Snapshot the creator of a task.

    Falls back to the task's assigner for rows that predate the ledger.

    Raises:
        NotFoundError: if neither a ledger entry nor the task exists
    """
    ownership = get_task_ownership(db, task_id)
    if ownership is not None:
        return OwnershipFacts(
            creator_user_id=ownership.creator_user_id,
            creator_role=models.UserRole(ownership.creator_role),
        )

    row = db.query(models.Task.assigned_by_user_id).filter(models.Task.id == task_id).first()
    if row is None:
        raise NotFoundError("Task")
    logger.debug(f"No ownership record for task {task_id}, falling back to assigner")
    return OwnershipFacts(creator_user_id=row[0], recorded=False)


def team_ownership_facts(db: Session, team_id: int) -> OwnershipFacts:
    """
    Snapshot the creator of a team.

    Falls back to the team's owner_id column for rows that predate the ledger.

    Raises:
        NotFoundError: if the team does not exist
    """
    row = db.query(models.Team.owner_id).filter(models.Team.id == team_id).first()
    if row is None:
        raise NotFoundError("Team")

    ownership = get_team_ownership(db, team_id)
    if ownership is not None:
        return OwnershipFacts(
            creator_user_id=ownership.creator_user_id,
            creator_role=models.UserRole(ownership.creator_role),
        )

    logger.debug(f"No ownership record for team {team_id}, falling back to owner_id")
    return OwnershipFacts(creator_user_id=row[0], recorded=False)


def can_delete_team(db: Session, team_id: int, caller_id: int) -> bool:
    """
    Only the team's creator may delete it, whatever their role.

    Raises:
        NotFoundError: if the team does not exist
        StorageError: if the lookup fails
    """
    try:
        facts = team_ownership_facts(db, team_id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to check team delete authorization (team={team_id}, user={caller_id}): {e}")
        raise StorageError("Failed to verify delete permissions") from e

    return facts.creator_user_id == caller_id


def can_delete_task(db: Session, task_id: int, caller_id: int, caller_role) -> bool:
    """
    Only the admin recorded as the task's creator may delete it.

    Non-admin callers are refused before any lookup.

    Raises:
        NotFoundError: if an admin asks about a task that does not exist
        StorageError: if the lookup fails
    """
    if not has_capability(caller_role, Operation.DELETE_TASK):
        logger.info(f"User {caller_id} with role '{caller_role}' cannot delete tasks")
        return False

    try:
        facts = task_ownership_facts(db, task_id)
    except SQLAlchemyError as e:
        logger.error(f"Failed to check task delete authorization (task={task_id}, user={caller_id}): {e}")
        raise StorageError("Failed to verify delete permissions") from e

    return authorize(Operation.DELETE_TASK, caller_id, caller_role, facts)
