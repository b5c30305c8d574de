"""
Task persistence: CRUD plus the conditional-transition primitive.

Functions here only add, flush or execute statements. Committing and rolling
back belong to the caller's transaction (see database.transaction), so several
store calls can form one atomic unit.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

import models
from core import ownership
from time_utils import utc_now

logger = logging.getLogger(__name__)


def insert_task(
    db: Session,
    title: str,
    description: Optional[str],
    assigned_to_user_id: Optional[int],
    assigned_by_user_id: int,
    team_id: int,
    due_date=None,
) -> models.Task:
    """Add a new task in ASSIGNED state and flush it to obtain its id."""
    now = utc_now()
    task = models.Task(
        title=title,
        description=description,
        assigned_to_user_id=assigned_to_user_id,
        assigned_by_user_id=assigned_by_user_id,
        team_id=team_id,
        due_date=due_date,
        status=models.TaskStatus.ASSIGNED,
        assigned_at=now,
        created_at=now,
        updated_at=now,
        is_deleted=False,
    )
    db.add(task)
    db.flush()
    logger.debug(f"Task inserted: id={task.id}, assignee={assigned_to_user_id}, team={team_id}")
    return task


def get_task(db: Session, task_id: int, include_deleted: bool = False) -> Optional[models.Task]:
    query = db.query(models.Task).filter(models.Task.id == task_id)
    if not include_deleted:
        query = query.filter(models.Task.is_deleted.is_(False))
    return query.first()


def list_by_assignee(db: Session, user_id: int) -> List[models.Task]:
    return (
        db.query(models.Task)
        .filter(models.Task.assigned_to_user_id == user_id, models.Task.is_deleted.is_(False))
        .order_by(models.Task.assigned_at.desc(), models.Task.id.desc())
        .all()
    )


def list_by_team(db: Session, team_id: int) -> List[models.Task]:
    return (
        db.query(models.Task)
        .filter(models.Task.team_id == team_id, models.Task.is_deleted.is_(False))
        .order_by(models.Task.assigned_at.desc(), models.Task.id.desc())
        .all()
    )


def conditional_update(
    db: Session,
    task_id: int,
    predicate: Iterable[Any],
    values: Dict[str, Any],
) -> Optional[models.Task]:
    """
    Apply `values` to a task only if it currently matches `predicate`.

    The match and the write are one UPDATE ... WHERE statement evaluated by the
    store, so among racing callers at most one sees an affected row.

    Args:
        db: Database session (inside the caller's transaction)
        task_id: Task to update
        predicate: Extra SQLAlchemy WHERE clauses (status, assignee)
        values: Column values to set

    Returns:
        The refreshed task if exactly one row changed, None if no row matched
    """
    stmt = (
        update(models.Task)
        .where(models.Task.id == task_id, models.Task.is_deleted.is_(False), *predicate)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)

    if result.rowcount != 1:
        logger.debug(f"Conditional update matched no row for task {task_id}")
        return None

    # Reload so callers never see identity-map state from before the UPDATE
    return db.get(models.Task, task_id, populate_existing=True)


def soft_delete(db: Session, task_id: int) -> bool:
    """Flag a task as deleted. Returns False if no live task matched."""
    result = db.execute(
        update(models.Task)
        .where(models.Task.id == task_id, models.Task.is_deleted.is_(False))
        .values(is_deleted=True, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def hard_delete(db: Session, task_id: int) -> bool:
    """Remove a task row and its ownership record. Returns False if no task matched."""
    ownership.delete_task_ownership(db, task_id)
    result = db.execute(
        delete(models.Task)
        .where(models.Task.id == task_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

