"""
Read-side audit view of a task.

Joins the task with its assignee, assigner and completer and derives the late
submission flag, the time taken and a timeline. Timestamps or actors that are
not set yet (task not started or not completed) are simply left out.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

import models
import schemas
from errors import NotFoundError
from time_utils import ensure_utc, format_minutes, minutes_between

logger = logging.getLogger(__name__)


def is_late_submission(task: models.Task) -> bool:
    if task.due_date is None or task.completed_at is None:
        return False
    return ensure_utc(task.completed_at) > ensure_utc(task.due_date)


def _summary(user: Optional[models.User]) -> Optional[schemas.UserSummary]:
    return schemas.UserSummary.model_validate(user) if user is not None else None


def build_timeline(task: models.Task) -> List[schemas.TimelineEntry]:
    candidates = [
        (schemas.TimelineEventType.created, task.created_at, task.assigner),
        (schemas.TimelineEventType.assigned, task.assigned_at, task.assigner),
        (schemas.TimelineEventType.started, task.started_at, task.assignee),
        (schemas.TimelineEventType.completed, task.completed_at, task.completer),
    ]
    entries = [
        schemas.TimelineEntry(event=event, at=ensure_utc(at), actor=_summary(actor))
        for event, at, actor in candidates
        if at is not None
    ]
    # Stable sort keeps lifecycle order for equal timestamps
    return sorted(entries, key=lambda entry: entry.at)


def get_with_audit_trail(db: Session, task_id: int) -> schemas.TaskWithAudit:
    """
    Build the audit view of a task, soft-deleted tasks included.

    Raises:
        NotFoundError: if the task does not exist
    """
    logger.debug(f"Composing audit trail for task {task_id}")

    task = (
        db.query(models.Task)
        .options(
            joinedload(models.Task.assignee),
            joinedload(models.Task.assigner),
            joinedload(models.Task.completer),
        )
        .filter(models.Task.id == task_id)
        .first()
    )
    if task is None:
        raise NotFoundError("Task")

    minutes = minutes_between(task.started_at, task.completed_at)

    return schemas.TaskWithAudit(
        **schemas.Task.model_validate(task).model_dump(),
        assignee=_summary(task.assignee),
        assigner=_summary(task.assigner),
        completer=_summary(task.completer),
        is_late_submission=is_late_submission(task),
        time_in_minutes=minutes,
        time_taken=format_minutes(minutes) if minutes is not None else None,
        timeline=build_timeline(task),
    )
