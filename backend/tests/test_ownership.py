"""
Tests for the ownership ledger (core/ownership.py) and the authorization gate
(auth/permissions.py).
"""

import logging

import pytest
from sqlalchemy.orm import Session

import models
from auth.permissions import (
    Operation,
    OwnershipFacts,
    ROLE_CAPABILITIES,
    authorize,
    has_capability,
    require,
)
from core import lifecycle, ownership, teams
from errors import AuthorizationError, NotFoundError
from models import UserRole

logger = logging.getLogger(__name__)


# ============== Gate (pure functions) ==============


def test_admin_holds_every_capability():
    assert ROLE_CAPABILITIES[UserRole.ADMIN] == frozenset(Operation)


@pytest.mark.parametrize(
    "operation",
    [
        Operation.CREATE_TASK,
        Operation.ASSIGN_TASK,
        Operation.BULK_ASSIGN_TASK,
        Operation.DELETE_TASK,
        Operation.VIEW_USER_DETAILS,
    ],
)
def test_member_cannot_manage_tasks(operation):
    assert has_capability(UserRole.MEMBER, operation) is False


def test_member_can_work_tasks_and_teams():
    for operation in (Operation.START_TASK, Operation.COMPLETE_TASK, Operation.CREATE_TEAM, Operation.DELETE_TEAM):
        assert has_capability(UserRole.MEMBER, operation)
    assert has_capability("MEMBER", Operation.START_TASK)
    assert has_capability("superuser", Operation.START_TASK) is False


def test_member_works_within_own_teams():
    assert has_capability(UserRole.MEMBER, Operation.CREATE_TEAM_TASK)
    assert has_capability(UserRole.MEMBER, Operation.ASSIGN_TEAM_TASK)


def test_delete_task_needs_recorded_admin_creator():
    facts = OwnershipFacts(creator_user_id=1, creator_role=UserRole.ADMIN)
    assert authorize(Operation.DELETE_TASK, 1, UserRole.ADMIN, facts)
    assert not authorize(Operation.DELETE_TASK, 2, UserRole.ADMIN, facts)
    assert not authorize(Operation.DELETE_TASK, 1, UserRole.MEMBER, facts)


def test_delete_task_created_by_member_is_never_deletable():
    """Ownership is frozen at creation: a since-promoted creator still cannot delete."""
    facts = OwnershipFacts(creator_user_id=5, creator_role=UserRole.MEMBER)
    assert not authorize(Operation.DELETE_TASK, 5, UserRole.ADMIN, facts)


def test_delete_task_legacy_fallback_compares_ids_only():
    facts = OwnershipFacts(creator_user_id=3, recorded=False)
    assert authorize(Operation.DELETE_TASK, 3, UserRole.ADMIN, facts)
    assert not authorize(Operation.DELETE_TASK, 4, UserRole.ADMIN, facts)


def test_ownership_gated_operation_without_facts_is_denied():
    assert not authorize(Operation.DELETE_TEAM, 1, UserRole.ADMIN)
    assert not authorize(Operation.DELETE_TEAM, 1, UserRole.ADMIN, OwnershipFacts(creator_user_id=None))


def test_delete_team_ignores_creator_role():
    facts = OwnershipFacts(creator_user_id=7, creator_role=UserRole.MEMBER)
    assert authorize(Operation.DELETE_TEAM, 7, UserRole.MEMBER, facts)
    assert not authorize(Operation.DELETE_TEAM, 8, UserRole.ADMIN, facts)


def test_require_raises_authorization_error():
    require(Operation.CREATE_TASK, 1, UserRole.ADMIN)

    with pytest.raises(AuthorizationError) as exc_info:
        require(Operation.CREATE_TASK, 1, UserRole.MEMBER, message="Admins only")
    assert exc_info.value.message == "Admins only"


# ============== Task ownership ==============


def test_creator_admin_can_delete_task(test_db: Session, task: models.Task, admin_user: models.User):
    assert ownership.can_delete_task(test_db, task.id, admin_user.id, admin_user.role) is True


def test_member_cannot_delete_task(test_db: Session, task: models.Task, member_user: models.User):
    assert ownership.can_delete_task(test_db, task.id, member_user.id, member_user.role) is False


def test_member_refused_before_lookup(test_db: Session, member_user: models.User):
    """Non-admins get False even for tasks that do not exist."""
    assert ownership.can_delete_task(test_db, 9999, member_user.id, member_user.role) is False


def test_other_admin_cannot_delete_task(test_db: Session, task: models.Task, other_admin: models.User):
    assert ownership.can_delete_task(test_db, task.id, other_admin.id, other_admin.role) is False


def test_missing_task_is_not_found_for_admin(test_db: Session, admin_user: models.User):
    with pytest.raises(NotFoundError):
        ownership.can_delete_task(test_db, 9999, admin_user.id, admin_user.role)


def test_task_without_record_falls_back_to_assigner(
    test_db: Session, task: models.Task, admin_user: models.User, other_admin: models.User
):
    ownership.delete_task_ownership(test_db, task.id)
    test_db.commit()

    facts = ownership.task_ownership_facts(test_db, task.id)
    assert facts.recorded is False
    assert facts.creator_user_id == admin_user.id

    assert ownership.can_delete_task(test_db, task.id, admin_user.id, admin_user.role) is True
    assert ownership.can_delete_task(test_db, task.id, other_admin.id, other_admin.role) is False


def test_ownership_survives_creator_demotion(test_db: Session, task: models.Task, admin_user: models.User):
    record = ownership.get_task_ownership(test_db, task.id)

    admin_user.role = models.UserRole.MEMBER
    test_db.commit()

    test_db.refresh(record)
    assert models.UserRole(record.creator_role) == models.UserRole.ADMIN
    # A demoted creator loses the capability, not the record
    assert ownership.can_delete_task(test_db, task.id, admin_user.id, admin_user.role) is False


def test_soft_delete_keeps_row_and_ownership(test_db: Session, task: models.Task, admin_user: models.User):
    lifecycle.delete_task(test_db, task.id, admin_user.id, admin_user.role)

    stored = test_db.query(models.Task).filter(models.Task.id == task.id).one()
    assert stored.is_deleted is True
    assert ownership.get_task_ownership(test_db, task.id) is not None

    with pytest.raises(NotFoundError):
        lifecycle.delete_task(test_db, task.id, admin_user.id, admin_user.role)


def test_hard_delete_removes_row_and_ownership(test_db: Session, task: models.Task, admin_user: models.User):
    task_id = task.id
    lifecycle.delete_task(test_db, task_id, admin_user.id, admin_user.role, hard=True)

    assert test_db.query(models.Task).filter(models.Task.id == task_id).first() is None
    assert test_db.query(models.TaskOwnership).filter(models.TaskOwnership.task_id == task_id).first() is None


def test_delete_by_other_admin_is_refused(test_db: Session, task: models.Task, other_admin: models.User):
    with pytest.raises(AuthorizationError):
        lifecycle.delete_task(test_db, task.id, other_admin.id, other_admin.role, hard=True)

    assert test_db.query(models.Task).filter(models.Task.id == task.id).first() is not None


# ============== Team ownership ==============


def test_team_creator_can_delete_team(test_db: Session, team: models.Team, admin_user: models.User):
    assert ownership.can_delete_team(test_db, team.id, admin_user.id) is True


def test_team_member_cannot_delete_team(test_db: Session, team: models.Team, member_user: models.User):
    assert ownership.can_delete_team(test_db, team.id, member_user.id) is False


def test_team_creator_may_be_a_member(test_db: Session, member_user: models.User, admin_user: models.User):
    team = teams.create_team(test_db, "Member Team", member_user.id, member_user.role)

    assert ownership.can_delete_team(test_db, team.id, member_user.id) is True
    assert ownership.can_delete_team(test_db, team.id, admin_user.id) is False


def test_team_without_record_falls_back_to_owner(test_db: Session, team: models.Team, admin_user: models.User):
    ownership.delete_team_ownership(test_db, team.id)
    test_db.commit()

    facts = ownership.team_ownership_facts(test_db, team.id)
    assert facts.recorded is False
    assert ownership.can_delete_team(test_db, team.id, admin_user.id) is True


def test_missing_team_is_not_found(test_db: Session, admin_user: models.User):
    with pytest.raises(NotFoundError):
        ownership.can_delete_team(test_db, 9999, admin_user.id)
