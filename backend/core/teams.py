"""Team creation, membership and deletion."""

import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

import models
from core import ownership
from database import transaction
from errors import AuthorizationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def create_team(db: Session, name: str, owner_id: int, owner_role) -> models.Team:
    """
    Create a team, add the creator as its first member and record ownership.

    All three rows share one transaction.
    """
    logger.debug(f"User {owner_id} creating team: {name}")

    with transaction(db, "create team", owner_id=owner_id):
        team = models.Team(name=name, owner_id=owner_id)
        db.add(team)
        db.flush()  # Get team ID without committing

        db.add(models.TeamMember(team_id=team.id, user_id=owner_id))
        ownership.record_team_ownership(db, team.id, owner_id, owner_role)
        team_id = team.id

    logger.info(f"Team created: {name} (ID: {team_id}) by user {owner_id}")
    return db.get(models.Team, team_id)


def is_team_member(db: Session, team_id: int, user_id: int) -> bool:
    return (
        db.query(models.TeamMember)
        .filter(models.TeamMember.team_id == team_id, models.TeamMember.user_id == user_id)
        .first()
    ) is not None


def list_teams_for_user(db: Session, user_id: int, role) -> List[models.Team]:
    """Admins see every team, members see the teams they belong to."""
    query = db.query(models.Team)
    if models.UserRole(role) != models.UserRole.ADMIN:
        query = query.join(models.TeamMember).filter(models.TeamMember.user_id == user_id)
    return query.order_by(models.Team.id).all()


def list_members(db: Session, team_id: int, caller_id: int, caller_role) -> List[models.TeamMember]:
    """
    List a team's memberships with their users, oldest first.

    Raises:
        NotFoundError: if the team does not exist or the caller is neither a
            member nor an admin
    """
    if db.get(models.Team, team_id) is None:
        raise NotFoundError("Team")
    if models.UserRole(caller_role) != models.UserRole.ADMIN and not is_team_member(db, team_id, caller_id):
        logger.info(f"User {caller_id} is not a member of team {team_id}")
        raise NotFoundError("Team")

    members = (
        db.query(models.TeamMember)
        .options(joinedload(models.TeamMember.user))
        .filter(models.TeamMember.team_id == team_id)
        .order_by(models.TeamMember.id)
        .all()
    )
    logger.debug(f"Team {team_id} has {len(members)} member(s)")
    return members


def add_member(db: Session, team_id: int, user_id: int, caller_id: int, caller_role) -> models.TeamMember:
    """
    Add a user to a team. Any member of the team (or an admin) may add others.

    Raises:
        NotFoundError: if the team or user does not exist, or the caller cannot see the team
        ValidationError: if the user is already a member
    """
    logger.debug(f"User {caller_id} adding user {user_id} to team {team_id}")

    if db.get(models.Team, team_id) is None:
        raise NotFoundError("Team")
    if models.UserRole(caller_role) != models.UserRole.ADMIN and not is_team_member(db, team_id, caller_id):
        raise NotFoundError("Team")
    if db.get(models.User, user_id) is None:
        raise NotFoundError("User")
    if is_team_member(db, team_id, user_id):
        raise ValidationError("User is already a member of this team", field="user_id")

    with transaction(db, "add team member", team_id=team_id, user_id=user_id):
        membership = models.TeamMember(team_id=team_id, user_id=user_id)
        db.add(membership)
        try:
            db.flush()
        except IntegrityError as e:
            # A concurrent add won the unique (team_id, user_id) pair
            logger.info(f"User {user_id} joined team {team_id} concurrently")
            raise ValidationError("User is already a member of this team", field="user_id") from e
        membership_id = membership.id

    logger.info(f"User {user_id} added to team {team_id}")
    return db.get(models.TeamMember, membership_id)


def delete_team(db: Session, team_id: int, caller_id: int) -> None:
    """
    Delete a team with its members, tasks and ownership records.

    Raises:
        NotFoundError: if the team does not exist
        AuthorizationError: if the caller is not the team's creator
    """
    logger.debug(f"User {caller_id} deleting team {team_id}")

    if not ownership.can_delete_team(db, team_id, caller_id):
        logger.info(f"User {caller_id} is not allowed to delete team {team_id}")
        raise AuthorizationError("Only the team creator can delete this team")

    with transaction(db, "delete team", team_id=team_id):
        team = db.get(models.Team, team_id)
        if team is None:
            raise NotFoundError("Team")
        db.delete(team)

    logger.info(f"Team {team_id} deleted by user {caller_id}")
