"""
Tests for team endpoints and the auth router.

Tests cover:
- Team creation, listing and membership
- Team deletion restricted to the recorded creator, with cascade
- Member listing and user lookups
- Registration, login and /me
"""

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from core import lifecycle, teams
from errors import ValidationError
from tests.conftest import auth_headers_for

logger = logging.getLogger(__name__)


# ============== Teams ==============


def test_member_creates_team(client: TestClient, test_db: Session, member_headers, member_user: models.User):
    response = client.post("/api/teams", json={"name": "  Design  "}, headers=member_headers)

    assert response.status_code == 201, response.json()
    data = response.json()
    assert data["name"] == "Design"
    assert data["owner_id"] == member_user.id

    record = test_db.query(models.TeamOwnership).filter(models.TeamOwnership.team_id == data["id"]).one()
    assert record.creator_user_id == member_user.id
    assert models.UserRole(record.creator_role) == models.UserRole.MEMBER

    listed = client.get("/api/teams", headers=member_headers).json()
    assert [team["id"] for team in listed] == [data["id"]]


def test_list_teams_by_membership(
    client: TestClient, admin_headers, member_headers, another_member_headers, team: models.Team
):
    assert [t["id"] for t in client.get("/api/teams", headers=admin_headers).json()] == [team.id]
    assert [t["id"] for t in client.get("/api/teams", headers=member_headers).json()] == [team.id]
    assert client.get("/api/teams", headers=another_member_headers).json() == []


def test_member_adds_member(
    client: TestClient, member_headers, another_member: models.User, another_member_headers, team: models.Team
):
    response = client.post(
        f"/api/teams/{team.id}/members",
        json={"user_id": another_member.id},
        headers=member_headers,
    )

    assert response.status_code == 201, response.json()
    assert response.json()["user"]["id"] == another_member.id
    assert [t["id"] for t in client.get("/api/teams", headers=another_member_headers).json()] == [team.id]


def test_add_existing_member(client: TestClient, admin_headers, member_user: models.User, team: models.Team):
    response = client.post(
        f"/api/teams/{team.id}/members",
        json={"user_id": member_user.id},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json()["details"] == {"field": "user_id"}


def test_concurrent_duplicate_member_is_a_validation_error(
    test_db: Session, monkeypatch, admin_user: models.User, member_user: models.User, team: models.Team
):
    before = test_db.query(models.TeamMember).count()
    # Membership pre-check misses a row another request just inserted
    monkeypatch.setattr(teams, "is_team_member", lambda *args: False)

    with pytest.raises(ValidationError) as exc_info:
        teams.add_member(test_db, team.id, member_user.id, admin_user.id, admin_user.role)

    assert exc_info.value.details == {"field": "user_id"}
    assert test_db.query(models.TeamMember).count() == before


def test_outsider_cannot_add_members(
    client: TestClient, another_member_headers, another_member: models.User, team: models.Team
):
    response = client.post(
        f"/api/teams/{team.id}/members",
        json={"user_id": another_member.id},
        headers=another_member_headers,
    )
    assert response.status_code == 404


def test_only_creator_deletes_team(
    client: TestClient, member_headers, other_admin, team: models.Team
):
    assert client.delete(f"/api/teams/{team.id}", headers=member_headers).status_code == 403
    assert client.delete(f"/api/teams/{team.id}", headers=auth_headers_for(other_admin)).status_code == 403


def test_team_delete_cascades(
    client: TestClient, test_db: Session, admin_headers, team: models.Team, task: models.Task
):
    team_id, task_id = team.id, task.id

    response = client.delete(f"/api/teams/{team_id}", headers=admin_headers)

    assert response.status_code == 200, response.json()
    assert response.json() == {"message": "Team deleted successfully", "team_id": team_id}
    test_db.expire_all()
    assert test_db.query(models.Team).filter(models.Team.id == team_id).first() is None
    assert test_db.query(models.TeamMember).filter(models.TeamMember.team_id == team_id).count() == 0
    assert test_db.query(models.Task).filter(models.Task.id == task_id).first() is None
    assert test_db.query(models.TaskOwnership).filter(models.TaskOwnership.task_id == task_id).first() is None
    assert test_db.query(models.TeamOwnership).filter(models.TeamOwnership.team_id == team_id).first() is None


def test_delete_missing_team(client: TestClient, admin_headers):
    response = client.delete("/api/teams/9999", headers=admin_headers)
    assert response.status_code == 404


def test_team_tasks_after_member_added(
    client: TestClient,
    test_db: Session,
    admin_user: models.User,
    another_member: models.User,
    another_member_headers,
    team: models.Team,
    task: models.Task,
):
    assert client.get(f"/api/tasks/team/{team.id}", headers=another_member_headers).status_code == 404

    teams.add_member(test_db, team.id, another_member.id, admin_user.id, admin_user.role)

    response = client.get(f"/api/tasks/team/{team.id}", headers=another_member_headers)
    assert response.status_code == 200
    assert [t["id"] for t in response.json()] == [task.id]
    assert lifecycle.list_tasks_for_team(test_db, team.id, another_member.id, another_member.role)


# ============== Members & users ==============


def test_list_team_members(
    client: TestClient,
    admin_headers,
    member_headers,
    another_member_headers,
    admin_user: models.User,
    member_user: models.User,
    team: models.Team,
):
    response = client.get(f"/api/teams/{team.id}/members", headers=member_headers)

    assert response.status_code == 200, response.json()
    assert [m["user_id"] for m in response.json()] == [admin_user.id, member_user.id]
    assert response.json()[1]["user"]["email"] == member_user.email

    assert client.get(f"/api/teams/{team.id}/members", headers=admin_headers).status_code == 200
    assert client.get(f"/api/teams/{team.id}/members", headers=another_member_headers).status_code == 404
    assert client.get("/api/teams/9999/members", headers=admin_headers).status_code == 404


def test_list_users(client: TestClient, member_headers, admin_user: models.User, member_user: models.User):
    response = client.get("/api/users", headers=member_headers)

    assert response.status_code == 200, response.json()
    ids = [u["id"] for u in response.json()]
    assert ids == sorted(ids)
    assert {admin_user.id, member_user.id} <= set(ids)
    assert "password_hash" not in response.json()[0]


def test_user_details_for_admins(client: TestClient, admin_headers, member_headers, member_user: models.User):
    response = client.get(f"/api/users/{member_user.id}", headers=admin_headers)
    assert response.status_code == 200, response.json()
    assert response.json()["role"] == "MEMBER"

    assert client.get(f"/api/users/{member_user.id}", headers=member_headers).status_code == 403

    response = client.get("/api/users/9999", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "User not found"


# ============== Auth ==============


def test_register_login_me(client: TestClient):
    response = client.post(
        "/api/auth/register",
        json={"name": "New Person", "email": "new.person@test.com", "password": "longpassword"},
    )
    assert response.status_code == 201, response.json()
    assert response.json()["role"] == "MEMBER"

    response = client.post(
        "/api/auth/login",
        json={"email": "new.person@test.com", "password": "longpassword"},
    )
    assert response.status_code == 200, response.json()
    token = response.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "new.person@test.com"


def test_register_duplicate_email(client: TestClient, member_user: models.User):
    response = client.post(
        "/api/auth/register",
        json={"name": "Copy", "email": member_user.email, "password": "longpassword"},
    )
    assert response.status_code == 400


def test_login_wrong_password(client: TestClient, member_user: models.User):
    response = client.post("/api/auth/login", json={"email": member_user.email, "password": "wrong-password"})
    assert response.status_code == 401


def test_inactive_user_is_forbidden(client: TestClient, test_db: Session, member_user: models.User, member_headers):
    member_user.is_active = False
    test_db.commit()

    response = client.get("/api/tasks/my-tasks", headers=member_headers)
    assert response.status_code == 403


def test_health(client: TestClient):
    assert client.get("/health").json() == {"status": "healthy"}
