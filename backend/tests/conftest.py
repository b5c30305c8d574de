"""
Test configuration and fixtures for task tracker tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users, teams and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# The app's own engine (used only by the startup hook) must not need a server
os.environ.setdefault("DATABASE_URL", "sqlite://")

from database import Base, get_db
from main import app
import models
from auth.security import hash_password, create_access_token
from core import lifecycle, teams

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _make_user(db: Session, name: str, email: str, role: models.UserRole) -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password("password123"),
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    """
    Create an admin user for testing.
    """
    return _make_user(test_db, "Admin User", "admin@test.com", models.UserRole.ADMIN)


@pytest.fixture(scope="function")
def other_admin(test_db: Session) -> models.User:
    """
    Create a second admin, to check that ownership is per creator.
    """
    return _make_user(test_db, "Other Admin", "other.admin@test.com", models.UserRole.ADMIN)


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    """
    Create a regular member for testing.
    """
    return _make_user(test_db, "Member User", "member@test.com", models.UserRole.MEMBER)


@pytest.fixture(scope="function")
def another_member(test_db: Session) -> models.User:
    """
    Create another member for multi-user scenarios.
    """
    return _make_user(test_db, "Another Member", "another@test.com", models.UserRole.MEMBER)


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    token_data = {
        "sub": str(user.id),
        "role": models.UserRole(user.role).value,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def auth_headers_for(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def admin_headers(admin_user: models.User) -> Dict[str, str]:
    return auth_headers_for(admin_user)


@pytest.fixture(scope="function")
def member_headers(member_user: models.User) -> Dict[str, str]:
    return auth_headers_for(member_user)


@pytest.fixture(scope="function")
def another_member_headers(another_member: models.User) -> Dict[str, str]:
    return auth_headers_for(another_member)


@pytest.fixture(scope="function")
def team(test_db: Session, admin_user: models.User, member_user: models.User) -> models.Team:
    """
    Create a team owned by the admin with the member in it.
    """
    logger.debug("Creating test team")
    team = teams.create_team(test_db, "Test Team", admin_user.id, admin_user.role)
    teams.add_member(test_db, team.id, member_user.id, admin_user.id, admin_user.role)
    logger.info(f"Created test team with ID: {team.id}")
    return team


@pytest.fixture(scope="function")
def task(test_db: Session, admin_user: models.User, member_user: models.User, team: models.Team) -> models.Task:
    """
    Create an ASSIGNED task for the member, created by the admin, with no due date.
    """
    return lifecycle.create_task(
        test_db,
        title="Write report",
        description="Quarterly numbers",
        assigned_to_user_id=member_user.id,
        assigned_by_user_id=admin_user.id,
        team_id=team.id,
        creator_role=admin_user.role,
    )
