"""
FastAPI dependencies for authentication and capability checks.

get_current_user resolves the caller from a Bearer JWT. require_capability
builds a dependency that asks the capability table in auth.permissions whether
the caller's role may attempt an operation at all; ownership checks happen
later, inside the operation, once the resource is known.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from auth.permissions import Operation, has_capability
from auth.security import verify_token
from database import get_db
from errors import AuthorizationError
from models import User

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from the Bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or names no user;
            403 if the account is inactive

    Example:
        @app.get("/api/tasks/my-tasks")
        def my_tasks(user: User = Depends(get_current_user)):
            ...
    """
    if not credentials or not credentials.credentials:
        logger.info("No authentication credentials provided")
        raise _unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid or expired token")

    if payload.get("type") != "access":
        logger.info(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("Invalid token type. Use access token for API requests.")

    # Malformed subject claims are a 401, not a 500
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        logger.info(f"Invalid user_id format in token: {payload.get('sub')}")
        raise _unauthorized("Invalid token format")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.info(f"User not found for id: {user_id}")
        raise _unauthorized("User not found")

    if not user.is_active:
        logger.info(f"Inactive user attempted access: {user_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    logger.debug(f"User authenticated via JWT: {user.email}")
    return user


def require_capability(operation: Operation):
    """
    Create a dependency that requires the caller's role to allow `operation`.

    Example:
        @app.post("/api/tasks")
        def create_task(user: User = Depends(require_capability(Operation.CREATE_TASK))):
            ...
    """

    async def capability_checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_capability(current_user.role, operation):
            logger.info(f"Access denied: user {current_user.id} ({current_user.role}) cannot {operation.value}")
            raise AuthorizationError(f"Access denied. Your role cannot {operation.value.replace('_', ' ')}")
        return current_user

    return capability_checker
