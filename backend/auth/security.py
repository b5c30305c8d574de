"""
Password hashing and JWT access tokens.

Tokens carry the caller identity the task engine needs: `sub` (user id) and
`role`. Configuration comes from the environment:
- JWT_SECRET_KEY (required when ENVIRONMENT is production or staging)
- JWT_ALGORITHM (HS256, HS384 or HS512)
- ACCESS_TOKEN_EXPIRE_MINUTES (1-1440)
"""

import logging
import os
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from time_utils import utc_now

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
DEFAULT_EXPIRE_MINUTES = 15


def is_production_like() -> bool:
    """True if ENVIRONMENT is "production" or "staging"."""
    env = os.environ.get("ENVIRONMENT", "development").lower()
    return env in ("production", "staging")


# Argon2id password hashing
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

SECRET_KEY = os.environ.get("JWT_SECRET_KEY")
if not SECRET_KEY:
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY environment variable is required in production. "
            "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    SECRET_KEY = "dev-insecure-key-" + secrets.token_urlsafe(32)
    logger.warning("JWT_SECRET_KEY not set, using a temporary development key")

ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
if ALGORITHM not in SUPPORTED_ALGORITHMS:
    logger.warning(f"Unsupported JWT_ALGORITHM={ALGORITHM}, using HS256")
    ALGORITHM = "HS256"

try:
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_EXPIRE_MINUTES)))
except ValueError:
    logger.warning("Invalid ACCESS_TOKEN_EXPIRE_MINUTES, using default")
    ACCESS_TOKEN_EXPIRE_MINUTES = DEFAULT_EXPIRE_MINUTES

if not 1 <= ACCESS_TOKEN_EXPIRE_MINUTES <= 1440:
    logger.warning(f"ACCESS_TOKEN_EXPIRE_MINUTES={ACCESS_TOKEN_EXPIRE_MINUTES} outside 1-1440, using default")
    ACCESS_TOKEN_EXPIRE_MINUTES = DEFAULT_EXPIRE_MINUTES


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password verification result: {is_valid}")
    return is_valid


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to encode, typically {"sub": "<user id>", "role": "ADMIN"}
        expires_delta: Optional custom lifetime

    Example:
        >>> token = create_access_token({"sub": "1", "role": "ADMIN"})
    """
    expire = utc_now() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {**data, "exp": expire, "type": "access"}
    logger.debug(f"Creating access token for sub={data.get('sub')}, expires at {expire}")
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode a token, returning its claims or None if invalid or expired."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"JWT verification failed: {e}")
        return None
