"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration (new accounts are MEMBERs)
- Login, returning a Bearer access token with id and role claims
- Current user lookup
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

import schemas
from auth.dependencies import get_current_user
from auth.security import create_access_token, hash_password, verify_password
from database import get_db, transaction
from models import User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# Request/Response schemas
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/register", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new member account.

    Raises:
        HTTPException: 400 if email already registered
    """
    logger.info(f"Registration attempt for email: {request.email}")

    if db.query(User).filter(User.email == request.email).first():
        logger.info(f"Registration failed: email already exists: {request.email}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    with transaction(db, "register user"):
        new_user = User(
            name=request.name,
            email=request.email,
            password_hash=hash_password(request.password),
            role=UserRole.MEMBER,
            is_active=True,
        )
        db.add(new_user)
        db.flush()
        user_id = new_user.id

    logger.info(f"User registered: {request.email} (ID: {user_id})")
    return db.get(User, user_id)


@router.post("/login", response_model=TokenResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Raises:
        HTTPException: 401 if credentials are invalid, 403 if the account is inactive
    """
    logger.info(f"Login attempt for email: {request.email}")

    user = db.query(User).filter(User.email == request.email).first()
    if user is None or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed for: {request.email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    if not user.is_active:
        logger.info(f"Login failed: inactive user: {request.email}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

    role = UserRole(user.role).value
    access_token = create_access_token({"sub": str(user.id), "role": role, "email": user.email})

    logger.info(f"User logged in: {user.email} (ID: {user.id})")
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=schemas.User)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Return the authenticated user."""
    return current_user
