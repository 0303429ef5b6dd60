"""Authentication endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import CurrentUser, HodUser
from app.models.user import UserRole
from app.schemas.auth import (
    LoginRequest,
    PasswordChange,
    ProfileUpdate,
    SignatureUpdate,
    TokenResponse,
    UserCreate,
    UserFilter,
    UserResponse,
)
from app.schemas.common import MessageResponse
from app.services.auth import AuthService, user_response

router = APIRouter()


@router.post("/register", response_model=UserResponse, status_code=201)
def register(
    request: UserCreate,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Register a staff member or HOD.
    Only college email addresses are accepted.
    """
    service = AuthService(db)
    return service.register_user(request)


@router.post("/login", response_model=TokenResponse)
def login(
    request: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Authenticate with email and password.
    Returns an access token and the user's profile.
    """
    service = AuthService(db)
    return service.login(request)


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: CurrentUser):
    """Get current user information."""
    return user_response(current_user)


@router.put("/me/signature", response_model=UserResponse)
def update_signature(
    request: SignatureUpdate,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Store the user's e-signature image (base64 data URL).
    It is stamped on marksheets they verify or approve.
    """
    service = AuthService(db)
    return service.update_signature(current_user, request)


@router.put("/me", response_model=UserResponse)
def update_profile(
    request: ProfileUpdate,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """Update the current user's name or phone number."""
    service = AuthService(db)
    return service.update_profile(current_user, request)


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    request: PasswordChange,
    current_user: CurrentUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Change current user's password.
    """
    service = AuthService(db)
    service.change_password(current_user, request)
    return MessageResponse(message="Password changed successfully")


# HOD user management
@router.get("/users", response_model=list[UserResponse])
def list_users(
    hod: HodUser,
    db: Annotated[Session, Depends(get_db)],
    role: UserRole | None = Query(None, description="Filter by role"),
):
    """
    List the users of the HOD's department.
    """
    service = AuthService(db)
    return service.list_users(UserFilter(role=role, department=hod.department))


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: int,
    hod: HodUser,
    db: Annotated[Session, Depends(get_db)],
):
    """
    Remove a staff account of the HOD's department.
    Accounts that own marksheets or examinations are deactivated instead.
    """
    service = AuthService(db)
    if service.delete_user(user_id, hod):
        return MessageResponse(message="User deleted successfully")
    return MessageResponse(message="User deactivated; their records are kept")
