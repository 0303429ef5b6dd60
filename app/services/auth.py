"""Authentication and user management service."""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AuthenticationError, NotFoundError, PermissionDeniedError, ValidationError
from app.core.security import create_access_token, hash_password, verify_password
from app.models.examination import Examination
from app.models.marksheet import Marksheet
from app.models.user import User, UserRole
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

logger = logging.getLogger(__name__)


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        department=user.department,
        year=user.year,
        section=user.section,
        phone_number=user.phone_number,
        has_signature=bool(user.e_signature),
        is_active=user.is_active,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


class AuthService:
    """Authentication service."""

    def __init__(self, db: Session):
        self.db = db

    def login(self, request: LoginRequest) -> TokenResponse:
        """Authenticate user and return an access token."""
        result = self.db.execute(
            select(User).where(User.email == request.email)
        )
        user = result.scalar_one_or_none()

        if not user:
            raise AuthenticationError("Invalid email or password")

        if not verify_password(request.password, user.password_hash):
            raise AuthenticationError("Invalid email or password")

        if not user.is_active:
            raise AuthenticationError("User account is deactivated")

        # Update last login
        user.last_login_at = datetime.now(timezone.utc)
        self.db.flush()

        access_token = create_access_token(user.id, user.email, user.role.value)

        return TokenResponse(
            access_token=access_token,
            token_type="bearer",
            expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            user=user_response(user),
        )

    def register_user(self, request: UserCreate) -> UserResponse:
        """Register a new staff member or HOD."""
        result = self.db.execute(
            select(User).where(User.email == request.email)
        )
        if result.scalar_one_or_none():
            raise ValidationError("Email already registered")

        user = User(
            email=request.email,
            name=request.name,
            password_hash=hash_password(request.password),
            role=request.role,
            department=request.department.value,
            year=request.year,
            section=request.section,
            phone_number=request.phone_number,
            e_signature=request.e_signature,
            is_active=True,
        )

        self.db.add(user)
        self.db.flush()
        self.db.refresh(user)

        return user_response(user)

    def update_signature(self, user: User, request: SignatureUpdate) -> UserResponse:
        user.e_signature = request.e_signature
        self.db.flush()
        return user_response(user)

    def get_user_by_id(self, user_id: int) -> User:
        """Get user by ID."""
        user = self.db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
        if not user:
            raise NotFoundError("User", str(user_id))
        return user

    def update_profile(self, user: User, request: ProfileUpdate) -> UserResponse:
        for field, value in request.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(user, field, value)
        self.db.flush()
        return user_response(user)

    def change_password(self, user: User, request: PasswordChange) -> None:
        """Change the user's password after checking the current one."""
        if not verify_password(request.current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")

        user.password_hash = hash_password(request.new_password)
        self.db.flush()
        logger.info(f"Password changed for user {user.id}")

    def list_users(self, filters: UserFilter | None = None) -> list[UserResponse]:
        """List users, newest first."""
        query = select(User)
        if filters:
            if filters.role:
                query = query.where(User.role == filters.role)
            if filters.department:
                query = query.where(User.department == filters.department)
        users = self.db.execute(query.order_by(User.created_at.desc(), User.id.desc())).scalars().all()
        return [user_response(user) for user in users]

    def delete_user(self, user_id: int, hod: User) -> bool:
        """Remove a user of the HOD's department.

        Users who own marksheets or examinations are deactivated instead,
        since those records keep pointing at them. Returns True when the
        row was deleted.
        """
        if user_id == hod.id:
            raise PermissionDeniedError("Cannot delete your own account")

        user = self.get_user_by_id(user_id)
        if user.department != hod.department:
            raise PermissionDeniedError("User belongs to another department")
        if user.role == UserRole.HOD:
            raise PermissionDeniedError("Only staff accounts can be removed")

        owned = self.db.execute(
            select(func.count()).select_from(Marksheet).where(Marksheet.staff_id == user.id)
        ).scalar() or 0
        owned += self.db.execute(
            select(func.count()).select_from(Examination).where(Examination.staff_id == user.id)
        ).scalar() or 0

        if owned:
            user.is_active = False
            self.db.flush()
            logger.info(f"User {user.id} deactivated by HOD {hod.id}; owns {owned} records")
            return False

        self.db.delete(user)
        self.db.flush()
        logger.info(f"User {user_id} deleted by HOD {hod.id}")
        return True
