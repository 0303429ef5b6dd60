"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.exceptions import AuthenticationError, PermissionDeniedError
from app.core.security import verify_access_token
from app.models.user import User, UserRole


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    authorization: str | None = Header(None, description="Bearer token"),
) -> User:
    """Extract and validate the current user from JWT token."""
    if not authorization:
        raise AuthenticationError("Missing authorization header")
    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization[7:]  # Remove "Bearer " prefix
    payload = verify_access_token(token)

    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id_str = payload.get("sub")
    if not user_id_str:
        raise AuthenticationError("Invalid token payload")

    try:
        user_id = int(user_id_str)
    except ValueError:
        raise AuthenticationError("Invalid user ID in token")

    result = db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


def require_role(role: UserRole):
    """Dependency factory that requires the current user to hold a role."""

    def check_role(
        user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if user.role != role:
            raise PermissionDeniedError(
                f"Role '{role.value}' required",
                required_role=role.value,
            )
        return user

    return check_role


# Type aliases for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
StaffUser = Annotated[User, Depends(require_role(UserRole.STAFF))]
HodUser = Annotated[User, Depends(require_role(UserRole.HOD))]
