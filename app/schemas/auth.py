"""Authentication and user schemas."""

from datetime import datetime

from pydantic import Field, field_validator, model_validator

from app.core.config import settings
from app.models.user import Department, UserRole
from app.schemas.common import BaseSchema


def _check_email_domain(email: str) -> str:
    email = email.lower()
    if "@" not in email:
        raise ValueError("Invalid email address")
    domain = settings.ALLOWED_EMAIL_DOMAIN
    if domain and email.rsplit("@", 1)[1] != domain:
        raise ValueError(f"Only @{domain} email addresses are allowed")
    return email


class LoginRequest(BaseSchema):
    """Login credentials."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email_domain(v)


class UserCreate(BaseSchema):
    """User registration schema."""

    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, max_length=72)
    role: UserRole
    department: Department
    year: str | None = Field(None, max_length=10)
    section: str | None = Field(None, max_length=10)
    phone_number: str | None = Field(None, max_length=50)
    e_signature: str | None = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_email_domain(v)

    @model_validator(mode="after")
    def staff_needs_class(self) -> "UserCreate":
        if self.role == UserRole.STAFF and (not self.year or not self.section):
            raise ValueError("year and section are required for staff role")
        return self


class UserResponse(BaseSchema):
    """User response schema."""

    id: int
    email: str
    name: str
    role: UserRole
    department: str
    year: str | None
    section: str | None
    phone_number: str | None
    has_signature: bool = False
    is_active: bool
    last_login_at: datetime | None
    created_at: datetime


class SignatureUpdate(BaseSchema):
    """Update of the user's e-signature image."""

    e_signature: str = Field(..., min_length=1)


class TokenResponse(BaseSchema):
    """Token response after login."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class ProfileUpdate(BaseSchema):
    """Self-service profile update."""

    name: str | None = Field(None, min_length=1, max_length=255)
    phone_number: str | None = Field(None, max_length=50)


class PasswordChange(BaseSchema):
    """Password change schema."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=72)


class UserFilter(BaseSchema):
    """User listing filters."""

    role: UserRole | None = None
    department: str | None = None
