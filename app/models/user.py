"""User model."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin


class UserRole(str, enum.Enum):
    """Academic user roles."""

    STAFF = "staff"
    HOD = "hod"


class Department(str, enum.Enum):
    """Departments of the college."""

    CSE = "CSE"
    AI_DS = "AI_DS"
    ECE = "ECE"
    MECH = "MECH"
    CIVIL = "CIVIL"
    EEE = "EEE"
    IT = "IT"


class User(Base, IDMixin, TimestampMixin):
    """Staff member or head of department."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, name="user_role"), nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    year: Mapped[str | None] = mapped_column(String(10), nullable=True)  # I, II, III, IV
    section: Mapped[str | None] = mapped_column(String(10), nullable=True)
    e_signature: Mapped[str | None] = mapped_column(Text, nullable=True)  # data URL
    phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
