"""Examination model."""

import enum

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin


class ExaminationStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Examination(Base, IDMixin, TimestampMixin):
    """An examination a staff member enters marksheets for."""

    __tablename__ = "examinations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    year: Mapped[str] = mapped_column(String(10), nullable=False)
    semester: Mapped[str] = mapped_column(String(10), nullable=False)
    academic_year: Mapped[str] = mapped_column(String(20), nullable=False)
    examination_month: Mapped[int] = mapped_column(Integer, nullable=False)
    examination_year: Mapped[int] = mapped_column(Integer, nullable=False)
    department: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    staff_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    staff_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[ExaminationStatus] = mapped_column(
        Enum(ExaminationStatus, name="examination_status"),
        default=ExaminationStatus.ACTIVE,
        nullable=False,
    )

    staff: Mapped["User"] = relationship("User", lazy="selectin")

    __table_args__ = (
        Index("ix_examinations_department_year", "department", "year"),
    )

    def __repr__(self) -> str:
        return f"<Examination(id={self.id}, name={self.name}, department={self.department})>"


from app.models.user import User
