"""Student model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin


class Student(Base, IDMixin, TimestampMixin):
    """Student master record, keyed by registration number."""

    __tablename__ = "students"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    reg_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    year: Mapped[str] = mapped_column(String(10), nullable=False)
    section: Mapped[str | None] = mapped_column(String(10), nullable=True)
    department: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    parent_phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, reg_number={self.reg_number})>"
