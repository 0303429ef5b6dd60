"""Marksheet model and dispatch lifecycle enumerations."""

import enum
import secrets
from datetime import date, datetime

from sqlalchemy import BigInteger, Boolean, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin, JSONType, TimestampMixin


class MarksheetStatus(str, enum.Enum):
    """Lifecycle status of a marksheet."""

    DRAFT = "draft"
    VERIFIED_BY_STAFF = "verified_by_staff"
    DISPATCH_REQUESTED = "dispatch_requested"
    APPROVED_BY_HOD = "approved_by_hod"
    REJECTED_BY_HOD = "rejected_by_hod"
    RESCHEDULED_BY_HOD = "rescheduled_by_hod"
    DISPATCHED = "dispatched"


class DispatchRequestStatus(str, enum.Enum):
    """Status of the dispatch request sub-record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"
    DISPATCHED = "dispatched"


class HodResponse(str, enum.Enum):
    """Response a head of department gives to a dispatch request."""

    APPROVED = "approved"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"


class WhatsAppStatus(str, enum.Enum):
    """Last transport-level outcome."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class SubjectResult(str, enum.Enum):
    """Per-subject and overall result."""

    PASS = "Pass"
    FAIL = "Fail"
    ABSENT = "Absent"


class Marksheet(Base, IDMixin, TimestampMixin):
    """One marksheet per (student, examination)."""

    __tablename__ = "marksheets"

    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    # Unguessable path segment for the public document URL
    document_token: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
        default=lambda: secrets.token_urlsafe(24),
    )
    student_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Student snapshot
    student_name: Mapped[str] = mapped_column(String(255), nullable=False)
    reg_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[str] = mapped_column(String(10), nullable=False)
    section: Mapped[str | None] = mapped_column(String(10), nullable=True)
    parent_phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Examination
    examination_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("examinations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    examination_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    examination_date: Mapped[date] = mapped_column(Date, nullable=False)
    semester: Mapped[str | None] = mapped_column(String(10), nullable=True)
    subjects: Mapped[list[dict]] = mapped_column(JSONType, nullable=False, default=list)
    overall_result: Mapped[str] = mapped_column(String(10), nullable=False, default=SubjectResult.PASS.value)

    # Staff / HOD snapshots
    staff_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    staff_name: Mapped[str] = mapped_column(String(255), nullable=False)
    staff_signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hod_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    hod_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hod_signature: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[MarksheetStatus] = mapped_column(
        Enum(MarksheetStatus, name="marksheet_status"),
        default=MarksheetStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Dispatch request
    request_status: Mapped[DispatchRequestStatus | None] = mapped_column(
        Enum(DispatchRequestStatus, name="dispatch_request_status"),
        nullable=True,
    )
    requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hod_response: Mapped[HodResponse | None] = mapped_column(
        Enum(HodResponse, name="hod_response"),
        nullable=True,
    )
    hod_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_dispatch_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pre_dispatch_notification_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_dispatched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_dispatch_failed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dispatch_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Transport outcome
    is_dispatched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    dispatched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    whatsapp_status: Mapped[WhatsAppStatus] = mapped_column(
        Enum(WhatsAppStatus, name="whatsapp_status"),
        default=WhatsAppStatus.PENDING,
        nullable=False,
    )
    whatsapp_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    whatsapp_message_sid: Mapped[str | None] = mapped_column(String(64), nullable=True)

    visited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    visited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Bumped on every write; lifecycle updates compare against it
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Relationships
    staff: Mapped["User"] = relationship("User", foreign_keys=[staff_id], lazy="selectin")
    hod: Mapped["User | None"] = relationship("User", foreign_keys=[hod_id], lazy="selectin")

    __table_args__ = (
        Index("ix_marksheets_staff_status", "staff_id", "status"),
        Index("ix_marksheets_department_status", "department", "status"),
        Index("ix_marksheets_request_schedule", "request_status", "scheduled_dispatch_date"),
    )

    def __repr__(self) -> str:
        return f"<Marksheet(id={self.id}, code={self.code}, status={self.status})>"


# Import to avoid circular imports
from app.models.user import User
